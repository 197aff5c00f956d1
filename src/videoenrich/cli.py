"""Command line entry point (``videoenrich``).

Subcommands register videos, run or resume the pipeline for one of them,
inspect status, regenerate variants, ask for copywriting help, run a batch
of pending videos, or serve the HTTP API. Every command reads the same YAML
profile (``--profile`` or ``$VE_PROFILE``).
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from .errors import NoVariantsGenerated, PipelineError
from .logging_config import default_log_path, setup_logging
from .models import StatusKind, VideoEntity
from .pipeline import build_orchestrator, run_batch
from .profile import load_profile
from .store import SqliteEntityStore
from .utils import truncate


def _store(profile: dict) -> SqliteEntityStore:
    path = profile.get("store", {}).get("path")
    return SqliteEntityStore(Path(path) if path else None)


def _print_entity(entity: VideoEntity) -> None:
    print(f"{entity.id}  [{entity.status}]  {entity.source_url}")
    if entity.media_locator:
        print(f"  media:      {entity.media_locator}")
    if entity.transcript:
        print(f"  transcript: {truncate(entity.transcript, 100)}")
    if entity.analysis:
        print(f"  hook:       {truncate(entity.analysis.hook, 100)}")
        print(f"  cta:        {truncate(entity.analysis.cta, 100)}")
        if entity.analysis.tags:
            print(f"  tags:       {', '.join(entity.analysis.tags)}")
    if entity.variants:
        print(f"  variants:   {len(entity.variants)}")


def cmd_add(args: argparse.Namespace) -> None:
    profile = load_profile(args.profile)
    entity = _store(profile).create(args.url, entity_id=args.id)
    print(entity.id)


def cmd_list(args: argparse.Namespace) -> None:
    profile = load_profile(args.profile)
    excluded = [StatusKind.COMPLETE] if args.pending else []
    for entity in _store(profile).list_entities(exclude_states=excluded, limit=args.limit):
        _print_entity(entity)


def cmd_run(args: argparse.Namespace) -> int:
    profile = load_profile(args.profile)
    orch = build_orchestrator(profile, store=_store(profile))
    handle = orch.run(args.entity_id)
    try:
        for update in handle.updates():
            if update is not None:
                suffix = f" ({update.message})" if update.message else ""
                print(f"[{update.seq}] {update.status}{suffix}", flush=True)
    except KeyboardInterrupt:
        handle.cancel()
        print("cancelling; the current stage will finish first", file=sys.stderr)
        handle.wait()
    final = handle.wait()
    if args.json:
        print(json.dumps(orch.store.get(args.entity_id).to_dict(), indent=2, ensure_ascii=False))
    return 0 if final is not None and final.kind == StatusKind.COMPLETE else 1


def cmd_status(args: argparse.Namespace) -> None:
    profile = load_profile(args.profile)
    store = _store(profile)
    entity = store.get(args.entity_id)
    if args.json:
        print(json.dumps(entity.to_dict(), indent=2, ensure_ascii=False))
    else:
        _print_entity(entity)


def cmd_variants(args: argparse.Namespace) -> int:
    from .ai.variants import Product

    profile = load_profile(args.profile)
    orch = build_orchestrator(profile, store=_store(profile))
    product = Product(name=args.product, description=args.product_description or "") if args.product else None
    try:
        variants = orch.generate_variants(args.entity_id, args.count, args.intensity, product=product)
    except NoVariantsGenerated as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    print(json.dumps([v.to_dict() for v in variants], indent=2, ensure_ascii=False))
    return 0


def cmd_hooks(args: argparse.Namespace) -> None:
    profile = load_profile(args.profile)
    orch = build_orchestrator(profile, store=_store(profile))
    for hook in orch.generate_hooks(args.product_description, args.count):
        print(hook)


def cmd_insights(args: argparse.Namespace) -> None:
    profile = load_profile(args.profile)
    orch = build_orchestrator(profile, store=_store(profile))
    insights = orch.script_insights(args.entity_id)
    print(json.dumps(insights.to_dict(), indent=2, ensure_ascii=False))


def cmd_rewrite(args: argparse.Namespace) -> None:
    profile = load_profile(args.profile)
    orch = build_orchestrator(profile, store=_store(profile))
    print(orch.rewrite_script(args.entity_id))


def cmd_batch(args: argparse.Namespace) -> None:
    profile = load_profile(args.profile)
    batch_cfg = profile.get("batch", {})
    orch = build_orchestrator(profile, store=_store(profile))
    result = run_batch(
        orch,
        limit=args.limit if args.limit is not None else int(batch_cfg.get("limit", 5)),
        max_workers=args.workers if args.workers is not None else int(batch_cfg.get("max_workers", 2)),
    )
    print(json.dumps(result.to_dict(), indent=2))


def cmd_serve(args: argparse.Namespace) -> None:
    from .studio.app import create_app

    app = create_app(profile_path=args.profile)

    import uvicorn

    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="videoenrich", description="VideoEnrich CLI")
    parser.add_argument("--profile", type=Path, default=None, help="Path to a YAML profile")
    parser.add_argument("--log-level", type=str, default=None, help="Default: $VE_LOG_LEVEL or INFO")
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this file (serve: state dir by default)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    a = sub.add_parser("add", help="Register a video by its source URL.")
    a.add_argument("url", type=str)
    a.add_argument("--id", type=str, default=None, help="Explicit entity id (default: random)")
    a.set_defaults(func=cmd_add)

    ls = sub.add_parser("list", help="List registered videos.")
    ls.add_argument("--pending", action="store_true", help="Only videos that are not complete")
    ls.add_argument("--limit", type=int, default=50)
    ls.set_defaults(func=cmd_list)

    r = sub.add_parser("run", help="Fetch, transcribe and analyze one video (resumes where it stopped).")
    r.add_argument("entity_id", type=str)
    r.add_argument("--json", action="store_true", help="Print the final entity as JSON")
    r.set_defaults(func=cmd_run)

    s = sub.add_parser("status", help="Show a video's stage outputs and status.")
    s.add_argument("entity_id", type=str)
    s.add_argument("--json", action="store_true")
    s.set_defaults(func=cmd_status)

    v = sub.add_parser("variants", help="Generate fresh script variants for a transcribed video.")
    v.add_argument("entity_id", type=str)
    v.add_argument("--count", type=int, default=1)
    v.add_argument("--intensity", choices=["light", "medium", "aggressive"], default="medium")
    v.add_argument("--product", type=str, default=None, help="Product name to weave into the script")
    v.add_argument("--product-description", type=str, default=None)
    v.set_defaults(func=cmd_variants)

    h = sub.add_parser("hooks", help="Suggest opening hooks for a product.")
    h.add_argument("product_description", type=str)
    h.add_argument("--count", type=int, default=None, help="Default: copywriting.max_hooks")
    h.set_defaults(func=cmd_hooks)

    ins = sub.add_parser("insights", help="Explain why a transcribed video's script sells.")
    ins.add_argument("entity_id", type=str)
    ins.set_defaults(func=cmd_insights)

    rw = sub.add_parser("rewrite", help="Rewrite a transcribed video's script as a reusable selling script.")
    rw.add_argument("entity_id", type=str)
    rw.set_defaults(func=cmd_rewrite)

    b = sub.add_parser("batch", help="Run the pipeline for pending videos.")
    b.add_argument("--limit", type=int, default=None)
    b.add_argument("--workers", type=int, default=None)
    b.set_defaults(func=cmd_batch)

    sv = sub.add_parser("serve", help="Serve the HTTP API.")
    sv.add_argument("--host", type=str, default="127.0.0.1")
    sv.add_argument("--port", type=int, default=8766)
    sv.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    log_file = args.log_file
    if log_file is None and args.cmd == "serve":
        log_file = default_log_path()
    setup_logging(level=args.log_level, log_file=log_file)
    try:
        code = args.func(args)
    except PipelineError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
