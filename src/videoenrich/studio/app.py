"""FastAPI app exposing the pipeline to the presentation layer.

Routes under ``/api``: entity creation and lookup, run/attach, status and a Server-Sent
Events stream of status updates, variant regeneration, on-demand copywriting
(hooks, script insights, rewrite) and the batch runner. Set ``VE_API_TOKEN``
to require a bearer token (header or ``?token=``) on everything but health.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..ai.variants import Product
from ..errors import (
    CopywritingFailed,
    EntityNotFound,
    InvariantViolation,
    NoVariantsGenerated,
    PreconditionFailed,
)
from ..pipeline import PipelineOrchestrator, build_orchestrator, run_batch
from ..profile import load_profile


def _entity_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="entity_not_found")


def create_app(
    *,
    orchestrator: Optional[PipelineOrchestrator] = None,
    profile_path: Optional[Path] = None,
    api_token: Optional[str] = None,
) -> FastAPI:
    profile = load_profile(profile_path)
    orch = orchestrator or build_orchestrator(profile)
    store: Any = orch.store
    token = api_token if api_token is not None else os.getenv("VE_API_TOKEN")
    batch_cfg = profile.get("batch", {})

    app = FastAPI(title="VideoEnrich")
    app.state.orchestrator = orch

    if token:
        @app.middleware("http")
        async def require_token(request: Request, call_next):
            if request.url.path != "/api/health":
                header = request.headers.get("authorization", "")
                supplied = header[7:] if header.lower().startswith("bearer ") else request.query_params.get("token")
                if supplied != token:
                    return JSONResponse({"detail": "unauthorized"}, status_code=401)
            return await call_next(request)

    @app.get("/api/health")
    def api_health() -> JSONResponse:
        return JSONResponse({"ok": True})

    @app.post("/api/videos")
    def api_create_video(body: Dict[str, Any] = Body(...)) -> JSONResponse:
        source_url = str(body.get("source_url") or "").strip()
        if not source_url:
            raise HTTPException(status_code=400, detail="source_url_required")
        try:
            entity = store.create(source_url, entity_id=body.get("id") or None)
        except PreconditionFailed:
            raise HTTPException(status_code=400, detail="invalid_source_url")
        except InvariantViolation:
            raise HTTPException(status_code=409, detail="entity_exists")
        return JSONResponse(entity.to_dict(), status_code=201)

    @app.get("/api/videos")
    def api_list_videos(limit: int = 100) -> JSONResponse:
        return JSONResponse([e.to_dict() for e in store.list_entities(limit=limit)])

    @app.get("/api/videos/{entity_id}")
    def api_get_video(entity_id: str) -> JSONResponse:
        try:
            entity = store.get(entity_id)
        except EntityNotFound:
            raise _entity_not_found()
        data = entity.to_dict()
        data["status"] = orch.get_status(entity_id).to_dict()
        return JSONResponse(data)

    @app.get("/api/videos/{entity_id}/status")
    def api_get_status(entity_id: str) -> JSONResponse:
        try:
            status = orch.get_status(entity_id)
        except EntityNotFound:
            raise _entity_not_found()
        return JSONResponse({"id": entity_id, "status": status.to_dict()})

    @app.post("/api/videos/{entity_id}/run")
    def api_run(entity_id: str) -> JSONResponse:
        try:
            handle = orch.run(entity_id)
        except EntityNotFound:
            raise _entity_not_found()
        status = handle.status or orch.get_status(entity_id)
        return JSONResponse(
            {"id": entity_id, "status": status.to_dict(), "attached": handle.attached},
            status_code=202 if not handle.done else 200,
        )

    @app.get("/api/videos/{entity_id}/events")
    def api_events(entity_id: str) -> StreamingResponse:
        try:
            status = orch.get_status(entity_id)
        except EntityNotFound:
            raise _entity_not_found()
        run = orch.active_run(entity_id)

        if run is None:
            def snapshot_stream():
                yield f"data: {json.dumps({'entity_id': entity_id, 'status': status.to_dict(), 'message': 'idle', 'seq': 0})}\n\n"

            return StreamingResponse(snapshot_stream(), media_type="text/event-stream")

        handle = run.attach(attached=True)

        def event_stream():
            try:
                for update in handle.updates(poll_s=15.0):
                    if update is None:
                        yield ": keep-alive\n\n"
                        continue
                    yield f"data: {json.dumps(update.to_dict())}\n\n"
            finally:
                # Client went away (or the run ended): stop observing.
                handle.cancel()

        return StreamingResponse(event_stream(), media_type="text/event-stream")

    @app.post("/api/videos/{entity_id}/variants")
    def api_generate_variants(entity_id: str, body: Dict[str, Any] = Body(default={})) -> JSONResponse:
        count = body.get("count", 1)
        intensity = body.get("intensity", "medium")
        product = body.get("product")
        if product is not None and not isinstance(product, dict):
            raise HTTPException(status_code=400, detail="invalid_product")
        try:
            variants = orch.generate_variants(
                entity_id,
                count,
                intensity,
                product=Product.from_dict(product),
            )
        except EntityNotFound:
            raise _entity_not_found()
        except PreconditionFailed as e:
            raise HTTPException(status_code=409, detail={"error": "precondition_failed", "message": str(e)})
        except NoVariantsGenerated as e:
            raise HTTPException(status_code=502, detail={"error": "no_results", "message": str(e)})
        return JSONResponse({"id": entity_id, "variants": [v.to_dict() for v in variants]})

    def _copy_call(fn, *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except EntityNotFound:
            raise _entity_not_found()
        except PreconditionFailed as e:
            raise HTTPException(status_code=409, detail={"error": "precondition_failed", "message": str(e)})
        except CopywritingFailed as e:
            raise HTTPException(status_code=502, detail={"error": "no_results", "message": str(e)})

    @app.post("/api/hooks")
    def api_generate_hooks(body: Dict[str, Any] = Body(default={})) -> JSONResponse:
        description = body.get("product_description")
        if not isinstance(description, str) or not description.strip():
            raise HTTPException(status_code=400, detail="product_description_required")
        hooks = _copy_call(orch.generate_hooks, description, body.get("count"))
        return JSONResponse({"hooks": hooks})

    @app.post("/api/videos/{entity_id}/insights")
    def api_script_insights(entity_id: str) -> JSONResponse:
        insights = _copy_call(orch.script_insights, entity_id)
        return JSONResponse({"id": entity_id, "insights": insights.to_dict()})

    @app.post("/api/videos/{entity_id}/rewrite")
    def api_rewrite_script(entity_id: str) -> JSONResponse:
        script = _copy_call(orch.rewrite_script, entity_id)
        return JSONResponse({"id": entity_id, "rewritten_script": script})

    @app.post("/api/batch")
    def api_batch(body: Dict[str, Any] = Body(default={})) -> JSONResponse:
        try:
            limit = int(body.get("limit", batch_cfg.get("limit", 5)))
            max_workers = int(body.get("max_workers", batch_cfg.get("max_workers", 2)))
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="invalid_batch_parameters")
        if limit < 1 or max_workers < 1:
            raise HTTPException(status_code=400, detail="invalid_batch_parameters")
        result = run_batch(orch, limit=limit, max_workers=max_workers)
        return JSONResponse(result.to_dict())

    return app
