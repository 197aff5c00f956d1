"""Pipeline Orchestrator.

Sequences fetch -> transcribe -> analyze for one entity, persisting each
output as soon as it exists so a later run resumes from the first missing
one. At most one run per entity is active: inside a process a second caller
is attached to the running one, and processes sharing a store coordinate
through a run lease on the entity's row. A caller whose entity is being
run elsewhere follows that run through the store instead of starting another.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..errors import PreconditionFailed, StageFailed
from ..models import (
    STAGE_FIELDS,
    STAGE_ORDER,
    Analysis,
    Intensity,
    PipelineStatus,
    Stage,
    StatusKind,
    Variant,
    VideoEntity,
)
from ..store import EntityStore
from .runs import PipelineRun, RunHandle

logger = logging.getLogger(__name__)


class FetchStage(Protocol):
    def fetch(self, source_url: str) -> str: ...


class TranscribeStage(Protocol):
    def transcribe(self, media_locator: str) -> str: ...


class AnalyzeStage(Protocol):
    def analyze(self, transcript: str) -> Analysis: ...


class VariantStage(Protocol):
    def check_request(self, count: int, intensity: Any) -> Intensity: ...

    def generate(
        self,
        transcript: str,
        *,
        count: int,
        intensity: Intensity,
        analysis: Optional[Analysis] = None,
        product: Any = None,
    ) -> List[Variant]: ...


class CopyStage(Protocol):
    def generate_hooks(self, product_description: str, count: Optional[int] = None) -> List[str]: ...

    def analyze_insights(self, transcript: str, *, title: Optional[str] = None) -> Any: ...

    def rewrite_script(self, transcript: str) -> str: ...


def _default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class PipelineOrchestrator:
    def __init__(
        self,
        store: EntityStore,
        *,
        fetcher: FetchStage,
        transcriber: TranscribeStage,
        analyzer: AnalyzeStage,
        variant_generator: VariantStage,
        copywriter: Optional[CopyStage] = None,
        lease_s: float = 120.0,
        follow_poll_s: float = 1.0,
        owner: Optional[str] = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.transcriber = transcriber
        self.analyzer = analyzer
        self.variant_generator = variant_generator
        self.copywriter = copywriter
        self.lease_s = lease_s
        self.follow_poll_s = follow_poll_s
        self.owner = owner or _default_owner()

        self._lock = threading.Lock()
        self._runs: Dict[str, PipelineRun] = {}
        self._variant_locks: Dict[str, threading.Lock] = {}
        self._variant_inflight: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def active_run(self, entity_id: str) -> Optional[PipelineRun]:
        with self._lock:
            return self._runs.get(entity_id)

    def run(self, entity_id: str) -> RunHandle:
        """Start a run for ``entity_id``, or attach to the one already in flight.

        Returns immediately. The handle's ``status`` is the current status;
        ``updates()`` streams every transition and ``wait()`` blocks for the end.
        If another process sharing the store holds the run, the handle is
        ``attached`` and follows that run's persisted status.

        Raises:
            EntityNotFound: unknown id
        """
        with self._lock:
            active = self._runs.get(entity_id)
            if active is not None:
                logger.info("[pipeline] %s: attaching to in-flight run", entity_id)
                return active.attach(attached=True)

            entity = self.store.get(entity_id)
            first = entity.first_missing_stage()
            run = PipelineRun(entity_id)
            handle = run.attach()

            if first is None:
                # Everything is cached: no remote calls at all.
                if entity.status.kind != StatusKind.COMPLETE:
                    self.store.update(entity_id, status=PipelineStatus.complete())
                logger.info("[pipeline] %s: fully processed, short-circuit", entity_id)
                run.finish(PipelineStatus.complete(), "cached")
                return handle

            status = PipelineStatus.running(first)
            target: Callable[[PipelineRun], None]
            if self.store.claim_run(entity_id, self.owner, status, self.lease_s):
                if entity.status.is_running:
                    logger.warning(
                        "[pipeline] %s: stale %s status with no live run; resuming", entity_id, entity.status
                    )
                logger.info("[pipeline] %s: %s", entity_id, first.value)
                run.publish(status)
                target = self._execute
            else:
                logger.info("[pipeline] %s: run in flight in another process; following it", entity_id)
                handle.attached = True
                current = self.store.get(entity_id).status
                if current.is_running:
                    run.publish(current)
                target = self._follow
            self._runs[entity_id] = run

        thread = threading.Thread(
            target=target,
            args=(run,),
            name=f"ve-run-{entity_id}",
            daemon=True,
        )
        run.thread = thread
        thread.start()
        return handle

    def get_status(self, entity_id: str) -> PipelineStatus:
        """Current status of ``entity_id``.

        ``GeneratingVariants`` is reported while a regeneration is in flight;
        it is never written to the store. A persisted in-progress status
        with no live run behind it (here or in another process holding the
        lease) reads as ``Idle``.
        """
        entity = self.store.get(entity_id)
        with self._lock:
            if self._variant_inflight.get(entity_id):
                return PipelineStatus(StatusKind.GENERATING_VARIANTS)
            live = entity_id in self._runs
        if entity.status.is_running and not live and not self.store.has_live_claim(entity_id):
            return PipelineStatus.idle()
        return entity.status

    def generate_variants(
        self,
        entity_id: str,
        count: int,
        intensity: Any,
        *,
        product: Any = None,
    ) -> List[Variant]:
        """Generate a fresh batch of variants and replace the cached ones.

        Leaves transcript, analysis and status untouched.

        Raises:
            EntityNotFound: unknown id
            PreconditionFailed: no transcript yet, or bad count/intensity
            NoVariantsGenerated: every generation attempt failed; cache untouched
        """
        intensity = self.variant_generator.check_request(count, intensity)
        entity = self.store.get(entity_id)
        if entity.transcript is None:
            raise PreconditionFailed(f"{entity_id}: variants require a transcript")

        with self._lock:
            lock = self._variant_locks.setdefault(entity_id, threading.Lock())
            self._variant_inflight[entity_id] = self._variant_inflight.get(entity_id, 0) + 1
        try:
            with lock:
                entity = self.store.get(entity_id)
                logger.info(
                    "[pipeline] %s: generating %d variant(s) at %s intensity",
                    entity_id,
                    count,
                    intensity.value,
                )
                variants = self.variant_generator.generate(
                    entity.transcript or "",
                    count=count,
                    intensity=intensity,
                    analysis=entity.analysis,
                    product=product,
                )
                self.store.update(entity_id, variants=variants)
                return variants
        finally:
            with self._lock:
                remaining = self._variant_inflight.get(entity_id, 1) - 1
                if remaining > 0:
                    self._variant_inflight[entity_id] = remaining
                else:
                    self._variant_inflight.pop(entity_id, None)

    # ------------------------------------------------------------------
    # On-demand copywriting (status and cached outputs untouched)
    # ------------------------------------------------------------------

    def _require_copywriter(self) -> CopyStage:
        if self.copywriter is None:
            raise PreconditionFailed("copywriting is not configured")
        return self.copywriter

    def _require_transcript(self, entity_id: str, purpose: str) -> VideoEntity:
        entity = self.store.get(entity_id)
        if entity.transcript is None:
            raise PreconditionFailed(f"{entity_id}: {purpose} requires a transcript")
        return entity

    def generate_hooks(self, product_description: str, count: Optional[int] = None) -> List[str]:
        """Opening-line ideas for a product; not tied to any entity."""
        return self._require_copywriter().generate_hooks(product_description, count)

    def script_insights(self, entity_id: str) -> Any:
        """Why the entity's script sells.

        Raises:
            EntityNotFound: unknown id
            PreconditionFailed: no transcript yet
            CopywritingFailed: no usable answer from the model
        """
        copywriter = self._require_copywriter()
        entity = self._require_transcript(entity_id, "script insights")
        logger.info("[pipeline] %s: script insights", entity_id)
        return copywriter.analyze_insights(entity.transcript or "")

    def rewrite_script(self, entity_id: str) -> str:
        """A more direct selling rewrite of the entity's transcript.

        Raises:
            EntityNotFound: unknown id
            PreconditionFailed: no transcript yet
            CopywritingFailed: no usable answer from the model
        """
        copywriter = self._require_copywriter()
        entity = self._require_transcript(entity_id, "script rewrite")
        logger.info("[pipeline] %s: rewriting script", entity_id)
        return copywriter.rewrite_script(entity.transcript or "")

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for every run that is currently in flight."""
        with self._lock:
            runs = list(self._runs.values())
        for run in runs:
            run.wait(timeout)
            if run.thread is not None:
                run.thread.join(timeout)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _enter_stage(self, run: PipelineRun, stage: Stage) -> bool:
        """Move the run into ``stage``; False if the lease was lost to another process."""
        status = PipelineStatus.running(stage)
        latest = run.latest
        if latest is not None and latest.status == status:
            return True
        if not self.store.claim_run(run.entity_id, self.owner, status, self.lease_s):
            return False
        logger.info("[pipeline] %s: %s", run.entity_id, stage.value)
        run.publish(status)
        return True

    def _invoke(self, stage: Stage, entity: VideoEntity) -> Any:
        if stage == Stage.FETCHING:
            return self.fetcher.fetch(entity.source_url)
        if stage == Stage.TRANSCRIBING:
            return self.transcriber.transcribe(entity.media_locator or "")
        if stage == Stage.ANALYZING:
            return self.analyzer.analyze(entity.transcript or "")
        raise ValueError(f"not an automatic stage: {stage}")

    def _heartbeat(self, entity_id: str, stop: threading.Event) -> None:
        while not stop.wait(self.lease_s / 3):
            if not self.store.renew_claim(entity_id, self.owner, self.lease_s):
                logger.warning("[pipeline] %s: run lease taken over by another process", entity_id)
                return

    def _conclude(
        self,
        run: PipelineRun,
        final: PipelineStatus,
        message: str,
        *,
        only_if_unobserved: bool = False,
    ) -> bool:
        """Persist ``final``, unregister the run and end its observers' streams.

        Runs under the registry lock so that no caller can attach between the
        decision and the write. With ``only_if_unobserved`` nothing happens
        (and False is returned) if an observer has attached since the
        cancellation was requested.
        """
        entity_id = run.entity_id
        try:
            with self._lock:
                if only_if_unobserved and not run.cancel_requested:
                    return False
                try:
                    if not self.store.release_run(entity_id, self.owner, final):
                        logger.warning(
                            "[pipeline] %s: another process owns the run; final %s not persisted",
                            entity_id,
                            final,
                        )
                finally:
                    if self._runs.get(entity_id) is run:
                        del self._runs[entity_id]
        except Exception:
            logger.exception("[pipeline] %s: could not persist final status %s", entity_id, final)
            run.finish(final, message)
            raise
        run.finish(final, message)
        logger.info("[pipeline] %s: finished with %s", entity_id, final)
        return True

    def _execute(self, run: PipelineRun) -> None:
        entity_id = run.entity_id
        final: PipelineStatus = PipelineStatus.idle()
        message = ""
        stage: Optional[Stage] = None
        lost = False
        stop = threading.Event()
        threading.Thread(
            target=self._heartbeat,
            args=(entity_id, stop),
            name=f"ve-lease-{entity_id}",
            daemon=True,
        ).start()
        try:
            for stage in STAGE_ORDER:
                entity = self.store.get(entity_id)
                field = STAGE_FIELDS[stage]
                if getattr(entity, field) is not None:
                    continue
                if run.cancel_requested and self._conclude(
                    run, PipelineStatus.idle(), "cancelled", only_if_unobserved=True
                ):
                    logger.info("[pipeline] %s: cancelled before %s", entity_id, stage.value)
                    return

                if not self._enter_stage(run, stage):
                    lost = True
                    break
                try:
                    output = self._invoke(stage, entity)
                except StageFailed as e:
                    final, message = PipelineStatus.failed(e.stage, e.reason), str(e)
                    logger.warning("[pipeline] %s: %s failed: %s", entity_id, e.stage.value, e.reason)
                    break
                self.store.update(entity_id, **{field: output})
                logger.info("[pipeline] %s: %s done", entity_id, stage.value)
            else:
                final, message = PipelineStatus.complete(), "complete"
        except Exception as e:
            failed_stage = stage or Stage.FETCHING
            logger.exception("[pipeline] %s: unexpected error during %s", entity_id, failed_stage.value)
            final = PipelineStatus.failed(failed_stage, f"{type(e).__name__}: {e}")
            message = str(e)
        finally:
            stop.set()

        if lost:
            logger.warning("[pipeline] %s: lost the run lease before %s; following the new owner", entity_id, stage)
            self._follow(run)
            return
        self._conclude(run, final, message)

    def _follow(self, run: PipelineRun) -> None:
        """Mirror a run owned by another process until it ends or its lease lapses."""
        entity_id = run.entity_id
        while True:
            with self._lock:
                stop = run.cancel_requested
                if stop and self._runs.get(entity_id) is run:
                    del self._runs[entity_id]
            if stop:
                run.finish(PipelineStatus.idle(), "cancelled")
                return

            try:
                entity = self.store.get(entity_id)
            except Exception:
                logger.exception("[pipeline] %s: could not read followed run", entity_id)
                with self._lock:
                    if self._runs.get(entity_id) is run:
                        del self._runs[entity_id]
                run.finish(PipelineStatus.idle(), "lost track of remote run")
                raise

            latest = run.latest
            if not entity.status.is_running:
                with self._lock:
                    if self._runs.get(entity_id) is run:
                        del self._runs[entity_id]
                run.finish(entity.status, "finished in another process")
                logger.info("[pipeline] %s: followed run finished with %s", entity_id, entity.status)
                return
            if latest is None or latest.status != entity.status:
                run.publish(entity.status)

            first = entity.first_missing_stage()
            status = PipelineStatus.running(first) if first is not None else entity.status
            if self.store.claim_run(entity_id, self.owner, status, self.lease_s):
                logger.warning("[pipeline] %s: lease of the other process expired; taking the run over", entity_id)
                if status != entity.status:
                    run.publish(status)
                self._execute(run)
                return
            run.wait_for_cancel(self.follow_poll_s)


def build_orchestrator(profile: Dict[str, Any], store: Optional[EntityStore] = None) -> PipelineOrchestrator:
    """Wire the production stage components from a loaded profile."""
    from ..ai import CreativeAnalyzer, ScriptCopywriter, VariantGenerator, create_llm_client
    from ..ingest import MediaFetcher
    from ..store import SqliteEntityStore
    from ..transcription import StageTranscriber

    store_cfg = profile.get("store", {})
    if store is None:
        store_path = store_cfg.get("path")
        store = SqliteEntityStore(Path(store_path) if store_path else None)
    llm = create_llm_client(profile)
    return PipelineOrchestrator(
        store,
        fetcher=MediaFetcher.from_profile(profile),
        transcriber=StageTranscriber.from_profile(profile),
        analyzer=CreativeAnalyzer.from_profile(profile, client=llm),
        variant_generator=VariantGenerator.from_profile(profile, client=llm),
        copywriter=ScriptCopywriter.from_profile(profile, client=llm),
        lease_s=float(store_cfg.get("lease_s", 120.0)),
        follow_poll_s=float(store_cfg.get("follow_poll_s", 1.0)),
    )
