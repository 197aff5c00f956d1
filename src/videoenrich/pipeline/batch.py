"""Batch runner: push every unfinished entity through the pipeline."""

from __future__ import annotations

import concurrent.futures
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models import PipelineStatus, StatusKind
from .orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    results: Dict[str, PipelineStatus] = field(default_factory=dict)

    @property
    def counts(self) -> Dict[str, int]:
        return dict(Counter(status.kind.value for status in self.results.values()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": len(self.results),
            "counts": self.counts,
            "results": {entity_id: status.to_dict() for entity_id, status in self.results.items()},
        }


def select_pending(orchestrator: PipelineOrchestrator, limit: int) -> List[str]:
    """Ids of up to ``limit`` entities that are neither complete nor running here."""
    store: Any = orchestrator.store
    candidates = store.list_entities(exclude_states=[StatusKind.COMPLETE], limit=max(limit * 4, limit))
    selected: List[str] = []
    for entity in candidates:
        if orchestrator.active_run(entity.id) is not None:
            continue
        selected.append(entity.id)
        if len(selected) >= limit:
            break
    return selected


def run_batch(
    orchestrator: PipelineOrchestrator,
    *,
    limit: int = 5,
    max_workers: int = 2,
    timeout_s: Optional[float] = None,
) -> BatchResult:
    """Run up to ``limit`` pending entities with at most ``max_workers`` in flight."""
    entity_ids = select_pending(orchestrator, max(0, int(limit)))
    result = BatchResult()
    if not entity_ids:
        logger.info("[batch] nothing to process")
        return result

    logger.info("[batch] processing %d entities with %d workers", len(entity_ids), max_workers)

    def process(entity_id: str) -> PipelineStatus:
        handle = orchestrator.run(entity_id)
        status = handle.wait(timeout_s)
        if status is None:
            # Still running; report what it is doing right now.
            return handle.status or orchestrator.get_status(entity_id)
        return status

    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, int(max_workers))) as executor:
        futures = {executor.submit(process, entity_id): entity_id for entity_id in entity_ids}
        for future in concurrent.futures.as_completed(futures):
            entity_id = futures[future]
            status = future.result()
            result.results[entity_id] = status
            logger.info("[batch] %s -> %s", entity_id, status)

    logger.info("[batch] done: %s", result.counts)
    return result
