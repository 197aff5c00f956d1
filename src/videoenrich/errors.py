"""Failure taxonomy for the enrichment pipeline.

Stage components raise :class:`StageFailed` with the stage identity and a
human-readable reason; the orchestrator persists that verbatim as the entity
status. Everything else here is raised synchronously to the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Stage


class PipelineError(Exception):
    """Base exception for pipeline errors."""
    pass


class StageFailed(PipelineError):
    """A stage gave up: permanent upstream failure, timeout, or exhausted retries."""

    def __init__(self, stage: "Stage", reason: str):
        self.stage = stage
        self.reason = reason
        super().__init__(f"{stage.value}: {reason}")


class TransientUpstreamError(PipelineError):
    """Network blip or rate limit; retried inside the owning stage only."""
    pass


class PreconditionFailed(PipelineError):
    """Request rejected before any remote call was made."""
    pass


class EntityNotFound(PipelineError, KeyError):
    """No entity with the given id."""

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(entity_id)

    def __str__(self) -> str:
        return f"entity not found: {self.entity_id}"


class InvariantViolation(PipelineError, ValueError):
    """An update would produce an illegal VideoEntity."""
    pass


class NoVariantsGenerated(PipelineError):
    """Variant generation was requested but every attempt failed."""

    def __init__(self, requested: int, errors: list[str]):
        self.requested = requested
        self.errors = errors
        detail = "; ".join(errors[:3]) if errors else "no usable output"
        super().__init__(f"no variants generated out of {requested} requested ({detail})")


class CopywritingFailed(PipelineError):
    """An on-demand copywriting request (hooks, insights, rewrite) got no usable answer."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation}: {reason}")
