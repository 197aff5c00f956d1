"""Data models for the enrichment pipeline.

The per-entity status is a single closed tagged union (:class:`PipelineStatus`)
and :class:`VideoEntity` refuses illegal combinations of stage outputs, so
callers never have to reconcile loose flags.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvariantViolation
from .utils import utc_iso as _utc_iso


class Stage(str, Enum):
    """One of the four sequential operations applied to a video entity."""
    FETCHING = "fetching"
    TRANSCRIBING = "transcribing"
    ANALYZING = "analyzing"
    GENERATING_VARIANTS = "generating_variants"


class StatusKind(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    TRANSCRIBING = "transcribing"
    ANALYZING = "analyzing"
    GENERATING_VARIANTS = "generating_variants"
    COMPLETE = "complete"
    FAILED = "failed"


class Intensity(str, Enum):
    """How far a variant may drift from the original script."""
    LIGHT = "light"
    MEDIUM = "medium"
    AGGRESSIVE = "aggressive"


# Automatic sequence; variant generation is on demand only.
STAGE_ORDER: tuple[Stage, ...] = (Stage.FETCHING, Stage.TRANSCRIBING, Stage.ANALYZING)

STAGE_FIELDS: dict[Stage, str] = {
    Stage.FETCHING: "media_locator",
    Stage.TRANSCRIBING: "transcript",
    Stage.ANALYZING: "analysis",
}

_RUNNING_KINDS = {
    StatusKind.FETCHING,
    StatusKind.TRANSCRIBING,
    StatusKind.ANALYZING,
    StatusKind.GENERATING_VARIANTS,
}


@dataclass(frozen=True)
class PipelineStatus:
    """Idle | Fetching | Transcribing | Analyzing | GeneratingVariants | Complete | Failed(stage, reason)."""
    kind: StatusKind
    stage: Optional[Stage] = None  # only for FAILED
    reason: Optional[str] = None   # only for FAILED

    def __post_init__(self) -> None:
        if self.kind == StatusKind.FAILED:
            if self.stage is None or not self.reason:
                raise InvariantViolation("failed status requires a stage and a reason")
        elif self.stage is not None or self.reason is not None:
            raise InvariantViolation(f"{self.kind.value} status carries no stage or reason")

    @classmethod
    def idle(cls) -> "PipelineStatus":
        return cls(StatusKind.IDLE)

    @classmethod
    def complete(cls) -> "PipelineStatus":
        return cls(StatusKind.COMPLETE)

    @classmethod
    def running(cls, stage: Stage) -> "PipelineStatus":
        return cls(StatusKind(stage.value))

    @classmethod
    def failed(cls, stage: Stage, reason: str) -> "PipelineStatus":
        return cls(StatusKind.FAILED, stage=stage, reason=reason)

    @property
    def is_running(self) -> bool:
        return self.kind in _RUNNING_KINDS

    @property
    def is_terminal(self) -> bool:
        return self.kind in (StatusKind.COMPLETE, StatusKind.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"state": self.kind.value}
        if self.kind == StatusKind.FAILED:
            d["stage"] = self.stage.value if self.stage else None
            d["reason"] = self.reason
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PipelineStatus":
        kind = StatusKind(d.get("state", "idle"))
        if kind == StatusKind.FAILED:
            return cls.failed(Stage(d["stage"]), str(d.get("reason") or "unknown"))
        return cls(kind)

    def __str__(self) -> str:
        if self.kind == StatusKind.FAILED:
            return f"failed({self.stage.value if self.stage else '?'}, {self.reason})"
        return self.kind.value


@dataclass
class Analysis:
    """Hook / body / call-to-action breakdown of a script."""
    hook: str
    body: str
    cta: str
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"hook": self.hook, "body": self.body, "cta": self.cta}
        if self.tags:
            d["tags"] = list(self.tags)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Analysis":
        return cls(
            hook=str(d.get("hook", "")),
            body=str(d.get("body", "")),
            cta=str(d.get("cta", "")),
            tags=[str(t) for t in d.get("tags") or []],
        )


@dataclass
class Variant:
    """An alternative rewrite of the script."""
    hook: str
    body: str
    cta: str
    strategy_note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"hook": self.hook, "body": self.body, "cta": self.cta}
        if self.strategy_note:
            d["strategy_note"] = self.strategy_note
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Variant":
        return cls(
            hook=str(d.get("hook", "")),
            body=str(d.get("body", "")),
            cta=str(d.get("cta", "")),
            strategy_note=d.get("strategy_note"),
        )


@dataclass
class VideoEntity:
    """The unit of work: one video and its accumulated pipeline outputs."""
    id: str
    source_url: str
    media_locator: Optional[str] = None
    transcript: Optional[str] = None
    analysis: Optional[Analysis] = None
    variants: Optional[List[Variant]] = None
    status: PipelineStatus = field(default_factory=PipelineStatus.idle)
    created_at: str = field(default_factory=_utc_iso)
    updated_at: str = field(default_factory=_utc_iso)

    def validate(self) -> None:
        """Raise InvariantViolation if stage outputs were acquired out of order."""
        if self.transcript is not None and self.media_locator is None:
            raise InvariantViolation(f"{self.id}: transcript set before media_locator")
        if self.analysis is not None and self.transcript is None:
            raise InvariantViolation(f"{self.id}: analysis set before transcript")
        if self.variants is not None and self.transcript is None:
            raise InvariantViolation(f"{self.id}: variants set before transcript")
        if self.status.kind == StatusKind.COMPLETE and not self.is_fully_processed:
            raise InvariantViolation(f"{self.id}: complete status with missing stage outputs")

    @property
    def is_fully_processed(self) -> bool:
        """All three automatic stages have cached output."""
        return self.first_missing_stage() is None

    def first_missing_stage(self) -> Optional[Stage]:
        for stage in STAGE_ORDER:
            if getattr(self, STAGE_FIELDS[stage]) is None:
                return stage
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_url": self.source_url,
            "media_locator": self.media_locator,
            "transcript": self.transcript,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "variants": [v.to_dict() for v in self.variants] if self.variants is not None else None,
            "status": self.status.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VideoEntity":
        analysis = d.get("analysis")
        variants = d.get("variants")
        return cls(
            id=str(d["id"]),
            source_url=str(d["source_url"]),
            media_locator=d.get("media_locator"),
            transcript=d.get("transcript"),
            analysis=Analysis.from_dict(analysis) if analysis else None,
            variants=[Variant.from_dict(v) for v in variants] if variants is not None else None,
            status=PipelineStatus.from_dict(d.get("status") or {}),
            created_at=str(d.get("created_at") or _utc_iso()),
            updated_at=str(d.get("updated_at") or _utc_iso()),
        )


@dataclass
class StatusUpdate:
    """One event on a run's status stream."""
    entity_id: str
    status: PipelineStatus
    message: str = ""
    seq: int = 0
    at: str = field(default_factory=_utc_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "status": self.status.to_dict(),
            "message": self.message,
            "seq": self.seq,
            "at": self.at,
        }
