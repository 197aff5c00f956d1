"""Base types and protocol for transcription backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Protocol, runtime_checkable


class TranscriberError(RuntimeError):
    """Base error for transcription failures."""
    pass


class BackendNotAvailableError(TranscriberError):
    """Raised when a requested backend is not installed or not configured."""
    pass


class TranscriptionRequestError(TranscriberError):
    """A hosted speech-to-text request failed."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, transient: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


@dataclass
class TranscriptSegment:
    """A segment of transcribed speech."""
    start: float
    end: float
    text: str


@dataclass
class TranscriptResult:
    """Result of a transcription operation."""
    segments: List[TranscriptSegment]
    language: Optional[str] = None
    duration_seconds: float = 0.0
    backend_used: str = ""

    @property
    def text(self) -> str:
        """Verbatim transcript: segment texts joined by single spaces."""
        return " ".join(s.text.strip() for s in self.segments if s.text and s.text.strip())


BackendType = Literal["openai_api", "faster_whisper", "auto"]


@dataclass
class TranscriberConfig:
    """Configuration for the transcription engine.

    Attributes:
        backend: Which engine to use ("openai_api", "faster_whisper", "auto")
        model: Hosted model name ("whisper-1")
        local_model: faster-whisper model size ("tiny", "base", "small", ...)
        language: Language code (None for auto-detect)
        endpoint: Base URL of the hosted speech API
        api_key: Bearer token for the hosted speech API
        request_timeout_s: HTTP timeout for a single upload request
        compute_type: Compute type for faster-whisper ("int8", "float16", etc.)
        vad_filter: Use voice activity detection to filter silence (faster-whisper)
    """
    backend: BackendType = "auto"
    model: str = "whisper-1"
    local_model: str = "small"
    language: Optional[str] = "es"
    endpoint: str = "https://api.openai.com"
    api_key: Optional[str] = None
    request_timeout_s: float = 300.0
    compute_type: str = "int8"
    vad_filter: bool = True

    @classmethod
    def from_profile(cls, cfg: Dict[str, Any], *, api_key: Optional[str] = None) -> "TranscriberConfig":
        """Create config from the profile's ``transcribe`` section."""
        return cls(
            backend=cfg.get("backend", "auto"),
            model=cfg.get("model", "whisper-1"),
            local_model=cfg.get("local_model", "small"),
            language=cfg.get("language", "es"),
            endpoint=cfg.get("endpoint", "https://api.openai.com"),
            api_key=api_key,
            request_timeout_s=float(cfg.get("timeout_s", 300.0)),
            compute_type=cfg.get("compute_type", "int8"),
            vad_filter=cfg.get("vad_filter", True),
        )


@runtime_checkable
class Transcriber(Protocol):
    """Anything that turns a media file into timed speech segments."""

    @property
    def backend_name(self) -> str:
        """Short id recorded in ``TranscriptResult.backend_used``."""
        ...

    def transcribe(self, audio_path: Path) -> TranscriptResult:
        """Transcribe a downloaded video (or audio) file. Raises ``TranscriberError`` subclasses on failure."""
        ...


class BaseTranscriber(ABC):
    """Shared plumbing for backends: config plus a lazily loaded model."""

    def __init__(self, config: TranscriberConfig):
        self.config = config
        self._model = None

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Name of this backend."""
        pass

    def _load_model(self) -> Any:
        """Load the transcription model (local backends only)."""
        return None

    @abstractmethod
    def transcribe(self, audio_path: Path) -> TranscriptResult:
        """Transcribe an audio file."""
        pass

    def ensure_model_loaded(self) -> Any:
        """Return the model, loading it on first use."""
        if self._model is None:
            self._model = self._load_model()
        return self._model
