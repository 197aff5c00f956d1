"""Transcription engine abstraction layer.

Provides a pluggable backend for speech-to-text transcription:
- hosted speech API (OpenAI-compatible ``whisper-1``) over HTTP
- faster-whisper (CTranslate2, local CPU) via the ``local`` extra

Usage:
    from videoenrich.transcription import StageTranscriber, TranscriberConfig

    stage = StageTranscriber(TranscriberConfig(backend="openai_api", api_key="..."), timeout_s=300)
    text = stage.transcribe("/path/to/media.mp4")
"""

from .base import (
    BackendNotAvailableError,
    Transcriber,
    TranscriberConfig,
    TranscriberError,
    TranscriptionRequestError,
    TranscriptResult,
    TranscriptSegment,
)
from .factory import get_available_backends, get_transcriber
from .stage import StageTranscriber

__all__ = [
    "BackendNotAvailableError",
    "Transcriber",
    "TranscriberConfig",
    "TranscriberError",
    "TranscriptionRequestError",
    "TranscriptResult",
    "TranscriptSegment",
    "get_available_backends",
    "get_transcriber",
    "StageTranscriber",
]
