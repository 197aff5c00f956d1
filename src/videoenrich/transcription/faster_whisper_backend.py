"""faster-whisper backend.

Local CTranslate2-based transcription for installs without a hosted speech
API key. Installed through the ``local`` extra.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, List

from .base import (
    BackendNotAvailableError,
    BaseTranscriber,
    TranscriberConfig,
    TranscriptResult,
    TranscriptSegment,
)

logger = logging.getLogger(__name__)


def is_available() -> bool:
    """True when the optional ``faster_whisper`` package can be imported."""
    try:
        from faster_whisper import WhisperModel  # noqa: F401
        return True
    except ImportError:
        return False


class FasterWhisperTranscriber(BaseTranscriber):
    """Local fallback used when no hosted speech API key is configured."""

    def __init__(self, config: TranscriberConfig):
        super().__init__(config)

        if not is_available():
            raise BackendNotAvailableError(
                "faster-whisper is not installed. Install with: pip install 'videoenrich[local]'"
            )

    @property
    def backend_name(self) -> str:
        return "faster_whisper"

    def _load_model(self) -> Any:
        from faster_whisper import WhisperModel

        cpu_threads = os.cpu_count() or 4
        logger.info(
            "Loading faster-whisper model: %s on cpu (%s, %d threads)",
            self.config.local_model,
            self.config.compute_type,
            cpu_threads,
        )
        return WhisperModel(
            self.config.local_model,
            device="cpu",
            compute_type=self.config.compute_type,
            cpu_threads=cpu_threads,
        )

    def transcribe(self, audio_path: Path) -> TranscriptResult:
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        model = self.ensure_model_loaded()

        logger.info(
            "faster-whisper transcribing %s (language=%s vad=%s)",
            audio_path.name,
            self.config.language or "auto",
            self.config.vad_filter,
        )

        segments_iter, info = model.transcribe(
            str(audio_path),
            language=self.config.language,
            vad_filter=self.config.vad_filter,
        )

        segments: List[TranscriptSegment] = []
        last_end = 0.0
        for seg in segments_iter:
            text = (seg.text or "").strip()
            if not text:
                continue
            last_end = max(last_end, float(seg.end))
            segments.append(TranscriptSegment(start=float(seg.start), end=float(seg.end), text=text))

        return TranscriptResult(
            segments=segments,
            language=getattr(info, "language", None) or self.config.language,
            duration_seconds=last_end,
            backend_used=self.backend_name,
        )
