"""Hosted speech-to-text backend (OpenAI-compatible ``/v1/audio/transcriptions``)."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any, List

import requests

from .base import (
    BackendNotAvailableError,
    BaseTranscriber,
    TranscriberConfig,
    TranscriptionRequestError,
    TranscriptResult,
    TranscriptSegment,
)

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = {408, 409, 429, 500, 502, 503, 504}


class OpenAIAPITranscriber(BaseTranscriber):
    """Uploads the media file and returns the verbose JSON transcript."""

    def __init__(self, config: TranscriberConfig):
        super().__init__(config)
        if not config.api_key:
            raise BackendNotAvailableError(
                "Hosted speech API requires an API key. Set VE_STT_API_KEY or OPENAI_API_KEY."
            )

    @property
    def backend_name(self) -> str:
        return "openai_api"

    def _url(self) -> str:
        return f"{self.config.endpoint.rstrip('/')}/v1/audio/transcriptions"

    def transcribe(self, audio_path: Path) -> TranscriptResult:
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        mime = mimetypes.guess_type(audio_path.name)[0] or "video/mp4"
        data: dict[str, Any] = {
            "model": self.config.model,
            "response_format": "verbose_json",
        }
        if self.config.language:
            data["language"] = self.config.language

        logger.info(
            "Transcribing via %s: %s (%.1f MB, lang=%s)",
            self.config.model,
            audio_path.name,
            audio_path.stat().st_size / 1024 / 1024,
            self.config.language or "auto-detect",
        )

        try:
            with audio_path.open("rb") as handle:
                resp = requests.post(
                    self._url(),
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                    data=data,
                    files={"file": (audio_path.name, handle, mime)},
                    timeout=self.config.request_timeout_s,
                )
        except requests.Timeout as e:
            raise TimeoutError(f"speech API timed out: {e}") from e
        except requests.RequestException as e:
            raise TranscriptionRequestError(f"speech API unreachable: {e}", transient=True) from e

        if resp.status_code != 200:
            raise TranscriptionRequestError(
                f"speech_api_failed: {resp.status_code} {resp.text[:300]}",
                status_code=resp.status_code,
                transient=resp.status_code in _TRANSIENT_STATUS,
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise TranscriptionRequestError("speech API returned non-JSON body") from e

        return self._parse(payload)

    def _parse(self, payload: dict[str, Any]) -> TranscriptResult:
        segments: List[TranscriptSegment] = []
        for seg in payload.get("segments") or []:
            text = str(seg.get("text") or "").strip()
            if text:
                segments.append(
                    TranscriptSegment(
                        start=float(seg.get("start", 0.0)),
                        end=float(seg.get("end", 0.0)),
                        text=text,
                    )
                )
        if not segments:
            # Plain "json" responses and some compatible servers return only "text".
            text = str(payload.get("text") or "").strip()
            if text:
                segments.append(TranscriptSegment(start=0.0, end=float(payload.get("duration") or 0.0), text=text))

        return TranscriptResult(
            segments=segments,
            language=payload.get("language") or self.config.language,
            duration_seconds=float(payload.get("duration") or 0.0),
            backend_used=self.backend_name,
        )
