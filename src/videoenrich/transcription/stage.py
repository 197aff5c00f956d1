"""Transcriber stage: media locator in, verbatim transcript out."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..errors import StageFailed
from ..models import Stage
from ..profile import stt_api_key
from ..retry import looks_transient, retry_call, run_with_timeout
from .base import Transcriber, TranscriberConfig, TranscriberError, TranscriptionRequestError
from .factory import get_transcriber

logger = logging.getLogger(__name__)


class StageTranscriber:
    """Wraps a backend with a caller-visible timeout and a small retry budget.

    The timeout covers the whole stage, retries included. A timeout is final
    for this invocation; the caller re-runs the pipeline to try again.
    """

    def __init__(
        self,
        config: Optional[TranscriberConfig] = None,
        *,
        backend: Optional[Transcriber] = None,
        timeout_s: Optional[float] = 300.0,
        max_attempts: int = 2,
        backoff_base_s: float = 2.0,
        backoff_max_s: float = 20.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or TranscriberConfig()
        self._backend = backend
        self._backend_lock = threading.Lock()
        self.timeout_s = timeout_s
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_base_s = backoff_base_s
        self.backoff_max_s = backoff_max_s
        self._sleep = sleep

    @classmethod
    def from_profile(cls, profile: Dict[str, Any]) -> "StageTranscriber":
        cfg = profile.get("transcribe", {})
        return cls(
            TranscriberConfig.from_profile(cfg, api_key=stt_api_key()),
            timeout_s=cfg.get("timeout_s", 300.0),
            max_attempts=cfg.get("max_attempts", 2),
            backoff_base_s=cfg.get("backoff_base_s", 2.0),
            backoff_max_s=cfg.get("backoff_max_s", 20.0),
        )

    @property
    def backend(self) -> Transcriber:
        with self._backend_lock:
            if self._backend is None:
                self._backend = get_transcriber(self.config)
            return self._backend

    def transcribe(self, media_locator: str) -> str:
        """Return the transcript text for ``media_locator``.

        Raises:
            StageFailed: timeout, empty transcript, unusable backend or exhausted retries
        """
        path = Path(media_locator)
        if not path.is_file():
            raise StageFailed(Stage.TRANSCRIBING, f"media not found: {media_locator}")

        try:
            backend = self.backend
        except TranscriberError as e:
            raise StageFailed(Stage.TRANSCRIBING, str(e)) from e

        def should_retry(e: BaseException) -> bool:
            if isinstance(e, TranscriptionRequestError):
                return e.transient
            if isinstance(e, TimeoutError):
                return False
            return looks_transient(e)

        def run_attempts():
            return retry_call(
                lambda: backend.transcribe(path),
                max_attempts=self.max_attempts,
                base=self.backoff_base_s,
                maximum=self.backoff_max_s,
                retry_on=(),
                should_retry=should_retry,
                sleep=self._sleep,
            )

        try:
            result = run_with_timeout(run_attempts, self.timeout_s)
        except TimeoutError as e:
            logger.warning("[transcribe] %s timed out (%s)", path.name, e)
            raise StageFailed(Stage.TRANSCRIBING, "timeout") from e
        except TranscriberError as e:
            raise StageFailed(Stage.TRANSCRIBING, str(e)) from e

        text = result.text.strip()
        if not text:
            raise StageFailed(Stage.TRANSCRIBING, "empty transcript")
        logger.info(
            "[transcribe] %s: %d chars via %s (lang=%s)",
            path.name,
            len(text),
            result.backend_used or backend.backend_name,
            result.language,
        )
        return text
