"""Media Fetcher stage: obtain a durable local copy of a source video."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..errors import PreconditionFailed, StageFailed
from ..models import Stage
from ..retry import looks_transient, retry_call, run_with_timeout
from ..utils import state_dir
from .policy import media_key, validate_source_url
from .ytdlp_runner import DownloadError, download_url, find_existing

logger = logging.getLogger(__name__)

DownloadFn = Callable[..., Path]


def default_media_dir() -> Path:
    return state_dir() / "media"


class MediaFetcher:
    """``fetch(source_url) -> locator`` backed by yt-dlp.

    Safe to call repeatedly for the same URL: the media file name is derived
    from the URL, and an existing file is returned without downloading again.
    """

    def __init__(
        self,
        *,
        media_dir: Optional[Path] = None,
        max_attempts: int = 3,
        backoff_base_s: float = 1.0,
        backoff_max_s: float = 30.0,
        timeout_s: Optional[float] = 180.0,
        socket_timeout_s: float = 30.0,
        min_bytes: int = 1000,
        max_bytes: int = 25 * 1024 * 1024,
        download: Optional[DownloadFn] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.media_dir = Path(media_dir) if media_dir else default_media_dir()
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_base_s = backoff_base_s
        self.backoff_max_s = backoff_max_s
        self.timeout_s = timeout_s
        self.socket_timeout_s = socket_timeout_s
        self.min_bytes = int(min_bytes)
        self.max_bytes = int(max_bytes)
        self._download = download or download_url
        self._sleep = sleep

    @classmethod
    def from_profile(cls, profile: Dict[str, Any]) -> "MediaFetcher":
        cfg = profile.get("fetch", {})
        return cls(
            media_dir=Path(cfg["media_dir"]) if cfg.get("media_dir") else None,
            max_attempts=cfg.get("max_attempts", 3),
            backoff_base_s=cfg.get("backoff_base_s", 1.0),
            backoff_max_s=cfg.get("backoff_max_s", 30.0),
            timeout_s=cfg.get("timeout_s", 180.0),
            socket_timeout_s=cfg.get("socket_timeout_s", 30.0),
            min_bytes=cfg.get("min_bytes", 1000),
            max_bytes=cfg.get("max_bytes", 25 * 1024 * 1024),
        )

    def fetch(self, source_url: str) -> str:
        """Return the locator (absolute path) of the stored media for ``source_url``.

        Raises:
            StageFailed: bad URL, unsupported media, timeout or exhausted retries
        """
        try:
            url = validate_source_url(source_url)
        except PreconditionFailed as e:
            raise StageFailed(Stage.FETCHING, str(e)) from e

        key = media_key(url)
        existing = find_existing(self.media_dir, key)
        if existing is not None:
            logger.info("[fetch] reusing stored media %s for %s", existing.name, url)
            return self._checked_locator(existing)

        def attempt() -> Path:
            return run_with_timeout(
                lambda: self._download(url, self.media_dir, key, socket_timeout_s=self.socket_timeout_s),
                self.timeout_s,
            )

        def should_retry(e: BaseException) -> bool:
            if isinstance(e, TimeoutError):
                return False
            if isinstance(e, DownloadError):
                return not e.permanent and looks_transient(e)
            return looks_transient(e)

        kwargs: Dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            path = retry_call(
                attempt,
                max_attempts=self.max_attempts,
                base=self.backoff_base_s,
                maximum=self.backoff_max_s,
                retry_on=(),
                should_retry=should_retry,
                **kwargs,
            )
        except TimeoutError as e:
            logger.warning("[fetch] download timed out for %s", url)
            raise StageFailed(Stage.FETCHING, "timeout") from e
        except DownloadError as e:
            raise StageFailed(Stage.FETCHING, str(e)) from e
        except OSError as e:
            raise StageFailed(Stage.FETCHING, f"{type(e).__name__}: {e}") from e

        logger.info("[fetch] stored %s (%d bytes)", path.name, path.stat().st_size)
        return self._checked_locator(path)

    def _checked_locator(self, path: Path) -> str:
        size = path.stat().st_size
        if size < self.min_bytes:
            raise StageFailed(Stage.FETCHING, f"unsupported media: file too small ({size} bytes)")
        if size > self.max_bytes:
            raise StageFailed(
                Stage.FETCHING,
                f"unsupported media: file too large ({size / 1024 / 1024:.1f} MB)",
            )
        return str(path.resolve())
