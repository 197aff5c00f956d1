"""yt-dlp download runner.

Downloads a single video to ``<output_dir>/<key>.<ext>``, preferring an mp4
that the hosted speech API accepts directly.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Optional

from .policy import SiteType, classify_url_heuristic

logger = logging.getLogger(__name__)

MEDIA_EXTS = (".mp4", ".m4a", ".webm", ".mov", ".mkv", ".mp3")

# Upstream answers that no amount of retrying will fix.
_PERMANENT_INDICATORS = (
    "unsupported url",
    "404",
    "not found",
    "private",
    "removed",
    "unavailable",
    "login required",
    "copyright",
)

# "HTTP Error 503: Service Unavailable" must not read as a removed video.
_RETRYABLE_HTTP = re.compile(r"http error (429|5\d\d)")


class DownloadError(Exception):
    """Raised when yt-dlp cannot produce a media file."""

    def __init__(self, message: str, *, permanent: bool = False):
        super().__init__(message)
        self.permanent = permanent


class _NoopYtDlpLogger:
    def debug(self, msg: str) -> None:
        pass

    def warning(self, msg: str) -> None:
        pass

    def error(self, msg: str) -> None:
        pass


def is_permanent_error(error: BaseException) -> bool:
    text = str(error).lower()
    if _RETRYABLE_HTTP.search(text):
        return False
    return any(indicator in text for indicator in _PERMANENT_INDICATORS)


def find_existing(output_dir: Path, key: str) -> Optional[Path]:
    """Return a previously downloaded media file for ``key``, if any."""
    for ext in MEDIA_EXTS:
        candidate = output_dir / f"{key}{ext}"
        if candidate.is_file():
            return candidate
    return None


def _format_selector(site_type: SiteType) -> str:
    if site_type == SiteType.YOUTUBE:
        # Only the audio track matters downstream; cap the video to keep uploads small.
        return "best[ext=mp4][height<=720]/bestvideo[height<=720]+bestaudio/best"
    return "best[ext=mp4]/bestvideo+bestaudio/best"


def download_url(
    url: str,
    output_dir: Path,
    key: str,
    *,
    socket_timeout_s: float = 30.0,
) -> Path:
    """Download ``url`` with yt-dlp and return the stored media path.

    Args:
        url: The source URL
        output_dir: Directory the media file is written into
        key: Stable file stem (see :func:`videoenrich.ingest.policy.media_key`)
        socket_timeout_s: Per-socket read timeout handed to yt-dlp

    Raises:
        DownloadError: yt-dlp failed or produced no file
    """
    from yt_dlp import YoutubeDL

    output_dir.mkdir(parents=True, exist_ok=True)
    site_type = classify_url_heuristic(url)

    def progress_hook(d: dict[str, Any]) -> None:
        if d.get("status") == "finished":
            logger.debug("[fetch] yt-dlp finished %s", d.get("filename"))

    ydl_opts: dict[str, Any] = {
        "outtmpl": str(output_dir / f"{key}.%(ext)s"),
        "noplaylist": True,
        "format": _format_selector(site_type),
        "merge_output_format": "mp4",
        "progress_hooks": [progress_hook],
        "socket_timeout": socket_timeout_s,
        # yt-dlp writes straight to stdout/stderr otherwise.
        "logger": _NoopYtDlpLogger(),
        "quiet": True,
        "no_warnings": True,
        "noprogress": True,
    }

    try:
        with YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(url, download=True)
    except Exception as e:
        _cleanup_partials(output_dir, key)
        raise DownloadError(f"Download failed: {e}", permanent=is_permanent_error(e)) from e

    if not info:
        raise DownloadError("Download failed: no metadata returned", permanent=True)

    path = find_existing(output_dir, key)
    if path is None:
        raise DownloadError("No media file found after download")
    return path


def _cleanup_partials(output_dir: Path, key: str) -> None:
    for pattern in (f"{key}*.part*", f"{key}*.ytdl"):
        for partial in output_dir.glob(pattern):
            try:
                partial.unlink()
            except OSError:
                logger.debug("[fetch] could not remove partial file %s", partial)
