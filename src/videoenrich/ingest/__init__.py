"""URL ingest: site policy, yt-dlp download runner, and the Media Fetcher stage.

Usage:
    from videoenrich.ingest import MediaFetcher

    locator = MediaFetcher(media_dir=Path("media")).fetch("https://www.tiktok.com/@u/video/123")
"""

from .fetcher import MediaFetcher, default_media_dir
from .policy import (
    SiteType,
    classify_url_heuristic,
    extract_tiktok_id,
    media_key,
    validate_source_url,
)
from .ytdlp_runner import DownloadError, download_url

__all__ = [
    "MediaFetcher",
    "default_media_dir",
    "SiteType",
    "classify_url_heuristic",
    "extract_tiktok_id",
    "media_key",
    "validate_source_url",
    "DownloadError",
    "download_url",
]
