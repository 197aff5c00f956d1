"""URL classification and media key derivation."""

from __future__ import annotations

import hashlib
import re
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from ..errors import PreconditionFailed


class SiteType(str, Enum):
    """Detected site type from URL."""
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    YOUTUBE = "youtube"
    GENERIC = "generic"


_TIKTOK_ID_PATTERNS = (
    re.compile(r"/video/(\d+)"),
    re.compile(r"/v/(\d+)"),
)


def classify_url_heuristic(url: str) -> SiteType:
    """Classify URL by hostname (instant, no network)."""
    try:
        host = urlparse(url).netloc.lower()
    except ValueError:
        return SiteType.GENERIC

    if "tiktok.com" in host:
        return SiteType.TIKTOK
    if "instagram.com" in host:
        return SiteType.INSTAGRAM
    if "youtube.com" in host or "youtu.be" in host:
        return SiteType.YOUTUBE
    return SiteType.GENERIC


def validate_source_url(url: str) -> str:
    """Return the stripped URL or raise PreconditionFailed if it is not http(s) with a host."""
    if not isinstance(url, str) or not url.strip():
        raise PreconditionFailed("source url is empty")
    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise PreconditionFailed(f"invalid source url: {url}") from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise PreconditionFailed(f"invalid source url: {url}")
    return url


def extract_tiktok_id(url: str) -> Optional[str]:
    """Pull the numeric video id out of a TikTok URL, if present."""
    for pattern in _TIKTOK_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def media_key(url: str) -> str:
    """Stable storage key for a source URL.

    TikTok URLs that carry a video id map to ``tiktok_<id>`` so share links
    with different query strings land on the same object. Everything else is
    keyed by a SHA-256 prefix of the stripped URL.
    """
    url = url.strip()
    if classify_url_heuristic(url) == SiteType.TIKTOK:
        video_id = extract_tiktok_id(url)
        if video_id:
            return f"tiktok_{video_id}"
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
    return f"{classify_url_heuristic(url).value}_{digest}"
