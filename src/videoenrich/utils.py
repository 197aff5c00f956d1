"""Shared utility functions for VideoEnrich.

This module provides common utilities used across multiple modules:
- utc_iso(): UTC timestamp in ISO format
- state_dir(): per-user directory for the store and media files
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path


def utc_iso() -> str:
    """Return current UTC time in ISO 8601 format.
    
    Returns:
        ISO formatted timestamp string like '2024-01-15T10:30:00+00:00'
    """
    return datetime.now(timezone.utc).isoformat()


def state_dir() -> Path:
    """Per-user state directory (store database, downloaded media)."""
    if os.name == "nt":
        base = os.getenv("APPDATA")
        if base:
            return Path(base) / "VideoEnrich"
        return Path.home() / "AppData" / "Roaming" / "VideoEnrich"
    return Path.home() / ".videoenrich"


def truncate(text: str, max_chars: int = 80) -> str:
    """Shorten text for log lines."""
    text = " ".join((text or "").split())
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3].rstrip() + "..."
