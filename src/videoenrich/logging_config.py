"""Logging setup for VideoEnrich.

Call :func:`setup_logging` once at startup (the CLI does); modules log through
``logging.getLogger(__name__)`` and inherit the ``videoenrich`` handlers.

Environment:
    VE_LOG_LEVEL            default level when none is passed (e.g. "DEBUG")
    VE_LOG_MODULE_LEVELS    per-module overrides, e.g. "pipeline=DEBUG,ai=WARNING"
"""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from typing import Dict, Optional, Union

from .utils import state_dir

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"

# Chatty at INFO; their useful failures surface through our own error handling.
_NOISY_LIBRARIES = ("urllib3", "httpx", "httpcore", "faster_whisper", "uvicorn.access")

_CONFIGURED = False


def default_log_path() -> Path:
    return state_dir() / "logs" / "videoenrich.log"


def _coerce_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = os.getenv("VE_LOG_LEVEL") or logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _parse_module_levels(value: str) -> Dict[str, int]:
    """Parse ``VE_LOG_MODULE_LEVELS``.

    Entries are separated by comma or semicolon and assigned with "=" or ":".
    Names not starting with "videoenrich" get that prefix; entries with an
    unknown level are ignored.
    """
    out: Dict[str, int] = {}
    for part in re.split(r"[;,]+", value or ""):
        name, sep, level_str = part.replace(":", "=", 1).partition("=")
        name = name.strip()
        level = getattr(logging, level_str.strip().upper(), None) if sep else None
        if not name or not isinstance(level, int):
            continue
        if not name.startswith("videoenrich"):
            name = f"videoenrich.{name}"
        out[name] = level
    return out


def setup_logging(
    level: Union[int, str, None] = None,
    log_file: Optional[Path] = None,
    format_string: Optional[str] = None,
) -> None:
    """Configure the ``videoenrich`` logger (stderr, plus ``log_file`` if given).

    Only the first call has an effect.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    formatter = logging.Formatter(format_string or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    logger = logging.getLogger("videoenrich")
    logger.setLevel(_coerce_level(level))
    logger.handlers.clear()

    # Handlers stay at DEBUG so per-module overrides can go below the package level.
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False

    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    for name, lvl in _parse_module_levels(os.getenv("VE_LOG_MODULE_LEVELS", "")).items():
        logging.getLogger(name).setLevel(lvl)

    _CONFIGURED = True

