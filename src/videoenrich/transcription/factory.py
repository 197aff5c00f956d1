"""Factory for creating transcriber instances.

Handles backend selection and availability checks.
"""

from __future__ import annotations

import logging
from typing import Dict

from .base import BackendNotAvailableError, Transcriber, TranscriberConfig

logger = logging.getLogger(__name__)


def get_available_backends(config: TranscriberConfig) -> Dict[str, bool]:
    """Get a dict of backends and whether they can be used with ``config``."""
    from .faster_whisper_backend import is_available

    return {
        "openai_api": bool(config.api_key),
        "faster_whisper": is_available(),
    }


def get_transcriber(config: TranscriberConfig) -> Transcriber:
    """Create a transcriber instance based on config.

    Backend selection logic:
    1. If backend="auto": hosted API when an API key is configured, else faster-whisper
    2. Otherwise: exactly the requested backend, erroring if it cannot be used

    Raises:
        BackendNotAvailableError: If the chosen backend is unavailable
        ValueError: Unknown backend name
    """
    backend = config.backend
    available = get_available_backends(config)
    logger.debug("Available transcription backends: %s", available)

    if backend == "auto":
        if available["openai_api"]:
            logger.info("Using hosted speech API backend (auto-selected, API key configured)")
            backend = "openai_api"
        elif available["faster_whisper"]:
            logger.info("Using faster-whisper backend (auto-selected, no API key)")
            backend = "faster_whisper"
        else:
            raise BackendNotAvailableError(
                "No transcription backend available. "
                "Set VE_STT_API_KEY or install faster-whisper: pip install 'videoenrich[local]'"
            )

    if backend == "openai_api":
        from .openai_api_backend import OpenAIAPITranscriber
        return OpenAIAPITranscriber(config)

    if backend == "faster_whisper":
        from .faster_whisper_backend import FasterWhisperTranscriber
        return FasterWhisperTranscriber(config)

    raise ValueError(f"Unknown backend: {backend}")
