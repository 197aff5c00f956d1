from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


def default_profile() -> Dict[str, Any]:
    return {
        "store": {
            "path": None,  # None = <state_dir>/videos.sqlite
            # Run lease shared by every process using the same database.
            "lease_s": 120.0,
            "follow_poll_s": 1.0,
        },
        "fetch": {
            "media_dir": None,  # None = <state_dir>/media
            "max_attempts": 3,
            "backoff_base_s": 1.0,
            "backoff_max_s": 30.0,
            "timeout_s": 180.0,
            "socket_timeout_s": 30.0,
            "min_bytes": 1000,
            "max_bytes": 25 * 1024 * 1024,  # hosted speech API upload limit
        },
        "transcribe": {
            "backend": "auto",  # "openai_api", "faster_whisper", or "auto"
            "model": "whisper-1",
            "local_model": "small",
            "language": "es",
            "endpoint": "https://api.openai.com",
            "timeout_s": 300.0,
            "max_attempts": 2,
            "backoff_base_s": 2.0,
            "backoff_max_s": 20.0,
        },
        "llm": {
            "endpoint": "https://api.openai.com",
            "model_name": "gpt-4o-mini",
            "timeout_s": 60.0,
            "max_tokens": 1024,
        },
        "analyze": {
            "temperature": 0.3,
            "max_attempts": 3,
            "backoff_base_s": 1.0,
            "backoff_max_s": 20.0,
        },
        "variants": {
            "max_count": 3,
            "max_attempts": 2,
            "backoff_base_s": 1.0,
            "backoff_max_s": 10.0,
        },
        "copywriting": {
            "max_hooks": 10,
            "temperature": 0.8,
            "max_attempts": 2,
            "backoff_base_s": 1.0,
            "backoff_max_s": 10.0,
        },
        "batch": {
            "limit": 5,
            "max_workers": 2,
        },
    }


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_profile(profile_path: Optional[Path]) -> Dict[str, Any]:
    """Load a YAML profile merged over :func:`default_profile`."""
    if profile_path is None:
        env_path = os.getenv("VE_PROFILE")
        if not env_path:
            return default_profile()
        profile_path = Path(env_path)

    profile_path = Path(profile_path)
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    data = yaml.safe_load(profile_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError("Profile YAML must be a mapping")
    return _merge(default_profile(), data)


def llm_api_key() -> Optional[str]:
    return os.getenv("VE_LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or None


def stt_api_key() -> Optional[str]:
    return os.getenv("VE_STT_API_KEY") or os.getenv("OPENAI_API_KEY") or None
