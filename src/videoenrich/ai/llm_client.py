"""HTTP client for an OpenAI-compatible chat completion service.

Provides a simple interface to call a hosted (or local) language model over
HTTP with JSON output enforcement, and classifies upstream failures so the
stage components can decide what to retry.
"""
from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from ..profile import llm_api_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LLMClientConfig:
    """Endpoint, credentials and sampling defaults for the chat client."""
    endpoint: str = "https://api.openai.com"
    api_key: Optional[str] = None
    timeout_s: float = 60.0
    max_tokens: int = 1024
    temperature: float = 0.3
    model_name: str = "gpt-4o-mini"

    @classmethod
    def from_profile(cls, llm_cfg: Dict[str, Any], *, api_key: Optional[str] = None) -> "LLMClientConfig":
        return cls(
            endpoint=str(llm_cfg.get("endpoint", "https://api.openai.com")),
            api_key=api_key,
            timeout_s=float(llm_cfg.get("timeout_s", 60.0)),
            max_tokens=int(llm_cfg.get("max_tokens", 1024)),
            model_name=str(llm_cfg.get("model_name", "gpt-4o-mini")),
        )


class LLMClientError(Exception):
    """Any failure talking to the chat completion service."""


class LLMServerUnavailableError(LLMClientError):
    """Raised when the LLM server is not reachable or answers with a 5xx."""


class LLMRateLimitError(LLMClientError):
    """HTTP 429: too many requests."""


class LLMQuotaExceededError(LLMClientError):
    """HTTP 402: credits or quota exhausted."""


class LLMAuthError(LLMClientError):
    """HTTP 401/403: missing or rejected API key."""


class LLMRequestRejectedError(LLMClientError):
    """Any other 4xx: the service refused the request as sent."""


class LLMResponseError(LLMClientError):
    """Reply arrived but could not be used (non-JSON body, wrong shape, no JSON in the text)."""


# Worth another attempt after a backoff.
TRANSIENT_LLM_ERRORS = (LLMServerUnavailableError, LLMRateLimitError)


_FENCED = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)
_OBJECT = re.compile(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}", re.DOTALL)
_ARRAY = re.compile(r"\[[\s\S]*\]")


def _json_candidates(text: str) -> Iterator[str]:
    yield text
    for pattern in (_FENCED, _OBJECT, _ARRAY):
        m = pattern.search(text)
        if m:
            yield (m.group(1) if m.groups() else m.group(0)).strip()


def parse_json_reply(text: str) -> Any:
    """Pull a JSON value out of a model reply.

    Models wrap their JSON in markdown fences or chatter around it; try the
    whole reply first, then a fenced block, then the first object, then an array.
    """
    text = text.strip()
    for candidate in _json_candidates(text):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise LLMResponseError(f"Could not extract JSON from response: {text[:200]}...")


def _error_for_status(status: int, detail: str) -> LLMClientError:
    if status == 429:
        return LLMRateLimitError(f"rate limited (429): {detail}")
    if status == 402:
        return LLMQuotaExceededError(f"quota exhausted (402): {detail}")
    if status in (401, 403):
        return LLMAuthError(f"not authorized ({status}): {detail}")
    if status >= 500:
        return LLMServerUnavailableError(f"LLM server error ({status}): {detail}")
    return LLMRequestRejectedError(f"LLM request rejected ({status}): {detail}")


class LLMClient:
    """HTTP client for an OpenAI-compatible ``/v1/chat/completions`` endpoint."""

    def __init__(self, cfg: LLMClientConfig):
        self.cfg = cfg

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.cfg.api_key:
            headers["Authorization"] = f"Bearer {self.cfg.api_key}"
        return headers

    def complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = True,
    ) -> Any:
        """Run one chat completion and return the reply.

        With ``json_mode`` (the default) the reply is parsed with
        :func:`parse_json_reply`; otherwise the raw text comes back.
        Failures surface as the ``LLM*Error`` classes above, mapped from the
        HTTP status; only :data:`TRANSIENT_LLM_ERRORS` are worth retrying.
        """
        temp = temperature if temperature is not None else self.cfg.temperature
        tokens = max_tokens if max_tokens is not None else self.cfg.max_tokens

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        body: Dict[str, Any] = {
            "model": self.cfg.model_name,
            "messages": messages,
            "temperature": temp,
            "max_tokens": tokens,
            "stream": False,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        url = f"{self.cfg.endpoint.rstrip('/')}/v1/chat/completions"
        req = urllib.request.Request(
            url,
            data=json.dumps(body).encode("utf-8"),
            headers=self._headers(),
            method="POST",
        )

        try:
            with urllib.request.urlopen(req, timeout=self.cfg.timeout_s) as resp:
                response_data = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            detail = ""
            try:
                detail = e.read().decode("utf-8", errors="replace")[:300]
            except OSError:
                pass
            raise _error_for_status(e.code, detail or str(e.reason)) from e
        except urllib.error.URLError as e:
            raise LLMServerUnavailableError(f"LLM server unavailable: {e}") from e
        except TimeoutError as e:
            raise LLMServerUnavailableError(f"LLM server timeout: {e}") from e
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"LLM server returned non-JSON body: {e}") from e

        try:
            content = response_data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMResponseError(f"Invalid response structure: {e}") from e

        if not json_mode:
            return content
        if not isinstance(content, str):
            raise LLMResponseError("Response content is not text")
        return parse_json_reply(content)


def create_llm_client(profile: Dict[str, Any]) -> LLMClient:
    """Create an LLM client from the profile's ``llm`` section and the environment."""
    cfg = LLMClientConfig.from_profile(profile.get("llm", {}), api_key=llm_api_key())
    if not cfg.api_key:
        logger.warning("No LLM API key configured (VE_LLM_API_KEY / OPENAI_API_KEY)")
    return LLMClient(cfg)
