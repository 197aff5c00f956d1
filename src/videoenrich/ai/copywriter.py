"""On-demand copywriting helpers built on the LLM client.

These sit next to the Creative Analyzer and the Variant Generator but never
touch the pipeline status:

- ``generate_hooks``: scroll-stopping opening lines for a product description
- ``analyze_insights``: why a script sells (angles, structure, strengths, weaknesses)
- ``rewrite_script``: a more direct, reusable selling version of a transcript
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..errors import CopywritingFailed, PreconditionFailed
from ..retry import retry_call
from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMResponseError,
    TRANSIENT_LLM_ERRORS,
    create_llm_client,
    parse_json_reply,
)

logger = logging.getLogger(__name__)

MAX_SCRIPT_CHARS = 12000

HOOKS_SYSTEM_PROMPT = """You are a TikTok Shop copywriter. You write hooks that stop the scroll and sell.

A good hook:
- sparks immediate curiosity
- uses power words ("secret", "nobody tells you", "mistake", "free", "viral")
- appeals to fear of missing out, the wish to improve, or urgency
- is at most 15 words
- sounds natural and informal, in the same language as the product description (Mexican Spanish if unsure)
- avoids generic cliches

Formats that work: an intriguing question, a controversial statement, "POV:" or
"This is for you if...", a warning or revealed secret, a before/after transformation."""

HOOKS_USER_TEMPLATE = """Write exactly {count} different, creative hooks for this product or benefit:

{product_description}

Respond ONLY with a JSON array of {count} strings, no explanations. Example:
["Hook 1", "Hook 2"]"""

INSIGHTS_SYSTEM_PROMPT = """You analyze TikTok Shop video scripts and explain why they sell.

Respond ONLY with valid JSON in exactly this format, written in the language of the script:
{
  "works_because": "why this script works (1-2 sentences)",
  "angles": ["angle 1", "angle 2", "angle 3"],
  "cta_location": "where the call to action is and how it is delivered",
  "structure": "structure used (e.g. PAS, AIDA)",
  "strengths": ["strength 1", "strength 2", "strength 3"],
  "weaknesses": ["weakness 1", "weakness 2"]
}"""

INSIGHTS_USER_TEMPLATE = """Analyze this TikTok Shop video script.

Title: {title}

SCRIPT:
{script}"""

REWRITE_SYSTEM_PROMPT = """You are a copywriter for TikTok Shop videos that sell.

Rewrite successful scripts so that:
1. The tone is commercial and direct, as if selling straight to the viewer
2. Wording creates desire, urgency and need
3. The structure is clear: an opening hook (first 3 seconds), value and benefits,
   objection handling, and a clear, urgent call to action
4. The language is neutral but conversational, easy to adapt to any product
5. It sells openly; do not be subtle

Keep the essence of the original video so another creator can adapt it to their
product and use it as a voice-over or on-camera script. Format it in clear
sections (Hook, Development, Close) and keep the language of the original."""

REWRITE_USER_TEMPLATE = """Rewrite this TikTok Shop script so it sells harder and is easy to adapt:

{script}"""

_LIST_MARKER = re.compile(r'^[\d.\-*"\s]+')


@dataclass
class ScriptInsights:
    works_because: str
    angles: List[str] = field(default_factory=list)
    cta_location: str = ""
    structure: str = ""
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "works_because": self.works_because,
            "angles": list(self.angles),
            "cta_location": self.cta_location,
            "structure": self.structure,
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
        }


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def parse_hooks(text: str, limit: int) -> List[str]:
    """Hooks from a model reply: a JSON array (or ``{"hooks": [...]}``), else one per line."""
    try:
        payload = parse_json_reply(text)
    except LLMResponseError:
        payload = None
    if isinstance(payload, dict):
        payload = payload.get("hooks")

    if isinstance(payload, list):
        hooks = _string_list(payload)
    else:
        hooks = []
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith(("[", "]", "{", "}")):
                continue
            hook = _LIST_MARKER.sub("", line).rstrip('",').strip()
            if len(hook) > 5:
                hooks.append(hook)

    out: List[str] = []
    for hook in hooks:
        if hook not in out:
            out.append(hook)
    return out[:limit]


def parse_insights(payload: Any) -> Optional[ScriptInsights]:
    """Validate an insights reply; None when the explanation is missing."""
    if isinstance(payload, dict) and isinstance(payload.get("insights"), dict):
        payload = payload["insights"]
    if not isinstance(payload, dict):
        return None
    works = payload.get("works_because")
    if not isinstance(works, str) or not works.strip():
        return None
    return ScriptInsights(
        works_because=works.strip(),
        angles=_string_list(payload.get("angles")),
        cta_location=str(payload.get("cta_location") or "").strip(),
        structure=str(payload.get("structure") or "").strip(),
        strengths=_string_list(payload.get("strengths")),
        weaknesses=_string_list(payload.get("weaknesses")),
    )


@dataclass
class ScriptCopywriter:
    client: LLMClient
    max_hooks: int = 10
    temperature: float = 0.8
    max_attempts: int = 2
    backoff_base_s: float = 1.0
    backoff_max_s: float = 10.0
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_profile(cls, profile: Dict[str, Any], client: Optional[LLMClient] = None) -> "ScriptCopywriter":
        cfg = profile.get("copywriting", {})
        return cls(
            client=client or create_llm_client(profile),
            max_hooks=int(cfg.get("max_hooks", 10)),
            temperature=float(cfg.get("temperature", 0.8)),
            max_attempts=int(cfg.get("max_attempts", 2)),
            backoff_base_s=float(cfg.get("backoff_base_s", 1.0)),
            backoff_max_s=float(cfg.get("backoff_max_s", 10.0)),
        )

    def _complete(self, operation: str, prompt: str, system_prompt: str, **kwargs: Any) -> Any:
        try:
            return retry_call(
                lambda: self.client.complete(prompt, system_prompt=system_prompt, **kwargs),
                max_attempts=self.max_attempts,
                base=self.backoff_base_s,
                maximum=self.backoff_max_s,
                retry_on=TRANSIENT_LLM_ERRORS,
                sleep=self.sleep,
            )
        except LLMResponseError as e:
            logger.warning("[copy] %s: unparseable response: %s", operation, e)
            raise CopywritingFailed(operation, "malformed response") from e
        except LLMClientError as e:
            raise CopywritingFailed(operation, str(e)) from e

    def generate_hooks(self, product_description: str, count: Optional[int] = None) -> List[str]:
        """Return up to ``count`` distinct hooks (default ``max_hooks``).

        Raises:
            PreconditionFailed: empty description or count out of range
            CopywritingFailed: upstream error or no usable hook in the reply
        """
        count = self.max_hooks if count is None else count
        if isinstance(count, bool) or not isinstance(count, int) or not 1 <= count <= self.max_hooks:
            raise PreconditionFailed(f"count must be between 1 and {self.max_hooks}, got {count!r}")
        if not product_description or not product_description.strip():
            raise PreconditionFailed("a product description is required to generate hooks")

        logger.info("[copy] hooks for %.60r", product_description.strip())
        prompt = HOOKS_USER_TEMPLATE.format(count=count, product_description=product_description.strip())
        text = self._complete(
            "hooks", prompt, HOOKS_SYSTEM_PROMPT, temperature=self.temperature, json_mode=False
        )
        hooks = parse_hooks(str(text or ""), count)
        if not hooks:
            raise CopywritingFailed("hooks", "no usable hooks in response")
        return hooks

    def analyze_insights(self, transcript: str, *, title: Optional[str] = None) -> ScriptInsights:
        """Explain why ``transcript`` sells.

        Raises:
            PreconditionFailed: empty transcript
            CopywritingFailed: upstream error or malformed response
        """
        if not transcript or not transcript.strip():
            raise PreconditionFailed("a transcript is required for script insights")
        prompt = INSIGHTS_USER_TEMPLATE.format(
            title=(title or "untitled").strip(),
            script=transcript.strip()[:MAX_SCRIPT_CHARS],
        )
        payload = self._complete("insights", prompt, INSIGHTS_SYSTEM_PROMPT, temperature=0.3, json_mode=True)
        insights = parse_insights(payload)
        if insights is None:
            logger.warning("[copy] insights response missing fields: %.200s", payload)
            raise CopywritingFailed("insights", "malformed response")
        return insights

    def rewrite_script(self, transcript: str) -> str:
        """Return a rewritten, more direct selling script (plain text).

        Raises:
            PreconditionFailed: empty transcript
            CopywritingFailed: upstream error or empty reply
        """
        if not transcript or not transcript.strip():
            raise PreconditionFailed("a transcript is required to rewrite a script")
        prompt = REWRITE_USER_TEMPLATE.format(script=transcript.strip()[:MAX_SCRIPT_CHARS])
        text = self._complete(
            "rewrite", prompt, REWRITE_SYSTEM_PROMPT, temperature=self.temperature, json_mode=False
        )
        if not isinstance(text, str) or not text.strip():
            raise CopywritingFailed("rewrite", "empty response")
        return text.strip()
