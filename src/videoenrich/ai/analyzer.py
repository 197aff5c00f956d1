"""Creative Analyzer: split a transcript into hook / body / call-to-action."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..errors import StageFailed
from ..models import Analysis, Stage
from ..retry import retry_call
from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMResponseError,
    TRANSIENT_LLM_ERRORS,
    create_llm_client,
)

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_CHARS = 12000

ANALYZER_SYSTEM_PROMPT = """You are an expert analyst of short-form social selling videos (TikTok Shop, Reels, Shorts).
You break a spoken script into its structural parts without rewriting it.

Rules:
1. hook: the opening line(s) that grab attention, usually the first 1-2 sentences
2. body: the main content (benefits, demonstration, story)
3. cta: the closing call to action; if there is none, summarize the implied next step in a few words
4. Quote the script verbatim where possible and keep its original language
5. tags: short labels for the script structure (e.g. "PAS", "AIDA", "problem-solution") and the selling angles used (e.g. "scarcity", "social proof", "before-after")

Output ONLY valid JSON matching the schema exactly. No explanation text."""

ANALYZER_USER_TEMPLATE = """Analyze this video script and split it into its structural parts.

SCRIPT:
{transcript}

Respond ONLY with JSON in exactly this format:
{{
  "hook": "...",
  "body": "...",
  "cta": "...",
  "tags": ["...", "..."]
}}"""


def parse_analysis(payload: Any) -> Optional[Analysis]:
    """Validate a model response; return None if a required field is missing or empty."""
    if not isinstance(payload, dict):
        return None
    fields: Dict[str, str] = {}
    for name in ("hook", "body", "cta"):
        value = payload.get(name)
        if not isinstance(value, str) or not value.strip():
            return None
        fields[name] = value.strip()

    tags: List[str] = []
    raw_tags = payload.get("tags")
    if isinstance(raw_tags, list):
        for tag in raw_tags:
            if isinstance(tag, str) and tag.strip() and tag.strip() not in tags:
                tags.append(tag.strip())
    return Analysis(hook=fields["hook"], body=fields["body"], cta=fields["cta"], tags=tags)


@dataclass
class CreativeAnalyzer:
    """``analyze(transcript) -> Analysis``; all-or-nothing."""

    client: LLMClient
    temperature: float = 0.3
    max_attempts: int = 3
    backoff_base_s: float = 1.0
    backoff_max_s: float = 20.0
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_profile(cls, profile: Dict[str, Any], client: Optional[LLMClient] = None) -> "CreativeAnalyzer":
        cfg = profile.get("analyze", {})
        return cls(
            client=client or create_llm_client(profile),
            temperature=float(cfg.get("temperature", 0.3)),
            max_attempts=int(cfg.get("max_attempts", 3)),
            backoff_base_s=float(cfg.get("backoff_base_s", 1.0)),
            backoff_max_s=float(cfg.get("backoff_max_s", 20.0)),
        )

    def analyze(self, transcript: str) -> Analysis:
        """Return the structured breakdown of ``transcript``.

        Raises:
            StageFailed: malformed response, permanent upstream error or exhausted retries
        """
        prompt = ANALYZER_USER_TEMPLATE.format(transcript=transcript.strip()[:MAX_TRANSCRIPT_CHARS])

        def call() -> Any:
            return self.client.complete(
                prompt,
                system_prompt=ANALYZER_SYSTEM_PROMPT,
                temperature=self.temperature,
                json_mode=True,
            )

        try:
            payload = retry_call(
                call,
                max_attempts=self.max_attempts,
                base=self.backoff_base_s,
                maximum=self.backoff_max_s,
                retry_on=TRANSIENT_LLM_ERRORS,
                sleep=self.sleep,
            )
        except LLMResponseError as e:
            logger.warning("[analyze] unparseable response: %s", e)
            raise StageFailed(Stage.ANALYZING, "malformed response") from e
        except LLMClientError as e:
            raise StageFailed(Stage.ANALYZING, str(e)) from e

        analysis = parse_analysis(payload)
        if analysis is None:
            logger.warning("[analyze] response missing required fields: %.200s", payload)
            raise StageFailed(Stage.ANALYZING, "malformed response")
        logger.info("[analyze] hook=%.60r tags=%s", analysis.hook, analysis.tags)
        return analysis
