"""Variant Generator: alternative rewrites of a script at a chosen intensity."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..errors import NoVariantsGenerated, PreconditionFailed
from ..models import Analysis, Intensity, Variant
from ..retry import retry_call
from .llm_client import LLMClient, LLMClientError, TRANSIENT_LLM_ERRORS, create_llm_client
from .analyzer import MAX_TRANSCRIPT_CHARS

logger = logging.getLogger(__name__)

INTENSITY_TEMPERATURE: Dict[Intensity, float] = {
    Intensity.LIGHT: 0.4,
    Intensity.MEDIUM: 0.7,
    Intensity.AGGRESSIVE: 1.0,
}

INTENSITY_INSTRUCTION: Dict[Intensity, str] = {
    Intensity.LIGHT: "Keep the original structure and most of the wording; change only phrasing and emphasis.",
    Intensity.MEDIUM: "Keep the core message but rewrite the hook and body in fresh words.",
    Intensity.AGGRESSIVE: "Rewrite freely: new hook, new angle, new structure. Only the product and the facts stay.",
}

# Rotated through in order, one per variant.
STRATEGIES: List[tuple[str, str]] = [
    ("urgency", "Focus on URGENCY: scarcity, limited time, last units available, fear of missing out."),
    ("emotional", "Focus on EMOTION: personal transformation, feelings, before/after impact on the viewer's life."),
    ("commercial", "Focus on the COMMERCIAL offer: special price, irresistible deal, guarantees, social proof."),
]

VARIANTS_SYSTEM_PROMPT = """You are an expert copywriter for short-form social selling videos (TikTok Shop, Reels, Shorts).
You write scripts that sell, always structured as hook / body / call to action.

Rules:
1. hook: the first 3 seconds; must stop the scroll
2. body: benefits, demonstration, value
3. cta: a clear, direct call to action
4. Write in the same language as the original script, conversational and natural to say out loud
5. strategy_note: one sentence explaining the angle you used

Output ONLY valid JSON matching the schema exactly. No explanation text."""

VARIANTS_USER_TEMPLATE = """Rewrite this video script as ONE new variant.

ORIGINAL SCRIPT:
{transcript}
{analysis_block}{product_block}
STRATEGY: {strategy}
INTENSITY: {intensity}

Respond ONLY with JSON in exactly this format:
{{
  "hook": "...",
  "body": "...",
  "cta": "...",
  "strategy_note": "..."
}}"""


@dataclass
class Product:
    """Optional product context woven into the prompt."""
    name: str
    description: str = ""

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> Optional["Product"]:
        if not d or not str(d.get("name") or "").strip():
            return None
        return cls(name=str(d["name"]).strip(), description=str(d.get("description") or "").strip())


def parse_variant(payload: Any, strategy: str) -> Optional[Variant]:
    if not isinstance(payload, dict):
        return None
    values: Dict[str, str] = {}
    for name in ("hook", "body", "cta"):
        value = payload.get(name)
        if not isinstance(value, str) or not value.strip():
            return None
        values[name] = value.strip()
    note = payload.get("strategy_note")
    if not isinstance(note, str) or not note.strip():
        note = strategy
    return Variant(hook=values["hook"], body=values["body"], cta=values["cta"], strategy_note=note.strip())


def build_prompt(
    transcript: str,
    *,
    strategy: str,
    intensity: Intensity,
    analysis: Optional[Analysis] = None,
    product: Optional[Product] = None,
) -> str:
    analysis_block = ""
    if analysis is not None:
        analysis_block = (
            "\nCURRENT STRUCTURE:\n"
            f"HOOK: {analysis.hook}\nBODY: {analysis.body}\nCTA: {analysis.cta}\n"
        )
    product_block = ""
    if product is not None:
        product_block = f"\nPRODUCT: {product.name}\n"
        if product.description:
            product_block += f"PRODUCT DESCRIPTION: {product.description}\n"
    return VARIANTS_USER_TEMPLATE.format(
        transcript=transcript.strip()[:MAX_TRANSCRIPT_CHARS],
        analysis_block=analysis_block,
        product_block=product_block,
        strategy=strategy,
        intensity=INTENSITY_INSTRUCTION[intensity],
    )


@dataclass
class VariantGenerator:
    """One model call per requested variant; partial batches are returned as-is."""

    client: LLMClient
    max_count: int = 3
    max_attempts: int = 2
    backoff_base_s: float = 1.0
    backoff_max_s: float = 10.0
    sleep: Callable[[float], None] = time.sleep
    strategies: List[tuple[str, str]] = field(default_factory=lambda: list(STRATEGIES))

    @classmethod
    def from_profile(cls, profile: Dict[str, Any], client: Optional[LLMClient] = None) -> "VariantGenerator":
        cfg = profile.get("variants", {})
        return cls(
            client=client or create_llm_client(profile),
            max_count=int(cfg.get("max_count", 3)),
            max_attempts=int(cfg.get("max_attempts", 2)),
            backoff_base_s=float(cfg.get("backoff_base_s", 1.0)),
            backoff_max_s=float(cfg.get("backoff_max_s", 10.0)),
        )

    def check_request(self, count: int, intensity: Any) -> Intensity:
        """Validate ``count``/``intensity`` without calling anything remote."""
        if isinstance(count, bool) or not isinstance(count, int) or not 1 <= count <= self.max_count:
            raise PreconditionFailed(f"count must be between 1 and {self.max_count}, got {count!r}")
        try:
            return Intensity(intensity)
        except ValueError as e:
            allowed = ", ".join(i.value for i in Intensity)
            raise PreconditionFailed(f"intensity must be one of {allowed}, got {intensity!r}") from e

    def generate(
        self,
        transcript: str,
        *,
        count: int,
        intensity: Intensity,
        analysis: Optional[Analysis] = None,
        product: Optional[Product] = None,
    ) -> List[Variant]:
        """Return between 1 and ``count`` variants.

        Raises:
            PreconditionFailed: bad count/intensity or empty transcript
            NoVariantsGenerated: every call failed or returned unusable output
        """
        intensity = self.check_request(count, intensity)
        if not transcript or not transcript.strip():
            raise PreconditionFailed("a transcript is required to generate variants")

        temperature = INTENSITY_TEMPERATURE[intensity]
        variants: List[Variant] = []
        errors: List[str] = []

        for i in range(count):
            name, instruction = self.strategies[i % len(self.strategies)]
            prompt = build_prompt(
                transcript,
                strategy=instruction,
                intensity=intensity,
                analysis=analysis,
                product=product,
            )

            def call() -> Any:
                return self.client.complete(
                    prompt,
                    system_prompt=VARIANTS_SYSTEM_PROMPT,
                    temperature=temperature,
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
            except LLMClientError as e:
                logger.warning("[variants] %s variant %d/%d failed: %s", name, i + 1, count, e)
                errors.append(f"{name}: {e}")
                continue

            variant = parse_variant(payload, name)
            if variant is None:
                logger.warning("[variants] %s variant %d/%d malformed", name, i + 1, count)
                errors.append(f"{name}: malformed response")
                continue
            variants.append(variant)

        if not variants:
            raise NoVariantsGenerated(count, errors)
        if errors:
            logger.info("[variants] returning %d of %d requested variants", len(variants), count)
        return variants
