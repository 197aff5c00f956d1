"""Tests for the Creative Analyzer, the Variant Generator and the copywriting helpers."""

from __future__ import annotations

import pytest

from videoenrich.ai import CreativeAnalyzer, Product, VariantGenerator, parse_analysis
from videoenrich.ai.llm_client import (
    LLMAuthError,
    LLMQuotaExceededError,
    LLMRateLimitError,
    LLMRequestRejectedError,
    LLMResponseError,
    LLMServerUnavailableError,
)
from videoenrich.ai.copywriter import ScriptCopywriter, ScriptInsights, parse_hooks, parse_insights
from videoenrich.ai.variants import build_prompt, parse_variant
from videoenrich.errors import CopywritingFailed, NoVariantsGenerated, PreconditionFailed, StageFailed
from videoenrich.models import Analysis, Intensity, Stage

from conftest import FakeLLM

TRANSCRIPT = "¿Tu cocina siempre está sucia? Este spray quita la grasa en segundos. Cómpralo en el enlace."

GOOD = {
    "hook": "¿Tu cocina siempre está sucia?",
    "body": "Este spray quita la grasa en segundos.",
    "cta": "Cómpralo en el enlace.",
    "tags": ["PAS", "before-after", "PAS", 3],
}


class TestParseAnalysis:
    def test_valid(self):
        analysis = parse_analysis(GOOD)
        assert analysis == Analysis(
            hook=GOOD["hook"], body=GOOD["body"], cta=GOOD["cta"], tags=["PAS", "before-after"]
        )

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            {"hook": "h", "body": "b"},
            {"hook": "h", "body": "", "cta": "c"},
            {"hook": "h", "body": "b", "cta": 3},
        ],
    )
    def test_invalid(self, payload):
        assert parse_analysis(payload) is None

    def test_tags_optional(self):
        analysis = parse_analysis({"hook": "h", "body": "b", "cta": "c", "tags": "nope"})
        assert analysis is not None
        assert analysis.tags == []


class TestCreativeAnalyzer:
    def _analyzer(self, llm, **kwargs) -> CreativeAnalyzer:
        return CreativeAnalyzer(client=llm, sleep=lambda s: None, **kwargs)

    def test_success(self):
        llm = FakeLLM([GOOD])
        analysis = self._analyzer(llm).analyze(TRANSCRIPT)

        assert analysis.hook == GOOD["hook"]
        assert len(llm.calls) == 1
        assert TRANSCRIPT in llm.calls[0]["prompt"]
        assert llm.calls[0]["temperature"] == 0.3
        assert llm.calls[0]["json_mode"] is True

    def test_missing_field_is_malformed(self):
        llm = FakeLLM([{"hook": "h", "body": "b"}])
        with pytest.raises(StageFailed) as exc:
            self._analyzer(llm).analyze(TRANSCRIPT)
        assert exc.value.stage == Stage.ANALYZING
        assert exc.value.reason == "malformed response"

    def test_unparseable_is_malformed(self):
        llm = FakeLLM([LLMResponseError("Could not extract JSON")])
        with pytest.raises(StageFailed) as exc:
            self._analyzer(llm).analyze(TRANSCRIPT)
        assert exc.value.reason == "malformed response"

    def test_transient_errors_retried(self):
        llm = FakeLLM([LLMServerUnavailableError("down"), LLMRateLimitError("429"), GOOD])
        analysis = self._analyzer(llm, max_attempts=3).analyze(TRANSCRIPT)

        assert analysis.cta == GOOD["cta"]
        assert len(llm.calls) == 3

    def test_retries_exhausted(self):
        llm = FakeLLM([LLMServerUnavailableError("down")] * 3)
        with pytest.raises(StageFailed) as exc:
            self._analyzer(llm, max_attempts=2).analyze(TRANSCRIPT)
        assert "down" in exc.value.reason
        assert len(llm.calls) == 2

    @pytest.mark.parametrize("error", [LLMQuotaExceededError("402"), LLMAuthError("401")])
    def test_permanent_errors_not_retried(self, error):
        llm = FakeLLM([error, GOOD])
        with pytest.raises(StageFailed):
            self._analyzer(llm).analyze(TRANSCRIPT)
        assert len(llm.calls) == 1

    def test_rejected_request_reason_kept_verbatim(self):
        llm = FakeLLM([LLMRequestRejectedError("LLM request rejected (400): context_length_exceeded"), GOOD])
        with pytest.raises(StageFailed) as exc:
            self._analyzer(llm).analyze(TRANSCRIPT)
        assert exc.value.stage == Stage.ANALYZING
        assert exc.value.reason == "LLM request rejected (400): context_length_exceeded"
        assert len(llm.calls) == 1

    def test_long_transcript_is_truncated(self):
        llm = FakeLLM([GOOD])
        self._analyzer(llm).analyze("x" * 50000)
        assert "x" * 12001 not in llm.calls[0]["prompt"]


class TestVariantGenerator:
    def _generator(self, llm, **kwargs) -> VariantGenerator:
        return VariantGenerator(client=llm, sleep=lambda s: None, **kwargs)

    @pytest.mark.parametrize(
        "intensity,temperature",
        [("light", 0.4), ("medium", 0.7), ("aggressive", 1.0), (Intensity.AGGRESSIVE, 1.0)],
    )
    def test_intensity_sets_temperature(self, intensity, temperature):
        llm = FakeLLM()
        self._generator(llm).generate(TRANSCRIPT, count=1, intensity=intensity)
        assert llm.calls[0]["temperature"] == temperature

    def test_one_call_per_variant_rotating_strategies(self):
        llm = FakeLLM()
        variants = self._generator(llm).generate(TRANSCRIPT, count=3, intensity="medium")

        assert len(variants) == 3
        assert len(llm.calls) == 3
        assert [v.strategy_note for v in variants] == ["urgency", "emotional", "commercial"]
        assert "URGENCY" in llm.calls[0]["prompt"]
        assert "EMOTION" in llm.calls[1]["prompt"]
        assert "COMMERCIAL" in llm.calls[2]["prompt"]

    def test_model_strategy_note_kept(self):
        llm = FakeLLM([{"hook": "h", "body": "b", "cta": "c", "strategy_note": "scarcity angle"}])
        variants = self._generator(llm).generate(TRANSCRIPT, count=1, intensity="light")
        assert variants[0].strategy_note == "scarcity angle"

    def test_partial_results(self):
        llm = FakeLLM([{"hook": "only hook"}, LLMAuthError("401"), {"hook": "h", "body": "b", "cta": "c"}])
        variants = self._generator(llm).generate(TRANSCRIPT, count=3, intensity="medium")

        assert len(variants) == 1
        assert variants[0].strategy_note == "commercial"

    def test_zero_results(self):
        llm = FakeLLM([{"nope": 1}, LLMQuotaExceededError("402")])
        with pytest.raises(NoVariantsGenerated) as exc:
            self._generator(llm).generate(TRANSCRIPT, count=2, intensity="medium")
        assert exc.value.requested == 2
        assert len(exc.value.errors) == 2

    def test_transient_error_retried_per_variant(self):
        llm = FakeLLM([LLMRateLimitError("429")])
        variants = self._generator(llm, max_attempts=2).generate(TRANSCRIPT, count=1, intensity="medium")
        assert len(variants) == 1
        assert len(llm.calls) == 2

    @pytest.mark.parametrize("count", [0, 4, -1, True, "2", 1.5])
    def test_count_bounds(self, count):
        llm = FakeLLM()
        with pytest.raises(PreconditionFailed):
            self._generator(llm).generate(TRANSCRIPT, count=count, intensity="medium")
        assert llm.calls == []

    def test_max_count_configurable(self):
        llm = FakeLLM()
        variants = self._generator(llm, max_count=5).generate(TRANSCRIPT, count=5, intensity="light")
        assert len(variants) == 5
        assert variants[3].strategy_note == "urgency"

    def test_bad_intensity(self):
        with pytest.raises(PreconditionFailed):
            self._generator(FakeLLM()).check_request(1, "extreme")

    def test_empty_transcript(self):
        with pytest.raises(PreconditionFailed):
            self._generator(FakeLLM()).generate("   ", count=1, intensity="medium")

    def test_prompt_includes_analysis_and_product(self):
        llm = FakeLLM()
        analysis = Analysis(hook="HOOK-X", body="BODY-X", cta="CTA-X")
        product = Product.from_dict({"name": "Spray Mágico", "description": "quita grasa"})

        self._generator(llm).generate(
            TRANSCRIPT, count=1, intensity="medium", analysis=analysis, product=product
        )

        prompt = llm.calls[0]["prompt"]
        assert "HOOK-X" in prompt
        assert "PRODUCT: Spray Mágico" in prompt
        assert "PRODUCT DESCRIPTION: quita grasa" in prompt


class TestHelpers:
    def test_product_from_dict(self):
        assert Product.from_dict(None) is None
        assert Product.from_dict({"name": "  "}) is None
        assert Product.from_dict({"name": " X "}) == Product(name="X", description="")

    def test_parse_variant_defaults_note(self):
        variant = parse_variant({"hook": "h", "body": "b", "cta": "c", "strategy_note": ""}, "urgency")
        assert variant is not None
        assert variant.strategy_note == "urgency"
        assert parse_variant("text", "urgency") is None

    def test_build_prompt_without_extras(self):
        prompt = build_prompt(TRANSCRIPT, strategy="S", intensity=Intensity.LIGHT)
        assert "CURRENT STRUCTURE" not in prompt
        assert "PRODUCT:" not in prompt
        assert "STRATEGY: S" in prompt


INSIGHTS = {
    "works_because": "Muestra el problema y la solución en segundos.",
    "angles": ["antes y después", "ahorro de tiempo", ""],
    "cta_location": "al final, con urgencia",
    "structure": "PAS",
    "strengths": ["hook visual"],
    "weaknesses": ["CTA tardío"],
}


class TestParseHooks:
    def test_json_array(self):
        assert parse_hooks('["Nadie te dice esto", "POV: tu cocina brilla"]', 10) == [
            "Nadie te dice esto",
            "POV: tu cocina brilla",
        ]

    def test_object_with_hooks_key_inside_fence(self):
        text = '```json\n{"hooks": ["Error que cometes al limpiar", "El secreto de mi abuela"]}\n```'
        assert parse_hooks(text, 10) == ["Error que cometes al limpiar", "El secreto de mi abuela"]

    def test_numbered_lines_fallback(self):
        text = '1. Nadie te dice esto\n2. "POV: tu cocina brilla",\n- ok\n3. Nadie te dice esto'
        assert parse_hooks(text, 10) == ["Nadie te dice esto", "POV: tu cocina brilla"]

    def test_limit(self):
        assert parse_hooks('["uno uno", "dos dos", "tres tres"]', 2) == ["uno uno", "dos dos"]


class TestParseInsights:
    def test_valid(self):
        insights = parse_insights(INSIGHTS)
        assert insights == ScriptInsights(
            works_because=INSIGHTS["works_because"],
            angles=["antes y después", "ahorro de tiempo"],
            cta_location="al final, con urgencia",
            structure="PAS",
            strengths=["hook visual"],
            weaknesses=["CTA tardío"],
        )

    def test_nested_under_insights_key(self):
        insights = parse_insights({"insights": INSIGHTS})
        assert insights is not None
        assert insights.structure == "PAS"

    @pytest.mark.parametrize("payload", [None, [], {"angles": ["a"]}, {"works_because": "  "}])
    def test_missing_explanation(self, payload):
        assert parse_insights(payload) is None


class TestScriptCopywriter:
    def _copywriter(self, llm, **kwargs) -> ScriptCopywriter:
        return ScriptCopywriter(client=llm, sleep=lambda s: None, **kwargs)

    def test_hooks(self):
        llm = FakeLLM(['["Nadie te dice esto", "POV: tu cocina brilla", "Deja de tallar"]'])
        hooks = self._copywriter(llm).generate_hooks("spray desengrasante", 3)

        assert hooks == ["Nadie te dice esto", "POV: tu cocina brilla", "Deja de tallar"]
        assert llm.calls[0]["json_mode"] is False
        assert llm.calls[0]["temperature"] == 0.8
        assert "spray desengrasante" in llm.calls[0]["prompt"]
        assert "exactly 3" in llm.calls[0]["prompt"]

    @pytest.mark.parametrize("count", [0, 11, True])
    def test_hook_count_bounds(self, count):
        llm = FakeLLM()
        with pytest.raises(PreconditionFailed):
            self._copywriter(llm).generate_hooks("spray", count)
        assert llm.calls == []

    def test_hooks_need_description(self):
        llm = FakeLLM()
        with pytest.raises(PreconditionFailed):
            self._copywriter(llm).generate_hooks("   ")
        assert llm.calls == []

    def test_no_usable_hooks(self):
        llm = FakeLLM(["[]"])
        with pytest.raises(CopywritingFailed) as exc:
            self._copywriter(llm).generate_hooks("spray", 2)
        assert exc.value.operation == "hooks"
        assert exc.value.reason == "no usable hooks in response"

    def test_insights(self):
        llm = FakeLLM([{"insights": INSIGHTS}])
        insights = self._copywriter(llm).analyze_insights(TRANSCRIPT, title="Spray")

        assert insights.works_because == INSIGHTS["works_because"]
        assert llm.calls[0]["json_mode"] is True
        assert llm.calls[0]["temperature"] == 0.3
        assert "Title: Spray" in llm.calls[0]["prompt"]
        assert TRANSCRIPT in llm.calls[0]["prompt"]

    def test_insights_malformed(self):
        llm = FakeLLM([{"angles": ["a"]}])
        with pytest.raises(CopywritingFailed) as exc:
            self._copywriter(llm).analyze_insights(TRANSCRIPT)
        assert exc.value.reason == "malformed response"

    def test_rewrite(self):
        llm = FakeLLM(["  HOOK: ¿Cocina sucia?\nCIERRE: cómpralo hoy.  "])
        text = self._copywriter(llm).rewrite_script(TRANSCRIPT)

        assert text == "HOOK: ¿Cocina sucia?\nCIERRE: cómpralo hoy."
        assert llm.calls[0]["json_mode"] is False

    def test_rewrite_empty_reply(self):
        llm = FakeLLM(["   "])
        with pytest.raises(CopywritingFailed) as exc:
            self._copywriter(llm).rewrite_script(TRANSCRIPT)
        assert exc.value.reason == "empty response"

    def test_rewrite_needs_transcript(self):
        with pytest.raises(PreconditionFailed):
            self._copywriter(FakeLLM()).rewrite_script("")

    def test_transient_error_retried(self):
        llm = FakeLLM([LLMRateLimitError("429"), "Guion reescrito"])
        assert self._copywriter(llm).rewrite_script(TRANSCRIPT) == "Guion reescrito"
        assert len(llm.calls) == 2

    def test_unparseable_reply_is_malformed(self):
        llm = FakeLLM([LLMResponseError("Could not extract JSON")])
        with pytest.raises(CopywritingFailed) as exc:
            self._copywriter(llm).analyze_insights(TRANSCRIPT)
        assert exc.value.reason == "malformed response"

    def test_upstream_reason_kept_verbatim(self):
        llm = FakeLLM([LLMRequestRejectedError("LLM request rejected (400): bad model"), "never"])
        with pytest.raises(CopywritingFailed) as exc:
            self._copywriter(llm).rewrite_script(TRANSCRIPT)
        assert exc.value.reason == "LLM request rejected (400): bad model"
        assert len(llm.calls) == 1
