"""Language-model stages: Creative Analyzer, Variant Generator and copywriting helpers."""

from .analyzer import CreativeAnalyzer, parse_analysis
from .copywriter import ScriptCopywriter, ScriptInsights
from .llm_client import (
    LLMAuthError,
    LLMClient,
    LLMClientConfig,
    LLMClientError,
    LLMQuotaExceededError,
    LLMRateLimitError,
    LLMRequestRejectedError,
    LLMResponseError,
    LLMServerUnavailableError,
    create_llm_client,
)
from .variants import INTENSITY_TEMPERATURE, Product, VariantGenerator

__all__ = [
    "CreativeAnalyzer",
    "parse_analysis",
    "ScriptCopywriter",
    "ScriptInsights",
    "LLMAuthError",
    "LLMClient",
    "LLMClientConfig",
    "LLMClientError",
    "LLMQuotaExceededError",
    "LLMRateLimitError",
    "LLMRequestRejectedError",
    "LLMResponseError",
    "LLMServerUnavailableError",
    "create_llm_client",
    "INTENSITY_TEMPERATURE",
    "Product",
    "VariantGenerator",
]
