"""Per-video enrichment pipeline: fetch, transcribe, analyze, and rewrite social videos."""

__all__ = ["__version__"]
__version__ = "0.1.0"
