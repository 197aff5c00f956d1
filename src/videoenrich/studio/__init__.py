"""HTTP surface for the enrichment pipeline."""
