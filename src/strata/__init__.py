"""strata — hierarchical, file-backed memory for AI coding agents."""
