"""Token estimation.

A character-count heuristic (~4 chars per token), not a real tokenizer. All
size thresholds in the store are calibrated against this exact formula.
"""

from __future__ import annotations

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    """Approximate token count of *text*: ``ceil(len / 4)``, 0 when empty."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def exceeds_token_limit(text: str | None, limit: int) -> bool:
    return estimate_tokens(text) > limit


def format_token_count(tokens: int) -> str:
    """Render 950 as "950" and 12345 as "12.3k"."""
    if tokens < 1000:
        return str(tokens)
    return f"{tokens / 1000:.1f}k"
