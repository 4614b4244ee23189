"""Token estimates, truncation and per-source budget allocation."""

from __future__ import annotations

import math
from collections.abc import Mapping

_TOKENS_PER_WORD = 1.3


def estimate_tokens(text: str) -> int:
    """Estimate token count from text. Rough heuristic: words * 1.3."""
    if not text:
        return 0
    words = len(text.split())
    return math.ceil(words * _TOKENS_PER_WORD)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Keep the leading words of *text* so that its estimate fits *max_tokens*."""
    if max_tokens <= 0:
        return ""
    if estimate_tokens(text) <= max_tokens:
        return text
    words = text.split()
    keep = int(max_tokens / _TOKENS_PER_WORD)
    while keep > 0 and math.ceil(keep * _TOKENS_PER_WORD) > max_tokens:
        keep -= 1
    return " ".join(words[:keep])


def allocate(weights: Mapping[str, float], max_tokens: int) -> dict[str, int]:
    """Split *max_tokens* into per-name sub-budgets of ``floor(weight * max_tokens)``."""
    if max_tokens < 0:
        msg = "max_tokens must be non-negative"
        raise ValueError(msg)
    return {name: math.floor(weight * max_tokens) for name, weight in weights.items()}

