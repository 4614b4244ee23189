"""Relevance scoring — pure functions returning values in [0, 1]."""

from __future__ import annotations

import re
from collections.abc import Mapping

from .models import Contribution

_WORD = re.compile(r"[a-z0-9_]+")
_MIN_TERM_LEN = 3


def terms(text: str) -> frozenset[str]:
    """Lower-cased significant terms (length >= 3) of *text*."""
    return frozenset(w for w in _WORD.findall(text.lower()) if len(w) >= _MIN_TERM_LEN)


def score_text(query: str, text: str) -> float:
    """Fraction of the query's terms that appear in *text*.

    A query without significant terms matches everything (1.0); empty text
    matches nothing (0.0).
    """
    query_terms = terms(query)
    if not query_terms:
        return 1.0
    text_terms = terms(text)
    if not text_terms:
        return 0.0
    return len(query_terms & text_terms) / len(query_terms)


def score_contribution(query: str, contribution: Contribution) -> float:
    if contribution.relevance_hint is not None:
        return min(1.0, max(0.0, contribution.relevance_hint))
    return score_text(query, contribution.text())


def composite_score(relevance: Mapping[str, float], weights: Mapping[str, float]) -> float:
    """Weight-averaged relevance over the given sources (0.0 when empty)."""
    total_weight = sum(weights.get(name, 0.0) for name in relevance)
    if total_weight <= 0.0:
        return 0.0
    return sum(score * weights.get(name, 0.0) for name, score in relevance.items()) / total_weight
