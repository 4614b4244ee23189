"""Context assembly — sources, relevance, token budgets and the assembled Context."""

from .assembler import ContextAssembler
from .cache import ContextCache
from .models import Context, ContextLayer, ContextMetadata, Contribution, Interaction, render
from .relevance import composite_score, score_contribution, score_text
from .sources import (
    ConversationHistorySource,
    IndexEntry,
    KeywordIndex,
    KeywordSearchSource,
    SourceProvider,
    SourceSpec,
    WorkspaceSource,
)
from .token_budget import allocate, estimate_tokens, truncate_to_tokens

__all__ = [
    "Context",
    "ContextAssembler",
    "ContextCache",
    "ContextLayer",
    "ContextMetadata",
    "Contribution",
    "ConversationHistorySource",
    "IndexEntry",
    "Interaction",
    "KeywordIndex",
    "KeywordSearchSource",
    "SourceProvider",
    "SourceSpec",
    "WorkspaceSource",
    "allocate",
    "composite_score",
    "estimate_tokens",
    "render",
    "score_contribution",
    "score_text",
    "truncate_to_tokens",
]
