"""Context source providers — the collaborators ContextAssembler gathers from."""

from __future__ import annotations

import inspect
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..errors import SourceError
from ..events.log import EventLog
from ..events.models import EventType
from .models import Contribution, Interaction, render
from .relevance import score_text, terms
from .token_budget import estimate_tokens, truncate_to_tokens


class SourceProvider(ABC):
    """``fetch(query, session_id, token_budget) -> Contribution``.

    Implementations should stay within *token_budget* and raise
    :class:`SourceError` on failure.
    """

    @abstractmethod
    async def fetch(self, query: str, session_id: str, token_budget: int) -> Contribution:
        """Return this source's contribution for the request."""


@dataclass(frozen=True)
class SourceSpec:
    """A named source with its priority tier (lower is more important) and weight."""

    name: str
    provider: SourceProvider
    weight: float
    priority: int = 100

    def __post_init__(self) -> None:
        if not self.name:
            msg = "source name must be non-empty"
            raise ValueError(msg)
        if not 0.0 <= self.weight <= 1.0:
            msg = f"source '{self.name}' weight must be within [0, 1], got {self.weight}"
            raise ValueError(msg)


# ---------------------------------------------------------------------------
# Conversation history (from the event log)
# ---------------------------------------------------------------------------


class ConversationHistorySource(SourceProvider):
    """Recent turns of the session, rebuilt from ``interaction`` events.

    Recent conversation counts as relevant by default: the contribution's
    score is at least *recency_relevance*.
    """

    def __init__(
        self, event_log: EventLog, max_turns: int = 20, recency_relevance: float = 0.5
    ) -> None:
        self._log = event_log
        self._max_turns = max_turns
        self._recency_relevance = recency_relevance

    async def fetch(self, query: str, session_id: str, token_budget: int) -> Contribution:
        events = await self._log.read(session_id)
        turns: list[Interaction] = []
        for event in events:
            if event.event_type != EventType.INTERACTION:
                continue
            turns.append(Interaction("user", str(event.payload.get("query", "")), "conversation"))
            response = event.payload.get("response")
            if response:
                turns.append(Interaction("assistant", str(response), "conversation"))
        turns = turns[-self._max_turns * 2 :]

        contribution = Contribution(source="conversation", interactions=tuple(turns))
        contribution = contribution.truncate(token_budget)
        if contribution.is_empty():
            return contribution
        score = max(score_text(query, contribution.text()), self._recency_relevance)
        return Contribution(
            source="conversation",
            interactions=contribution.interactions,
            relevance_hint=score,
        )


# ---------------------------------------------------------------------------
# Workspace snapshot
# ---------------------------------------------------------------------------

SnapshotFn = Callable[[str], Awaitable[dict[str, Any]] | dict[str, Any]]


class WorkspaceSource(SourceProvider):
    """Wraps a callable returning the session's workspace snapshot (file -> content)."""

    def __init__(self, snapshot: SnapshotFn, name: str = "workspace") -> None:
        self._snapshot = snapshot
        self._name = name

    async def fetch(self, query: str, session_id: str, token_budget: int) -> Contribution:
        try:
            data = self._snapshot(session_id)
            if inspect.isawaitable(data):
                data = await data
        except Exception as exc:
            raise SourceError(self._name, str(exc)) from exc
        if not isinstance(data, dict):
            raise SourceError(self._name, f"snapshot must be a mapping, got {type(data).__name__}")

        # most relevant entries first so truncation cuts the least relevant
        ordered = sorted(
            data.items(), key=lambda kv: (-score_text(query, f"{kv[0]} {render(kv[1])}"), kv[0])
        )
        return Contribution(source=self._name, data=dict(ordered)).truncate(token_budget)


# ---------------------------------------------------------------------------
# Keyword search
# ---------------------------------------------------------------------------


@dataclass
class IndexEntry:
    key: str
    content: str
    session_id: str | None = None
    timestamp: float = field(default_factory=time.time)


class KeywordIndex:
    """Dict-based document index with word-overlap recall (for testing and development)."""

    def __init__(self) -> None:
        self._entries: dict[str, IndexEntry] = {}

    def store(self, key: str, content: str, session_id: str | None = None) -> None:
        self._entries[key] = IndexEntry(key=key, content=content, session_id=session_id)

    def forget(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def recall(
        self, query: str, limit: int = 5, session_id: str | None = None
    ) -> list[tuple[IndexEntry, float]]:
        """Entries sharing at least one term with *query*, best overlap first."""
        query_terms = terms(query)
        scored: list[tuple[IndexEntry, float]] = []
        for entry in self._entries.values():
            if session_id is not None and entry.session_id not in (None, session_id):
                continue
            score = score_text(query, f"{entry.key} {entry.content}")
            if query_terms and score > 0.0:
                scored.append((entry, score))
        scored.sort(key=lambda pair: (-pair[1], -pair[0].timestamp, pair[0].key))
        return scored[:limit]

    def __len__(self) -> int:
        return len(self._entries)


class KeywordSearchSource(SourceProvider):
    """Top-K index hits, scored by the index's own overlap ranking."""

    def __init__(self, index: KeywordIndex, top_k: int = 5, name: str = "search") -> None:
        self._index = index
        self._top_k = top_k
        self._name = name

    async def fetch(self, query: str, session_id: str, token_budget: int) -> Contribution:
        hits = self._index.recall(query, limit=self._top_k, session_id=session_id)
        if not hits:
            return Contribution(source=self._name)
        data: dict[str, Any] = {}
        remaining = token_budget
        for entry, _score in hits:
            cost = estimate_tokens(entry.content)
            if cost > remaining:
                cut = truncate_to_tokens(entry.content, remaining)
                if cut:
                    data[entry.key] = cut
                break
            data[entry.key] = entry.content
            remaining -= cost
        if not data:
            return Contribution(source=self._name)
        best = hits[0][1]
        return Contribution(source=self._name, data=data, relevance_hint=best)
