"""Session projection — derive SessionState by folding events through handlers."""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from ..enhancers.base import Enhancer
from ..enhancers.chain import EnhancementChain
from .log import EventLog
from .models import EventType, SessionEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionRecord:
    sequence_number: int
    query: str
    response: str | None
    request_id: str = ""


@dataclass(frozen=True)
class SessionState:
    """Read-only view of a session. Never persisted; always recomputable."""

    session_id: str = ""
    last_sequence: int = 0
    event_count: int = 0
    interactions: tuple[InteractionRecord, ...] = ()
    tool_runs: dict[str, int] = field(default_factory=dict)
    errors: tuple[str, ...] = ()
    compensated: tuple[int, ...] = ()
    event_counts: dict[str, int] = field(default_factory=dict)

    @property
    def last_query(self) -> str | None:
        return self.interactions[-1].query if self.interactions else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "last_sequence": self.last_sequence,
            "event_count": self.event_count,
            "interactions": [
                {"sequence_number": i.sequence_number, "query": i.query, "response": i.response}
                for i in self.interactions
            ],
            "tool_runs": dict(self.tool_runs),
            "errors": list(self.errors),
            "compensated": list(self.compensated),
            "event_counts": dict(self.event_counts),
        }


def _bump(counts: dict[str, int], key: str) -> dict[str, int]:
    updated = dict(counts)
    updated[key] = updated.get(key, 0) + 1
    return updated


def reduce_event(state: SessionState, event: SessionEvent) -> SessionState:
    """Base reducer: apply one (already handled) event to *state*."""
    seq = event.sequence_number or 0
    payload = event.payload
    state = replace(
        state,
        session_id=state.session_id or event.session_id,
        last_sequence=max(state.last_sequence, seq),
        event_count=state.event_count + 1,
        event_counts=_bump(state.event_counts, event.event_type),
    )

    if event.event_type == EventType.INTERACTION:
        record = InteractionRecord(
            sequence_number=seq,
            query=str(payload.get("query", "")),
            response=payload.get("response"),
            request_id=str(payload.get("request_id", "")),
        )
        return replace(state, interactions=(*state.interactions, record))

    if event.event_type == EventType.TOOL_EXECUTED:
        return replace(state, tool_runs=_bump(state.tool_runs, str(payload.get("tool_id", ""))))

    if event.event_type in (
        EventType.TOOL_CHAIN_FAILED,
        EventType.INFERENCE_FAILED,
        EventType.CONTEXT_REJECTED,
    ):
        detail = payload.get("error", "")
        return replace(state, errors=(*state.errors, f"{event.event_type}: {detail}"))

    if event.event_type == EventType.COMPENSATION:
        target = int(payload.get("target_sequence", 0))
        return replace(
            state,
            interactions=tuple(i for i in state.interactions if i.sequence_number != target),
            compensated=(*state.compensated, target),
        )

    return state


class SessionProjector:
    """Pure fold: ``state_i = reduce(state_{i-1}, handlers(event_i))``.

    The same events and handlers always produce an equal state.
    """

    def __init__(self, chain: EnhancementChain | None = None) -> None:
        self._chain = chain if chain is not None else EnhancementChain()

    def project(
        self,
        events: Iterable[SessionEvent],
        handlers: Sequence[Enhancer[Any]] = (),
        initial: SessionState | None = None,
    ) -> SessionState:
        state = initial if initial is not None else SessionState()
        ordered = sorted(events, key=lambda e: e.sequence_number or 0)
        for event in ordered:
            handled = self._chain.apply_events(handlers, event)
            if handled is None:
                continue
            state = reduce_event(state, handled)
        return state

    async def project_log(
        self,
        log: EventLog,
        session_id: str,
        handlers: Sequence[Enhancer[Any]] = (),
        upto: int | None = None,
    ) -> SessionState:
        """Project *session_id* from the log, optionally only up to sequence *upto*."""
        events = await log.read(session_id)
        if upto is not None:
            events = [e for e in events if (e.sequence_number or 0) <= upto]
        return self.project(events, handlers, initial=SessionState(session_id=session_id))


@dataclass
class _CacheEntry:
    state: SessionState
    consumed: int
    handlers: tuple[Enhancer[Any], ...]


class ProjectionCache:
    """Incremental, disposable projection per session.

    Only events newer than the cached state are folded. A different handler
    set discards the cached entry.
    """

    def __init__(
        self,
        log: EventLog,
        projector: SessionProjector | None = None,
        max_sessions: int = 1024,
    ) -> None:
        self._log = log
        self._projector = projector if projector is not None else SessionProjector()
        self._max = max_sessions
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()

    async def get(
        self, session_id: str, handlers: Sequence[Enhancer[Any]] = ()
    ) -> SessionState:
        handler_key = tuple(handlers)
        entry = self._entries.get(session_id)
        if entry is None or entry.handlers != handler_key:
            entry = _CacheEntry(SessionState(session_id=session_id), 0, handler_key)

        new_events = await self._log.read(session_id, entry.consumed + 1)
        if new_events:
            state = self._projector.project(new_events, handler_key, initial=entry.state)
            consumed = max(e.sequence_number or 0 for e in new_events)
            entry = _CacheEntry(state, consumed, handler_key)
            logger.debug(
                "Projected %d new events for %s (head=%d)", len(new_events), session_id, consumed
            )

        self._entries[session_id] = entry
        self._entries.move_to_end(session_id)
        while len(self._entries) > self._max:
            self._entries.popitem(last=False)
        return entry.state

    def invalidate(self, session_id: str | None = None) -> None:
        if session_id is None:
            self._entries.clear()
        else:
            self._entries.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._entries)
