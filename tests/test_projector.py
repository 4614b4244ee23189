"""Tests for session projection and the projection cache."""

import pytest

from gateway_core.enhancers.base import EventHandler
from gateway_core.enhancers.builtin import ignore_event_types_handler, redaction_event_handler
from gateway_core.events.log import InMemoryEventLog
from gateway_core.events.models import EventType, SessionEvent
from gateway_core.events.projector import ProjectionCache, SessionProjector, SessionState


def _stamped(seq: int, event_type: str, payload: dict) -> SessionEvent:
    return SessionEvent.create(event_type, payload).stamped("s1", seq)


EVENTS = [
    _stamped(1, EventType.INTERACTION, {"query": "first", "response": "one"}),
    _stamped(2, EventType.TOOL_EXECUTED, {"tool_id": "lint"}),
    _stamped(3, EventType.TOOL_EXECUTED, {"tool_id": "lint"}),
    _stamped(4, EventType.TOOL_CHAIN_FAILED, {"error": "boom"}),
    _stamped(5, EventType.INTERACTION, {"query": "second", "response": None}),
]


def test_projection_is_deterministic():
    projector = SessionProjector()
    assert projector.project(EVENTS) == projector.project(list(EVENTS))


def test_projection_folds_each_event_type():
    state = SessionProjector().project(EVENTS)
    assert state.last_sequence == 5
    assert state.event_count == 5
    assert [i.query for i in state.interactions] == ["first", "second"]
    assert state.last_query == "second"
    assert state.tool_runs == {"lint": 2}
    assert state.errors == ("tool_chain_failed: boom",)
    assert state.event_counts["interaction"] == 2


def test_projection_orders_by_sequence():
    projector = SessionProjector()
    assert projector.project(reversed(EVENTS)) == projector.project(EVENTS)


def test_suppressed_event_leaves_state_unchanged():
    handler = ignore_event_types_handler([EventType.TOOL_EXECUTED])
    state = SessionProjector().project(EVENTS, [handler])
    assert state.tool_runs == {}
    assert state.event_count == 3


def test_failing_handler_is_skipped():
    def boom(event):
        raise RuntimeError("handler bug")

    broken = EventHandler(id="broken", apply=boom)
    projector = SessionProjector()
    assert projector.project(EVENTS, [broken]) == projector.project(EVENTS)


def test_redaction_handler_cleans_derived_state():
    events = [_stamped(1, EventType.INTERACTION, {"query": "use sk-abcdefgh12345678"})]
    state = SessionProjector().project(events, [redaction_event_handler()])
    assert state.interactions[0].query == "use [REDACTED_API_KEY]"
    assert events[0].payload["query"] == "use sk-abcdefgh12345678"


def test_compensation_removes_interaction():
    events = [
        *EVENTS,
        _stamped(6, EventType.COMPENSATION, {"target_sequence": 1, "reason": "wrong answer"}),
    ]
    state = SessionProjector().project(events)
    assert [i.query for i in state.interactions] == ["second"]
    assert state.compensated == (1,)


@pytest.mark.asyncio
async def test_project_log_upto():
    """Projecting up to an earlier sequence ignores later events."""
    log = InMemoryEventLog()
    await log.append("s1", SessionEvent.create(EventType.INTERACTION, {"query": "e1"}))
    await log.append("s1", SessionEvent.create(EventType.INTERACTION, {"query": "e2"}))
    projector = SessionProjector()

    at_one = await projector.project_log(log, "s1", upto=1)
    assert [i.query for i in at_one.interactions] == ["e1"]
    assert at_one.last_sequence == 1

    full = await projector.project_log(log, "s1")
    assert [i.query for i in full.interactions] == ["e1", "e2"]
    assert full.session_id == "s1"


@pytest.mark.asyncio
async def test_empty_session_projects_to_initial_state():
    state = await SessionProjector().project_log(InMemoryEventLog(), "none")
    assert state == SessionState(session_id="none")
    assert state.to_dict()["interactions"] == []


# ---------------------------------------------------------------------------
# ProjectionCache
# ---------------------------------------------------------------------------


class CountingLog(InMemoryEventLog):
    def __init__(self) -> None:
        super().__init__()
        self.reads: list[int] = []

    async def read(self, session_id, from_seq=1):
        self.reads.append(from_seq)
        return await super().read(session_id, from_seq)


@pytest.mark.asyncio
async def test_cache_folds_only_new_events():
    log = CountingLog()
    cache = ProjectionCache(log)
    await log.append("s1", SessionEvent.create(EventType.INTERACTION, {"query": "a"}))
    first = await cache.get("s1")
    await log.append("s1", SessionEvent.create(EventType.INTERACTION, {"query": "b"}))
    second = await cache.get("s1")

    assert log.reads == [1, 2]
    assert [i.query for i in first.interactions] == ["a"]
    assert second == await SessionProjector().project_log(log, "s1")


@pytest.mark.asyncio
async def test_cache_recomputes_for_new_handlers():
    log = InMemoryEventLog()
    await log.append("s1", SessionEvent.create(EventType.TOOL_EXECUTED, {"tool_id": "lint"}))
    cache = ProjectionCache(log)

    assert (await cache.get("s1")).tool_runs == {"lint": 1}
    handlers = [ignore_event_types_handler([EventType.TOOL_EXECUTED])]
    assert (await cache.get("s1", handlers)).tool_runs == {}


@pytest.mark.asyncio
async def test_cache_invalidate_and_eviction():
    log = CountingLog()
    cache = ProjectionCache(log, max_sessions=1)
    await log.append("s1", SessionEvent.create(EventType.INTERACTION, {"query": "a"}))
    await cache.get("s1")
    await cache.get("s2")
    assert len(cache) == 1

    await cache.get("s1")
    assert log.reads[-1] == 1

    cache.invalidate()
    assert len(cache) == 0
