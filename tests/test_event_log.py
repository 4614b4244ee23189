"""Tests for the append-only session event log."""

import asyncio
import gc

import pytest
import pytest_asyncio

from gateway_core.errors import ConcurrentAppendError
from gateway_core.events.log import InMemoryEventLog, SqliteEventLog
from gateway_core.events.models import EventType, SessionEvent


def _event(query: str = "q", **kw) -> SessionEvent:
    return SessionEvent.create(EventType.INTERACTION, {"query": query}, **kw)


@pytest.mark.asyncio
async def test_sequence_numbers_start_at_one():
    """The log stamps session id and sequence number on append."""
    log = InMemoryEventLog()
    assert await log.head("s1") == 0
    assert await log.append("s1", _event("first")) == 1
    assert await log.append("s1", _event("second")) == 2

    events = await log.read("s1")
    assert [e.sequence_number for e in events] == [1, 2]
    assert {e.session_id for e in events} == {"s1"}
    assert events[0].payload == {"query": "first"}


@pytest.mark.asyncio
async def test_concurrent_appends_get_unique_consecutive_numbers():
    log = InMemoryEventLog()
    seqs = await asyncio.gather(*(log.append("s1", _event(str(i))) for i in range(50)))

    assert sorted(seqs) == list(range(1, 51))
    assert [e.sequence_number for e in await log.read("s1")] == list(range(1, 51))


@pytest.mark.asyncio
async def test_sessions_are_independent():
    log = InMemoryEventLog()
    await log.append("s1", _event())
    await log.append("s1", _event())
    assert await log.append("s2", _event()) == 1
    assert log.sessions() == ["s1", "s2"]


@pytest.mark.asyncio
async def test_stale_expected_sequence_is_rejected():
    log = InMemoryEventLog()
    await log.append("s1", _event())
    with pytest.raises(ConcurrentAppendError) as excinfo:
        await log.append("s1", _event(sequence_number=1))
    assert excinfo.value.expected == 1
    assert excinfo.value.actual == 2
    assert await log.head("s1") == 1
    assert await log.append("s1", _event(sequence_number=2)) == 2


@pytest.mark.asyncio
async def test_read_from_sequence():
    log = InMemoryEventLog()
    await log.append_many("s1", [_event(str(i)) for i in range(5)])
    assert [e.payload["query"] for e in await log.read("s1", from_seq=4)] == ["3", "4"]
    assert await log.read("missing") == []


@pytest.mark.asyncio
async def test_empty_session_id_is_rejected():
    with pytest.raises(ValueError):
        await InMemoryEventLog().append("", _event())


@pytest.mark.asyncio
async def test_lost_race_is_retried_with_fresh_head():
    """A write that loses its slot to another writer is retried at the next number."""

    class RacingLog(InMemoryEventLog):
        raced = False

        async def _write(self, event):
            if not self.raced:
                self.raced = True
                intruder = _event("other writer").stamped(event.session_id, 1)
                await super()._write(intruder)
            await super()._write(event)

    log = RacingLog()
    assert await log.append("s1", _event("mine")) == 2
    assert [e.payload["query"] for e in await log.read("s1")] == ["other writer", "mine"]



@pytest.mark.asyncio
async def test_session_locks_are_released_when_idle():
    log = InMemoryEventLog()
    await asyncio.gather(*(log.append(f"s{i % 5}", _event()) for i in range(25)))
    gc.collect()
    assert len(log._locks) == 0
    assert [await log.head(f"s{i}") for i in range(5)] == [5] * 5


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def sqlite_log(tmp_path):
    log = SqliteEventLog(tmp_path / "events.db")
    await log.start()
    yield log
    await log.close()


@pytest.mark.asyncio
async def test_sqlite_log_persists_across_reopen(tmp_path):
    db = tmp_path / "events.db"
    log = SqliteEventLog(db)
    await log.start()
    await log.append("s1", _event("hello"))
    await log.append("s1", SessionEvent.create(EventType.TOOL_EXECUTED, {"tool_id": "lint"}))
    await log.close()

    reopened = SqliteEventLog(db)
    await reopened.start()
    events = await reopened.read("s1")
    assert [e.event_type for e in events] == ["interaction", "tool_executed"]
    assert events[1].payload == {"tool_id": "lint"}
    assert await reopened.append("s1", _event("again")) == 3
    await reopened.close()


@pytest.mark.asyncio
async def test_sqlite_duplicate_slot_raises(sqlite_log):
    await sqlite_log.append("s1", _event())
    with pytest.raises(ConcurrentAppendError):
        await sqlite_log._write(_event().stamped("s1", 1))
    assert await sqlite_log.head("s1") == 1


@pytest.mark.asyncio
async def test_sqlite_concurrent_appends_across_sessions(sqlite_log):
    seqs = await asyncio.gather(
        *(sqlite_log.append(f"s{i % 2}", _event(str(i))) for i in range(20))
    )

    assert sorted(seqs) == sorted(list(range(1, 11)) * 2)
    for session in ("s0", "s1"):
        events = await sqlite_log.read(session)
        assert [e.sequence_number for e in events] == list(range(1, 11))


@pytest.mark.asyncio
async def test_sqlite_log_requires_start(tmp_path):
    log = SqliteEventLog(tmp_path / "events.db")
    with pytest.raises(RuntimeError, match="not started"):
        await log.head("s1")
