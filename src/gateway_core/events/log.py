"""Append-only, per-session ordered event log."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import weakref
from abc import ABC, abstractmethod
from pathlib import Path

import aiosqlite

from ..errors import ConcurrentAppendError
from ..telemetry import trace_event_append
from .models import SessionEvent

logger = logging.getLogger(__name__)

_MAX_APPEND_ATTEMPTS = 3


class EventLog(ABC):
    """Abstract event log.

    Appends are serialized per session with an :class:`asyncio.Lock`; the log
    assigns strictly increasing sequence numbers starting at 1. Sessions do
    not block each other. A session's lock lives only while some append holds
    or awaits it.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def append(self, session_id: str, event: SessionEvent) -> int:
        """Append *event* to *session_id* and return its sequence number."""
        if not session_id:
            msg = "session_id must be non-empty"
            raise ValueError(msg)
        async with self._lock_for(session_id):
            with trace_event_append(session_id, event.event_type):
                return await self._append_locked(session_id, event)

    async def _append_locked(self, session_id: str, event: SessionEvent) -> int:
        for attempt in range(1, _MAX_APPEND_ATTEMPTS + 1):
            next_seq = await self.head(session_id) + 1
            expected = event.sequence_number
            if expected is not None and expected != next_seq:
                raise ConcurrentAppendError(session_id, expected, next_seq)
            try:
                await self._write(event.stamped(session_id, next_seq))
            except ConcurrentAppendError:
                # Another writer outside this process won the slot.
                if expected is not None or attempt == _MAX_APPEND_ATTEMPTS:
                    raise
                logger.warning(
                    "Append race on session %s at seq %d, retrying (attempt %d)",
                    session_id,
                    next_seq,
                    attempt,
                )
                continue
            logger.debug(
                "Appended %s to %s at seq %d", event.event_type, session_id, next_seq
            )
            return next_seq
        raise AssertionError("unreachable")  # pragma: no cover

    async def append_many(self, session_id: str, events: list[SessionEvent]) -> list[int]:
        """Append *events* in order; each gets the next sequence number."""
        return [await self.append(session_id, event) for event in events]

    @abstractmethod
    async def read(self, session_id: str, from_seq: int = 1) -> list[SessionEvent]:
        """Events of *session_id* with ``sequence_number >= from_seq``, in order."""

    @abstractmethod
    async def head(self, session_id: str) -> int:
        """Highest sequence number of *session_id* (0 when empty)."""

    @abstractmethod
    async def _write(self, event: SessionEvent) -> None:
        """Persist a stamped event; raise ConcurrentAppendError if the slot is taken."""


class InMemoryEventLog(EventLog):
    """Dict-of-lists implementation (for testing and development)."""

    def __init__(self) -> None:
        super().__init__()
        self._events: dict[str, list[SessionEvent]] = {}

    async def read(self, session_id: str, from_seq: int = 1) -> list[SessionEvent]:
        events = self._events.get(session_id, [])
        return events[max(0, from_seq - 1) :]

    async def head(self, session_id: str) -> int:
        return len(self._events.get(session_id, []))

    async def _write(self, event: SessionEvent) -> None:
        events = self._events.setdefault(event.session_id, [])
        if event.sequence_number != len(events) + 1:
            raise ConcurrentAppendError(
                event.session_id, event.sequence_number or 0, len(events) + 1
            )
        events.append(event)

    def sessions(self) -> list[str]:
        return sorted(self._events)


class SqliteEventLog(EventLog):
    """SQLite-backed event log on an :mod:`aiosqlite` connection.

    ``UNIQUE(session_id, sequence_number)`` turns a write race from another
    connection into :class:`ConcurrentAppendError`, which the base class
    retries under the session lock.

    Usage::

        log = SqliteEventLog("events.db")
        await log.start()
        ...
        await log.close()
    """

    def __init__(self, db_path: Path | str) -> None:
        super().__init__()
        self._db_path = str(db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        """Open the database and create the events table."""
        # Autocommit: each insert is its own transaction on the shared connection.
        self._db = await aiosqlite.connect(self._db_path, isolation_level=None)
        await self._db.execute(
            """CREATE TABLE IF NOT EXISTS session_events (
                session_id TEXT NOT NULL,
                sequence_number INTEGER NOT NULL,
                event_id TEXT NOT NULL,
                timestamp REAL NOT NULL,
                event_type TEXT NOT NULL,
                payload TEXT NOT NULL,
                UNIQUE (session_id, sequence_number)
            )"""
        )
        logger.info("SqliteEventLog started (db=%s)", self._db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            msg = "SqliteEventLog not started"
            raise RuntimeError(msg)
        return self._db

    async def read(self, session_id: str, from_seq: int = 1) -> list[SessionEvent]:
        async with self._conn().execute(
            "SELECT session_id, sequence_number, event_id, timestamp, event_type, payload"
            " FROM session_events WHERE session_id = ? AND sequence_number >= ?"
            " ORDER BY sequence_number",
            (session_id, from_seq),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            SessionEvent(
                session_id=r[0],
                sequence_number=r[1],
                event_id=r[2],
                timestamp=r[3],
                event_type=r[4],
                payload=json.loads(r[5]),
            )
            for r in rows
        ]

    async def head(self, session_id: str) -> int:
        async with self._conn().execute(
            "SELECT MAX(sequence_number) FROM session_events WHERE session_id = ?",
            (session_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return (row[0] if row else None) or 0

    async def _write(self, event: SessionEvent) -> None:
        db = self._conn()
        try:
            await db.execute(
                "INSERT INTO session_events"
                " (session_id, sequence_number, event_id, timestamp, event_type, payload)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (
                    event.session_id,
                    event.sequence_number,
                    event.event_id,
                    event.timestamp,
                    event.event_type,
                    json.dumps(event.payload, sort_keys=True, default=str),
                ),
            )
        except sqlite3.IntegrityError as exc:
            head = await self.head(event.session_id)
            raise ConcurrentAppendError(
                event.session_id, event.sequence_number or 0, head + 1
            ) from exc
