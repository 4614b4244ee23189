"""Event sourcing — append-only session log and deterministic projection."""

from .log import EventLog, InMemoryEventLog, SqliteEventLog
from .models import EventType, SessionEvent
from .projector import (
    InteractionRecord,
    ProjectionCache,
    SessionProjector,
    SessionState,
    reduce_event,
)

__all__ = [
    "EventLog",
    "EventType",
    "InMemoryEventLog",
    "InteractionRecord",
    "ProjectionCache",
    "SessionEvent",
    "SessionProjector",
    "SessionState",
    "SqliteEventLog",
    "reduce_event",
]
