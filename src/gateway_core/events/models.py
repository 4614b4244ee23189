"""Session events — immutable, totally ordered per session."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    INTERACTION = "interaction"
    CONTEXT_ASSEMBLED = "context_assembled"
    CONTEXT_REJECTED = "context_rejected"
    TOOL_EXECUTED = "tool_executed"
    TOOL_CHAIN_FAILED = "tool_chain_failed"
    INFERENCE_FAILED = "inference_failed"
    COMPENSATION = "compensation"


def _generate_event_id() -> str:
    """Time-sortable event id."""
    return f"{int(time.time() * 1000):012x}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class SessionEvent:
    """A single fact recorded in a session's log.

    ``sequence_number`` is ``None`` until the log stamps it on append. A
    caller may set it to the number it expects the log to assign; a
    mismatch is reported as :class:`~gateway_core.errors.ConcurrentAppendError`.
    """

    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    session_id: str = ""
    sequence_number: int | None = None
    event_id: str = field(default_factory=_generate_event_id)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def create(
        cls, event_type: str, payload: dict[str, Any] | None = None, **kwargs: Any
    ) -> SessionEvent:
        return cls(event_type=str(event_type), payload=dict(payload or {}), **kwargs)

    def stamped(self, session_id: str, sequence_number: int) -> SessionEvent:
        return replace(self, session_id=session_id, sequence_number=sequence_number)

    def with_payload(self, payload: dict[str, Any]) -> SessionEvent:
        return replace(self, payload=payload)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "session_id": self.session_id,
            "sequence_number": self.sequence_number,
            "timestamp": self.timestamp,
            "event_type": self.event_type,
            "payload": dict(self.payload),
        }
