"""Enhancer variants — context adapters, tool adapters, event handlers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

if TYPE_CHECKING:
    from ..context.models import Context
    from ..events.models import SessionEvent
    from ..tools.models import Tool

T = TypeVar("T")


class Capability(StrEnum):
    CONTEXT = "context"
    TOOL = "tool"
    EVENT = "event"


def always(_value: Any) -> bool:
    return True


@dataclass(frozen=True)
class Enhancer(Generic[T]):
    """Immutable enhancer descriptor.

    ``priority``: lower runs first. ``applies_to`` is a pure predicate on the
    value's shape. ``reads``/``writes`` name the value fields the enhancer
    touches; they only matter for opt-in parallel application.
    """

    id: str
    apply: Callable[[T], Any]
    priority: int = 100
    applies_to: Callable[[T], bool] = always
    reads: frozenset[str] = field(default_factory=frozenset)
    writes: frozenset[str] = field(default_factory=frozenset)

    capability: ClassVar[Capability]

    def __post_init__(self) -> None:
        if not self.id:
            msg = "enhancer id must be non-empty"
            raise ValueError(msg)

    def applicable(self, value: T) -> bool:
        return bool(self.applies_to(value))


@dataclass(frozen=True)
class ContextAdapter(Enhancer["Context"]):
    """``Context -> Context``."""

    capability: ClassVar[Capability] = Capability.CONTEXT


@dataclass(frozen=True)
class ToolAdapter(Enhancer["Tool"]):
    """``Tool -> Tool``."""

    capability: ClassVar[Capability] = Capability.TOOL


@dataclass(frozen=True)
class EventHandler(Enhancer["SessionEvent"]):
    """``SessionEvent -> SessionEvent | None``; ``None`` keeps the event out of derived state."""

    capability: ClassVar[Capability] = Capability.EVENT
