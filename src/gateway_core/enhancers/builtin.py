"""Built-in enhancers: history shaping, tool hardening, event hygiene."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from ..context.models import Interaction
from .base import ContextAdapter, EventHandler, ToolAdapter

if TYPE_CHECKING:
    from ..context.models import Context
    from ..events.models import SessionEvent
    from ..tools.models import Tool

# ---------------------------------------------------------------------------
# Context adapters
# ---------------------------------------------------------------------------


def history_window_adapter(
    keep_first: int = 2, keep_last: int = 5, priority: int = 10
) -> ContextAdapter:
    """Keep the first *keep_first* and last *keep_last* turns, drop the middle."""

    def _applies(ctx: Context) -> bool:
        return len(ctx.conversation_history) > keep_first + keep_last

    def _apply(ctx: Context) -> Context:
        history = ctx.conversation_history
        total = len(history)
        selected = history[:keep_first] + history[total - keep_last :]
        return ctx.with_history(selected).with_marker("history_window")

    return ContextAdapter(
        id="history_window",
        apply=_apply,
        priority=priority,
        applies_to=_applies,
        reads=frozenset({"conversation_history"}),
        writes=frozenset({"conversation_history", "metadata"}),
    )


def compactor_adapter(priority: int = 20) -> ContextAdapter:
    """Merge consecutive same-role turns, trim whitespace."""

    def _apply(ctx: Context) -> Context:
        merged: list[Interaction] = []
        for item in ctx.conversation_history:
            content = item.content.strip()
            if merged and merged[-1].role == item.role and merged[-1].source == item.source:
                last = merged[-1]
                merged[-1] = Interaction(last.role, f"{last.content}\n{content}", last.source)
            else:
                merged.append(Interaction(item.role, content, item.source))
        return ctx.with_history(tuple(merged)).with_marker("compactor")

    return ContextAdapter(
        id="compactor",
        apply=_apply,
        priority=priority,
        applies_to=lambda ctx: bool(ctx.conversation_history),
        reads=frozenset({"conversation_history"}),
        writes=frozenset({"conversation_history", "metadata"}),
    )


# ---------------------------------------------------------------------------
# Tool adapters
# ---------------------------------------------------------------------------


def security_tool_adapter(blocked_parameters: Iterable[str], priority: int = 10) -> ToolAdapter:
    """Refuse calls whose parameters name any of *blocked_parameters*.

    The existing ``can_execute`` predicate is kept; both must pass.
    """
    blocked = frozenset(blocked_parameters)

    def _apply(tool: Tool) -> Tool:
        inner = tool.can_execute
        constraints = dict(tool.security_constraints)
        constraints["blocked_parameters"] = sorted(
            blocked | set(constraints.get("blocked_parameters", ()))
        )

        def _can_execute(parameters: dict[str, Any], context: Context) -> bool:
            if blocked & set(parameters):
                return False
            return inner(parameters, context)

        return tool.evolve(security_constraints=constraints, can_execute=_can_execute)

    return ToolAdapter(id="security", apply=_apply, priority=priority)


def timeout_tool_adapter(max_timeout_sec: float, priority: int = 20) -> ToolAdapter:
    """Cap every tool's timeout at *max_timeout_sec*."""
    if max_timeout_sec <= 0:
        msg = "max_timeout_sec must be positive"
        raise ValueError(msg)

    def _apply(tool: Tool) -> Tool:
        current = tool.timeout_sec
        capped = max_timeout_sec if current is None else min(current, max_timeout_sec)
        return tool.evolve(timeout_sec=capped)

    return ToolAdapter(id="timeout", apply=_apply, priority=priority)


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------

_SECRET_PATTERNS = [
    (re.compile(r"sk-[A-Za-z0-9]{8,}"), "[REDACTED_API_KEY]"),
    (re.compile(r"Bearer\s+[A-Za-z0-9._\-]{10,}"), "[REDACTED_BEARER]"),
    (re.compile(r"(?i)password\s*[=:]\s*\S+"), "[REDACTED_PASSWORD]"),
    (re.compile(r"(?i)api[_-]?key\s*[=:]\s*\S+"), "[REDACTED_API_KEY]"),
    (re.compile(r"(?i)secret\s*[=:]\s*\S+"), "[REDACTED_SECRET]"),
    (re.compile(r"gh[po]_[A-Za-z0-9]{36}"), "[REDACTED_GH_TOKEN]"),
]


def redact(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, dict):
        return {k: _redact_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return type(value)(_redact_value(v) for v in value)
    return value


def redaction_event_handler(priority: int = 10) -> EventHandler:
    """Strip secrets from event payloads before they reach derived state."""

    def _apply(event: SessionEvent) -> SessionEvent:
        return event.with_payload(_redact_value(event.payload))

    return EventHandler(id="redaction", apply=_apply, priority=priority)


def ignore_event_types_handler(
    event_types: Iterable[str], priority: int = 5, handler_id: str = "ignore_event_types"
) -> EventHandler:
    """Keep the named event types in the log but out of the projection."""
    ignored = frozenset(str(t) for t in event_types)
    return EventHandler(
        id=handler_id,
        apply=lambda event: None,
        priority=priority,
        applies_to=lambda event: event.event_type in ignored,
    )
