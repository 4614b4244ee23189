"""Tool descriptors, calls and results."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from typing import TypeAlias

    from ..context.models import Context

    ToolExecutorFn: TypeAlias = Callable[
        [dict[str, Any], Context], "ToolResult | Any | Awaitable[ToolResult | Any]"
    ]
    SafetyPredicate: TypeAlias = Callable[[dict[str, Any], Context], bool]


class IntegrationHint(StrEnum):
    APPEND = "append"
    MERGE = "merge"
    REPLACE_SECTION = "replace_section"
    NEW_LAYER = "new_layer"


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool execution; ``integration_hint`` drives how it joins the context."""

    success: bool
    output: Any = None
    integration_hint: IntegrationHint = IntegrationHint.APPEND
    section: str | None = None
    error: str | None = None
    latency_ms: float = 0.0
    tool_id: str = ""
    call_id: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        output: Any,
        hint: IntegrationHint = IntegrationHint.APPEND,
        section: str | None = None,
        **metadata: Any,
    ) -> ToolResult:
        return cls(
            success=True,
            output=output,
            integration_hint=hint,
            section=section,
            metadata=metadata,
        )

    @classmethod
    def failure(cls, error: str, **metadata: Any) -> ToolResult:
        return cls(success=False, error=error, metadata=metadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_id": self.tool_id,
            "call_id": self.call_id,
            "success": self.success,
            "output": self.output,
            "integration_hint": self.integration_hint.value,
            "section": self.section,
            "error": self.error,
            "latency_ms": self.latency_ms,
        }


def _always_safe(_parameters: dict[str, Any], _context: Context) -> bool:
    return True


@dataclass(frozen=True)
class Tool:
    """Immutable tool descriptor.

    ``executor`` receives the call parameters and the current shared context
    and may be sync or async. ``can_execute`` is evaluated against the
    context as it stands right before the tool runs. ``terminal`` ends the
    chain successfully after this tool.

    ``timeout_sec`` of ``None`` falls back to the chain's per-tool timeout.
    A sync executor runs in a worker thread that cannot be cancelled: after
    a timeout the chain moves on, but the thread runs to completion.
    """

    id: str
    executor: ToolExecutorFn
    description: str = ""
    parameter_schema: dict[str, Any] = field(default_factory=dict)
    security_constraints: dict[str, Any] = field(default_factory=dict)
    can_execute: SafetyPredicate = _always_safe
    timeout_sec: float | None = None
    terminal: bool = False

    def evolve(self, **changes: Any) -> Tool:
        return replace(self, **changes)


@dataclass(frozen=True)
class ToolCall:
    """One step of a tool chain.

    ``depends_on`` lists call ids whose results must be integrated first.
    ``stop_when`` is an early-termination condition checked after the
    result is integrated.
    """

    tool: Tool
    parameters: dict[str, Any] = field(default_factory=dict)
    call_id: str = ""
    depends_on: tuple[str, ...] = ()
    stop_when: Callable[[ToolResult, Context], bool] | None = None

    def __post_init__(self) -> None:
        if not self.call_id:
            object.__setattr__(self, "call_id", self.tool.id)

    def with_tool(self, tool: Tool) -> ToolCall:
        return replace(self, tool=tool)
