"""Immutable tool registry."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from ..errors import DuplicateIdError, NotFoundError
from .models import Tool


class ToolRegistry:
    """Copy-on-write map of tool id to :class:`Tool`.

    ``register`` and ``unregister`` return new registries; the receiver is
    never changed, so a registry can be shared across concurrent requests.
    """

    __slots__ = ("_tools",)

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        entries: dict[str, Tool] = {}
        for tool in tools:
            if tool.id in entries:
                msg = f"Tool '{tool.id}' is already registered"
                raise DuplicateIdError(msg, tool_id=tool.id)
            entries[tool.id] = tool
        self._tools = entries

    def register(self, tool: Tool) -> ToolRegistry:
        return ToolRegistry([*self._tools.values(), tool])

    def unregister(self, tool_id: str) -> ToolRegistry:
        if tool_id not in self._tools:
            msg = f"Tool '{tool_id}' is not registered"
            raise NotFoundError(msg, tool_id=tool_id)
        return ToolRegistry(t for t in self._tools.values() if t.id != tool_id)

    def lookup(self, tool_id: str) -> Tool:
        try:
            return self._tools[tool_id]
        except KeyError:
            msg = f"Tool '{tool_id}' is not registered"
            raise NotFoundError(msg, tool_id=tool_id) from None

    def list_tools(self) -> list[dict[str, object]]:
        """Descriptors for the LLM: id, description and parameter schema."""
        return [
            {"id": t.id, "description": t.description, "parameters": t.parameter_schema}
            for t in self._tools.values()
        ]

    def ids(self) -> tuple[str, ...]:
        return tuple(self._tools)

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
