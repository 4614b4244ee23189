"""Enhancers — pluggable adapters for contexts, tools and session events."""

from .base import Capability, ContextAdapter, Enhancer, EventHandler, ToolAdapter
from .builtin import (
    compactor_adapter,
    history_window_adapter,
    ignore_event_types_handler,
    redaction_event_handler,
    security_tool_adapter,
    timeout_tool_adapter,
)
from .chain import EnhancementChain
from .registry import EnhancerRegistry

__all__ = [
    "Capability",
    "ContextAdapter",
    "EnhancementChain",
    "Enhancer",
    "EnhancerRegistry",
    "EventHandler",
    "ToolAdapter",
    "compactor_adapter",
    "history_window_adapter",
    "ignore_event_types_handler",
    "redaction_event_handler",
    "security_tool_adapter",
    "timeout_tool_adapter",
]
