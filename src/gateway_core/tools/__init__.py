"""Tools — descriptors, registry, result integration and chain execution."""

from .executor import ChainResult, ChainState, ToolChainExecutor, plan
from .integrator import ResultIntegrator, deep_merge
from .models import IntegrationHint, Tool, ToolCall, ToolResult
from .registry import ToolRegistry
from .schemas import validate_parameters

__all__ = [
    "ChainResult",
    "ChainState",
    "IntegrationHint",
    "ResultIntegrator",
    "Tool",
    "ToolCall",
    "ToolChainExecutor",
    "ToolRegistry",
    "ToolResult",
    "deep_merge",
    "plan",
    "validate_parameters",
]
