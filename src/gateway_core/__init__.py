"""gateway-core — request-processing core of a tool-augmented LLM gateway."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import AssemblyConfig, ChainConfig, CoordinatorConfig, GatewayConfig
from .context.assembler import ContextAssembler
from .context.cache import ContextCache
from .context.models import Context, ContextLayer, ContextMetadata, Contribution, Interaction
from .context.sources import (
    ConversationHistorySource,
    KeywordIndex,
    KeywordSearchSource,
    SourceProvider,
    SourceSpec,
    WorkspaceSource,
)
from .coordinator import (
    NormalizedRequest,
    ProcessingPlan,
    RequestCoordinator,
    RequestKind,
    Response,
    parse_request,
)
from .enhancers.base import Capability, ContextAdapter, Enhancer, EventHandler, ToolAdapter
from .enhancers.chain import EnhancementChain
from .enhancers.registry import EnhancerRegistry
from .errors import (
    ConcurrentAppendError,
    CoreError,
    DuplicateIdError,
    InferenceError,
    LowQualityContextError,
    NotFoundError,
    PlanError,
    SourceError,
    SourceUnavailableError,
    ToolExecutionFailedError,
    UnsafeToolError,
    ValidationError,
)
from .events.log import EventLog, InMemoryEventLog, SqliteEventLog
from .events.models import EventType, SessionEvent
from .events.projector import ProjectionCache, SessionProjector, SessionState
from .logging_config import setup_logging
from .provider import ChatMessage, ChatRequest, ChatResponse, LLMProvider, StubLLMProvider
from .telemetry import GatewayTracer, TelemetryConfig, configure_tracing, get_tracer
from .tools.executor import ChainResult, ChainState, ToolChainExecutor
from .tools.integrator import ResultIntegrator
from .tools.models import IntegrationHint, Tool, ToolCall, ToolResult
from .tools.registry import ToolRegistry

__all__ = [
    "AssemblyConfig",
    "Capability",
    "ChainConfig",
    "ChainResult",
    "ChainState",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ConcurrentAppendError",
    "Context",
    "ContextAdapter",
    "ContextAssembler",
    "ContextCache",
    "ContextLayer",
    "ContextMetadata",
    "Contribution",
    "ConversationHistorySource",
    "CoordinatorConfig",
    "CoreError",
    "DuplicateIdError",
    "EnhancementChain",
    "Enhancer",
    "EnhancerRegistry",
    "EventHandler",
    "EventLog",
    "EventType",
    "GatewayConfig",
    "GatewayTracer",
    "InMemoryEventLog",
    "InferenceError",
    "IntegrationHint",
    "Interaction",
    "KeywordIndex",
    "KeywordSearchSource",
    "LLMProvider",
    "LowQualityContextError",
    "NormalizedRequest",
    "NotFoundError",
    "PlanError",
    "ProcessingPlan",
    "ProjectionCache",
    "RequestCoordinator",
    "RequestKind",
    "Response",
    "ResultIntegrator",
    "SessionEvent",
    "SessionProjector",
    "SessionState",
    "SourceError",
    "SourceProvider",
    "SourceSpec",
    "SourceUnavailableError",
    "SqliteEventLog",
    "StubLLMProvider",
    "TelemetryConfig",
    "Tool",
    "ToolAdapter",
    "ToolCall",
    "ToolChainExecutor",
    "ToolExecutionFailedError",
    "ToolRegistry",
    "ToolResult",
    "UnsafeToolError",
    "ValidationError",
    "WorkspaceSource",
    "configure_tracing",
    "get_tracer",
    "parse_request",
    "setup_logging",
]
