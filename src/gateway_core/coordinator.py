"""RequestCoordinator — drives one request through assembly, enhancement, tools and inference.

Mediator over the core components: the coordinator owns no state of its own
beyond the immutable enhancer registry reference; everything durable goes
through the event log.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .config import CoordinatorConfig, GatewayConfig
from .context.assembler import ContextAssembler
from .context.cache import ContextCache
from .context.models import Context
from .context.sources import SourceSpec
from .enhancers.base import Capability
from .enhancers.chain import EnhancementChain
from .enhancers.registry import EnhancerRegistry
from .errors import (
    CoreError,
    InferenceError,
    LowQualityContextError,
    NotFoundError,
    SourceUnavailableError,
    ValidationError,
)
from .events.log import EventLog
from .events.models import EventType, SessionEvent
from .events.projector import ProjectionCache, SessionProjector, SessionState
from .provider import ChatRequest, LLMProvider, StubLLMProvider
from .telemetry import configure_tracing, trace_request
from .tools.executor import ChainResult, ToolChainExecutor
from .tools.models import Tool, ToolCall
from .tools.registry import ToolRegistry
from .tools.schemas import validate_parameters

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Request / plan / response
# ---------------------------------------------------------------------------


class RequestKind(StrEnum):
    """What the caller wants back."""

    CHAT = "chat"  # context, optional tools, inference
    CONTEXT = "context"  # context and optional tools, no inference
    TOOLS = "tools"  # tools over a bare context, no inference


class NormalizedRequest(BaseModel):
    """Transport-independent request."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    query: str
    session_id: str = Field(min_length=1)
    max_tokens: int = Field(gt=0)
    required_tools: list[str] | None = None
    tool_parameters: dict[str, dict[str, Any]] = Field(default_factory=dict)
    kind: RequestKind = RequestKind.CHAT
    include_state: bool = False
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])

    @pydantic.model_validator(mode="after")
    def _check_shape(self) -> NormalizedRequest:
        tools = self.required_tools or []
        if len(set(tools)) != len(tools):
            msg = "required_tools must not repeat a tool id"
            raise ValueError(msg)
        unknown = set(self.tool_parameters) - set(tools)
        if unknown:
            msg = f"tool_parameters names tools that are not required: {sorted(unknown)}"
            raise ValueError(msg)
        if self.kind == RequestKind.TOOLS and not tools:
            msg = "a tools request needs required_tools"
            raise ValueError(msg)
        if self.kind != RequestKind.TOOLS and not self.query.strip():
            msg = "query must be non-empty"
            raise ValueError(msg)
        return self


@dataclass(frozen=True)
class ProcessingPlan:
    """Which stages a request goes through."""

    needs_context: bool
    needs_tools: bool
    needs_inference: bool
    needs_projection: bool

    @classmethod
    def from_request(cls, request: NormalizedRequest) -> ProcessingPlan:
        return cls(
            needs_context=request.kind != RequestKind.TOOLS,
            needs_tools=bool(request.required_tools),
            needs_inference=request.kind == RequestKind.CHAT,
            needs_projection=request.include_state,
        )


class Response(BaseModel):
    """Everything a request produced, including partial work and the errors that cut it short."""

    request_id: str
    session_id: str
    context_summary: dict[str, Any] = Field(default_factory=dict)
    tool_results: list[dict[str, Any]] = Field(default_factory=list)
    inference_output: str | None = None
    events_appended: list[int] = Field(default_factory=list)
    chain_state: str | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)
    session_state: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_request(data: NormalizedRequest | Mapping[str, Any]) -> NormalizedRequest:
    """Validate raw request data; pydantic errors become :class:`ValidationError`."""
    if isinstance(data, NormalizedRequest):
        return data
    try:
        return NormalizedRequest.model_validate(dict(data))
    except pydantic.ValidationError as exc:
        problems = [
            f"{'.'.join(map(str, e['loc'])) or 'request'}: {e['msg']}" for e in exc.errors()
        ]
        msg = f"Invalid request: {'; '.join(problems)}"
        raise ValidationError(msg, errors=problems) from exc


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class RequestCoordinator:
    """``handle(request) -> Response``.

    Tool adapters run and every call's parameters are checked before any
    side effect. Stages then run in a fixed order: context assembly and
    context adapters, the tool chain, inference, then the session events are
    appended one by one. An append failure stops the appends and is reported
    in the response with the work already done. Projection is computed only
    on request.
    """

    def __init__(
        self,
        registry: EnhancerRegistry,
        assembler: ContextAssembler,
        tool_registry: ToolRegistry,
        event_log: EventLog,
        executor: ToolChainExecutor | None = None,
        provider: LLMProvider | None = None,
        config: CoordinatorConfig | None = None,
        chain: EnhancementChain | None = None,
        projection_cache: ProjectionCache | None = None,
        context_cache: ContextCache | None = None,
    ) -> None:
        self._registry = registry
        self._assembler = assembler
        self._tools = tool_registry
        self._log = event_log
        self._executor = executor if executor is not None else ToolChainExecutor()
        self._provider = provider if provider is not None else StubLLMProvider()
        self._config = config or CoordinatorConfig()
        self._chain = chain if chain is not None else EnhancementChain()
        self._projector = SessionProjector(self._chain)
        self._projection_cache = projection_cache
        self._context_cache = context_cache
        self._semaphore = asyncio.Semaphore(self._config.max_concurrent_requests)

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        registry: EnhancerRegistry,
        sources: Sequence[SourceSpec],
        tool_registry: ToolRegistry,
        event_log: EventLog,
        **kwargs: Any,
    ) -> RequestCoordinator:
        """Build a coordinator from a :class:`GatewayConfig`.

        Installs the tracer described by ``config.telemetry`` and hands each
        component its own section. Remaining keyword arguments (provider,
        caches, chain) go to the constructor unchanged.
        """
        configure_tracing(config.telemetry)
        return cls(
            registry,
            ContextAssembler(sources, config.assembly),
            tool_registry,
            event_log,
            executor=ToolChainExecutor(config.chain),
            config=config.coordinator,
            **kwargs,
        )

    @property
    def registry(self) -> EnhancerRegistry:
        return self._registry

    def with_registry(self, registry: EnhancerRegistry) -> RequestCoordinator:
        """A coordinator sharing every collaborator but using *registry*.

        Requests already running on this coordinator keep the registry they
        started with.
        """
        clone = copy.copy(self)
        clone._registry = registry
        return clone

    async def handle(self, request: NormalizedRequest | Mapping[str, Any]) -> Response:
        req = parse_request(request)
        calls = self._prepare_calls(req, self._resolve_tools(req))
        plan = ProcessingPlan.from_request(req)
        async with self._semaphore:
            with trace_request(req.session_id, req.request_id):
                start = time.perf_counter()
                response = await self._run(req, plan, calls)
                logger.info(
                    "Handled request %s (%d events, %d errors)",
                    req.request_id,
                    len(response.events_appended),
                    len(response.errors),
                    extra={
                        "session_id": req.session_id,
                        "request_id": req.request_id,
                        "duration_ms": (time.perf_counter() - start) * 1000,
                    },
                )
                return response

    def _resolve_tools(self, request: NormalizedRequest) -> list[Tool]:
        tools: list[Tool] = []
        for tool_id in request.required_tools or []:
            try:
                tools.append(self._tools.lookup(tool_id))
            except NotFoundError as exc:
                msg = f"Unknown tool '{tool_id}'"
                raise ValidationError(msg, tool_id=tool_id) from exc
        return tools

    def _prepare_calls(self, request: NormalizedRequest, tools: list[Tool]) -> list[ToolCall]:
        """Apply tool adapters and check every call's parameters before anything runs."""
        calls: list[ToolCall] = []
        for tool in tools:
            adapted = self._chain.apply(self._registry.discover(Capability.TOOL, tool), tool)
            parameters = dict(request.tool_parameters.get(tool.id, {}))
            valid, errors = validate_parameters(adapted.parameter_schema, parameters)
            if not valid:
                msg = f"Invalid parameters for tool '{tool.id}': {'; '.join(errors)}"
                raise ValidationError(msg, tool_id=tool.id, errors=errors)
            calls.append(ToolCall(tool=adapted, parameters=parameters))
        return calls

    async def _run(
        self, request: NormalizedRequest, plan: ProcessingPlan, calls: list[ToolCall]
    ) -> Response:
        session_id = request.session_id
        events: list[SessionEvent] = []
        errors: list[CoreError] = []

        # 1. context
        context = Context(query=request.query, session_id=session_id)
        if plan.needs_context:
            try:
                context = await self._assemble(request)
            except (LowQualityContextError, SourceUnavailableError) as exc:
                rejected = SessionEvent.create(
                    EventType.CONTEXT_REJECTED,
                    {"request_id": request.request_id, "query": request.query, **exc.to_dict()},
                )
                await self._log.append(session_id, rejected)
                raise
            adapters = self._registry.discover(Capability.CONTEXT, context)
            context = self._chain.apply(adapters, context)
            events.append(
                SessionEvent.create(
                    EventType.CONTEXT_ASSEMBLED,
                    {"request_id": request.request_id, **context.summary()},
                )
            )

        # 2. tools
        chain_result: ChainResult | None = None
        if plan.needs_tools:
            chain_result = await self._executor.execute_chain(calls, context)
            context = chain_result.context
            for result in chain_result.completed:
                events.append(
                    SessionEvent.create(
                        EventType.TOOL_EXECUTED,
                        {
                            "request_id": request.request_id,
                            "tool_id": result.tool_id,
                            "call_id": result.call_id,
                            "integration_hint": result.integration_hint.value,
                            "latency_ms": result.latency_ms,
                        },
                    )
                )
            if chain_result.failure is not None:
                errors.append(chain_result.failure)
                events.append(
                    SessionEvent.create(
                        EventType.TOOL_CHAIN_FAILED,
                        {
                            "request_id": request.request_id,
                            "state": chain_result.state.value,
                            "skipped": list(chain_result.skipped),
                            **chain_result.failure.to_dict(),
                        },
                    )
                )

        # 3. inference
        inference_output: str | None = None
        if plan.needs_inference:
            try:
                inference_output = await self._infer(context)
            except InferenceError as exc:
                errors.append(exc)
                events.append(
                    SessionEvent.create(
                        EventType.INFERENCE_FAILED,
                        {"request_id": request.request_id, **exc.to_dict()},
                    )
                )

        # 4. events, appended in order
        events.append(
            SessionEvent.create(
                EventType.INTERACTION,
                {
                    "request_id": request.request_id,
                    "kind": request.kind.value,
                    "query": request.query,
                    "response": inference_output,
                },
            )
        )
        appended: list[int] = []
        for event in events:
            try:
                appended.append(await self._log.append(session_id, event))
            except CoreError as exc:
                logger.warning(
                    "Stopped appending events for request %s after %d: %s",
                    request.request_id,
                    len(appended),
                    exc,
                    extra={"session_id": session_id, "request_id": request.request_id},
                )
                errors.append(exc)
                break

        state = await self.get_session_state(session_id) if plan.needs_projection else None
        return Response(
            request_id=request.request_id,
            session_id=session_id,
            context_summary=context.summary(),
            tool_results=[r.to_dict() for r in chain_result.completed] if chain_result else [],
            inference_output=inference_output,
            events_appended=appended,
            chain_state=chain_result.state.value if chain_result else None,
            errors=[e.to_dict() for e in errors],
            session_state=state.to_dict() if state is not None else None,
        )

    async def _assemble(self, request: NormalizedRequest) -> Context:
        # Keyed on the log head: every handled request appends, so a hit comes
        # from identical requests racing on the same head, never from a later one.
        if self._context_cache is None:
            return await self._assembler.assemble(
                request.query, request.session_id, request.max_tokens
            )
        head = await self._log.head(request.session_id)
        key = ContextCache.key(request.session_id, request.query, request.max_tokens, head)
        cached = self._context_cache.get(key)
        if cached is not None:
            return cached
        context = await self._assembler.assemble(
            request.query, request.session_id, request.max_tokens
        )
        self._context_cache.put(key, context)
        return context

    async def _infer(self, context: Context) -> str:
        try:
            chat_request = ChatRequest.from_context(
                context, self._config.model, self._config.system_prompt
            )
            response = await asyncio.wait_for(
                self._provider.chat(chat_request), timeout=self._config.inference_timeout_sec
            )
        except TimeoutError as exc:
            msg = f"Inference timed out after {self._config.inference_timeout_sec}s"
            raise InferenceError(msg, provider=self._provider.name()) from exc
        except Exception as exc:
            logger.warning("Inference failed: %s", exc, extra={"session_id": context.session_id})
            msg = f"Inference failed: {exc}"
            raise InferenceError(msg, provider=self._provider.name()) from exc
        return response.content

    # -- session state -------------------------------------------------------

    async def get_session_state(self, session_id: str, upto: int | None = None) -> SessionState:
        """Project the session from its log; ``upto`` replays only a prefix."""
        handlers = self._registry.of(Capability.EVENT)
        if upto is None and self._projection_cache is not None:
            return await self._projection_cache.get(session_id, handlers)
        return await self._projector.project_log(self._log, session_id, handlers, upto=upto)

    async def compensate(self, session_id: str, target_sequence: int, reason: str = "") -> int:
        """Append a compensating event that undoes the interaction at *target_sequence*."""
        events = await self._log.read(session_id, target_sequence)
        target = events[0] if events else None
        if (
            target is None
            or target.sequence_number != target_sequence
            or target.event_type != EventType.INTERACTION
        ):
            msg = f"No interaction at sequence {target_sequence} in session '{session_id}'"
            raise ValidationError(msg, session_id=session_id, target_sequence=target_sequence)
        event = SessionEvent.create(
            EventType.COMPENSATION, {"target_sequence": target_sequence, "reason": reason}
        )
        return await self._log.append(session_id, event)
