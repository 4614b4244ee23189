"""Request, tool, source and event-log spans on OpenTelemetry.

Spans nest as ``gateway/request`` over ``context/source_fetch``,
``enhancer/chain``, ``tool/call`` and ``events/append``. A span that exits
with a :class:`~gateway_core.errors.CoreError` carries the error name and
whether it is retryable.
"""

from __future__ import annotations

import contextlib
import os
from collections.abc import Generator
from dataclasses import dataclass
from typing import Any

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.trace import NoOpTracer, Span, Tracer

from .errors import CoreError

_EXPORTERS = ("none", "stdout", "otlp")


@dataclass(frozen=True)
class TelemetryConfig:
    service_name: str = "gateway-core"
    enabled: bool = True
    exporter: str = "none"  # one of _EXPORTERS
    otlp_endpoint: str = "http://localhost:4317"

    @classmethod
    def from_env(cls) -> TelemetryConfig:
        return cls(
            service_name=os.environ.get("GATEWAY_SERVICE_NAME", "gateway-core"),
            enabled=os.environ.get("GATEWAY_TRACING", "1").strip().lower() not in ("0", "false"),
            exporter=os.environ.get("GATEWAY_TRACE_EXPORTER", "none").strip().lower(),
            otlp_endpoint=os.environ.get("GATEWAY_OTLP_ENDPOINT", "http://localhost:4317"),
        )


def _span_processor(config: TelemetryConfig) -> SpanProcessor | None:
    """Processor for the configured exporter; ``None`` means stay on the noop tracer."""
    if config.exporter not in _EXPORTERS:
        msg = f"Unknown trace exporter '{config.exporter}' (expected none, stdout or otlp)"
        raise ValueError(msg)
    if not config.enabled or config.exporter == "none":
        return None
    if config.exporter == "stdout":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

        return SimpleSpanProcessor(ConsoleSpanExporter())
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:  # pragma: no cover
        # otlp extra not installed
        return None
    return BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True))


class GatewayTracer:
    """Owns the ``TracerProvider`` built from a :class:`TelemetryConfig`."""

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def recording(self) -> bool:
        return self._provider is not None

    def init(self) -> None:
        # Disabled tracing ignores the exporter name entirely.
        if not self._config.enabled:
            return
        processor = _span_processor(self._config)
        if processor is None:
            return
        resource = Resource.create({"service.name": self._config.service_name})
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(processor)
        self._provider = provider
        self._tracer = provider.get_tracer(self._config.service_name)

    @contextlib.contextmanager
    def span(
        self, name: str, attributes: dict[str, Any] | None = None
    ) -> Generator[Span, None, None]:
        with self._tracer.start_as_current_span(name, attributes=attributes) as s:
            try:
                yield s
            except CoreError as exc:
                s.set_attribute("gateway.error", type(exc).__name__)
                s.set_attribute("gateway.retryable", exc.retryable)
                raise

    def shutdown(self) -> None:
        """Flush pending spans; safe to call more than once."""
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None
            self._tracer = NoOpTracer()


_DEFAULT_TRACER: GatewayTracer | None = None


def get_tracer() -> GatewayTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = GatewayTracer()
    return _DEFAULT_TRACER


def configure_tracing(config: TelemetryConfig) -> GatewayTracer:
    """Replace the default tracer with one built from *config*."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    tracer = GatewayTracer(config)
    tracer.init()
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()
    _DEFAULT_TRACER = tracer
    return tracer


# ---------------------------------------------------------------------------
# Per-stage spans
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def trace_request(session_id: str, request_id: str) -> Generator[Span, None, None]:
    attrs = {"session.id": session_id, "request.id": request_id}
    with get_tracer().span("gateway/request", attrs) as s:
        yield s


@contextlib.contextmanager
def trace_source_fetch(source: str, token_budget: int) -> Generator[Span, None, None]:
    attrs = {"source.name": source, "source.token_budget": token_budget}
    with get_tracer().span("context/source_fetch", attrs) as s:
        yield s


@contextlib.contextmanager
def trace_tool_call(tool_id: str, call_id: str) -> Generator[Span, None, None]:
    with get_tracer().span("tool/call", {"tool.id": tool_id, "tool.call_id": call_id}) as s:
        yield s


@contextlib.contextmanager
def trace_enhancer_chain(capability: str, size: int) -> Generator[Span, None, None]:
    attrs = {"enhancer.capability": capability, "enhancer.count": size}
    with get_tracer().span("enhancer/chain", attrs) as s:
        yield s


@contextlib.contextmanager
def trace_event_append(session_id: str, event_type: str) -> Generator[Span, None, None]:
    attrs = {"session.id": session_id, "event.type": event_type}
    with get_tracer().span("events/append", attrs) as s:
        yield s
