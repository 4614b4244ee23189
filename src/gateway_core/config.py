"""Gateway configuration — frozen dataclasses loaded from ``GATEWAY_*`` env vars."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .telemetry import TelemetryConfig


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        msg = f"{name} must be a number, got {raw!r}"
        raise ValueError(msg) from None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ValueError(msg) from None


@dataclass(frozen=True)
class AssemblyConfig:
    """Context assembly thresholds and fan-out."""

    relevance_threshold: float = 0.1
    quality_threshold: float = 0.2
    max_concurrent_sources: int = 4
    source_timeout_sec: float = 5.0

    def __post_init__(self) -> None:
        for name in ("relevance_threshold", "quality_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                msg = f"{name} must be within [0, 1], got {value}"
                raise ValueError(msg)
        if self.max_concurrent_sources <= 0:
            msg = "max_concurrent_sources must be positive"
            raise ValueError(msg)
        if self.source_timeout_sec <= 0:
            msg = "source_timeout_sec must be positive"
            raise ValueError(msg)

    @classmethod
    def from_env(cls) -> AssemblyConfig:
        return cls(
            relevance_threshold=_env_float("GATEWAY_RELEVANCE_THRESHOLD", 0.1),
            quality_threshold=_env_float("GATEWAY_QUALITY_THRESHOLD", 0.2),
            max_concurrent_sources=_env_int("GATEWAY_MAX_CONCURRENT_SOURCES", 4),
            source_timeout_sec=_env_float("GATEWAY_SOURCE_TIMEOUT_SEC", 5.0),
        )


@dataclass(frozen=True)
class ChainConfig:
    """Tool chain timeouts."""

    tool_timeout_sec: float = 30.0
    chain_timeout_sec: float = 120.0

    def __post_init__(self) -> None:
        if self.tool_timeout_sec <= 0 or self.chain_timeout_sec <= 0:
            msg = "tool and chain timeouts must be positive"
            raise ValueError(msg)

    @classmethod
    def from_env(cls) -> ChainConfig:
        return cls(
            tool_timeout_sec=_env_float("GATEWAY_TOOL_TIMEOUT_SEC", 30.0),
            chain_timeout_sec=_env_float("GATEWAY_CHAIN_TIMEOUT_SEC", 120.0),
        )


@dataclass(frozen=True)
class CoordinatorConfig:
    """Request coordinator settings."""

    max_concurrent_requests: int = 32
    inference_timeout_sec: float = 60.0
    model: str = "default"
    system_prompt: str = "You are a helpful AI assistant."

    def __post_init__(self) -> None:
        if self.max_concurrent_requests <= 0:
            msg = "max_concurrent_requests must be positive"
            raise ValueError(msg)
        if self.inference_timeout_sec <= 0:
            msg = "inference_timeout_sec must be positive"
            raise ValueError(msg)

    @classmethod
    def from_env(cls) -> CoordinatorConfig:
        return cls(
            max_concurrent_requests=_env_int("GATEWAY_MAX_CONCURRENT_REQUESTS", 32),
            inference_timeout_sec=_env_float("GATEWAY_INFERENCE_TIMEOUT_SEC", 60.0),
            model=os.environ.get("GATEWAY_MODEL", "default"),
            system_prompt=os.environ.get(
                "GATEWAY_SYSTEM_PROMPT", "You are a helpful AI assistant."
            ),
        )


@dataclass(frozen=True)
class GatewayConfig:
    """Top-level configuration, one section per component."""

    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    @classmethod
    def from_env(cls) -> GatewayConfig:
        return cls(
            assembly=AssemblyConfig.from_env(),
            chain=ChainConfig.from_env(),
            coordinator=CoordinatorConfig.from_env(),
            telemetry=TelemetryConfig.from_env(),
        )
