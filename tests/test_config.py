"""Tests for configuration loading and the error taxonomy."""

import pytest

from gateway_core.config import AssemblyConfig, ChainConfig, CoordinatorConfig, GatewayConfig
from gateway_core.errors import (
    ConcurrentAppendError,
    LowQualityContextError,
    SourceError,
    ValidationError,
)


def test_defaults():
    config = GatewayConfig()
    assert config.assembly.relevance_threshold == 0.1
    assert config.assembly.quality_threshold == 0.2
    assert config.chain.tool_timeout_sec == 30.0
    assert config.coordinator.max_concurrent_requests == 32
    assert config.telemetry.service_name == "gateway-core"


def test_from_env(monkeypatch):
    monkeypatch.setenv("GATEWAY_QUALITY_THRESHOLD", "0.5")
    monkeypatch.setenv("GATEWAY_CHAIN_TIMEOUT_SEC", "10")
    monkeypatch.setenv("GATEWAY_MODEL", "local-model")
    monkeypatch.setenv("GATEWAY_TRACING", "0")
    config = GatewayConfig.from_env()
    assert config.assembly.quality_threshold == 0.5
    assert config.chain.chain_timeout_sec == 10.0
    assert config.coordinator.model == "local-model"
    assert config.telemetry.enabled is False


def test_from_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("GATEWAY_MAX_CONCURRENT_SOURCES", "many")
    with pytest.raises(ValueError, match="GATEWAY_MAX_CONCURRENT_SOURCES"):
        AssemblyConfig.from_env()


@pytest.mark.parametrize(
    "factory",
    [
        lambda: AssemblyConfig(relevance_threshold=1.5),
        lambda: AssemblyConfig(max_concurrent_sources=0),
        lambda: ChainConfig(tool_timeout_sec=0),
        lambda: CoordinatorConfig(inference_timeout_sec=-1),
    ],
)
def test_invalid_values(factory):
    with pytest.raises(ValueError):
        factory()


def test_error_to_dict():
    err = ValidationError("bad request", field="query")
    assert err.to_dict() == {
        "error": "ValidationError",
        "message": "bad request",
        "retryable": False,
        "details": {"field": "query"},
    }


def test_retryable_errors():
    assert SourceError("docs", "down").retryable
    assert ConcurrentAppendError("s1", 1, 2).retryable
    assert not LowQualityContextError(0.1, 0.2).retryable
    assert SourceError("docs", "down").message == "Source 'docs' failed: down"
