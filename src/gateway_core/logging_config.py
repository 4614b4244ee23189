"""Logging setup — text or JSON output, configured from the environment.

Env vars:
    GATEWAY_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
    GATEWAY_LOG_FORMAT — text / json (default: text)

Structured fields are forwarded from ``logger.info(..., extra={...})``:
    session_id, request_id, tool_id, source, enhancer_id, duration_ms
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import Any

_STRUCTURED_FIELDS = (
    "session_id",
    "request_id",
    "tool_id",
    "source",
    "enhancer_id",
    "duration_ms",
)

_TEXT_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, structured extras at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure the ``gateway_core`` logger hierarchy.

    Explicit arguments win over the environment. Calling it twice replaces
    the handler rather than stacking a second one.
    """
    level_name = (level or os.environ.get("GATEWAY_LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_format = (fmt or os.environ.get("GATEWAY_LOG_FORMAT", "text")).lower()

    formatter: logging.Formatter
    if log_format == "json":
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(_TEXT_FORMAT, datefmt="%H:%M:%S")

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)

    root = logging.getLogger("gateway_core")
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)
    root.propagate = False

    # opentelemetry's exporter warnings are noisy at INFO
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)

    root.debug("Logging configured (level=%s, format=%s)", level_name, log_format)
