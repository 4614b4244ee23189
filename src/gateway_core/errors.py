"""Error taxonomy for the gateway core."""

from __future__ import annotations

from typing import Any


class CoreError(Exception):
    """Base class for every error the core raises or returns."""

    retryable: bool = False

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "retryable": self.retryable,
            "details": dict(self.details),
        }


class ValidationError(CoreError):
    """Malformed request or tool parameters, rejected before any side effect."""


class DuplicateIdError(CoreError):
    """An id is already registered."""


class NotFoundError(CoreError):
    """An id is not registered."""


class SourceError(CoreError):
    """A single context source failed."""

    retryable = True

    def __init__(self, source: str, message: str, **details: Any) -> None:
        self.source = source
        super().__init__(f"Source '{source}' failed: {message}", source=source, **details)


class SourceUnavailableError(CoreError):
    """Every configured context source failed."""

    retryable = True


class LowQualityContextError(CoreError):
    """The assembled context failed the relevance quality gate."""

    def __init__(self, score: float, threshold: float) -> None:
        self.score = score
        self.threshold = threshold
        super().__init__(
            f"Context relevance {score:.3f} below threshold {threshold:.3f}",
            score=score,
            threshold=threshold,
        )


class PlanError(CoreError):
    """A tool sequence cannot be executed in the given order."""


class UnsafeToolError(CoreError):
    """A tool's safety predicate rejected the current context."""

    def __init__(self, tool_id: str, reason: str = "safety predicate rejected execution") -> None:
        self.tool_id = tool_id
        super().__init__(f"Tool '{tool_id}' is unsafe: {reason}", tool_id=tool_id)


class ToolExecutionFailedError(CoreError):
    """A tool raised, reported failure, or timed out."""

    retryable = True

    def __init__(self, tool_id: str, reason: str, *, timed_out: bool = False) -> None:
        self.tool_id = tool_id
        self.timed_out = timed_out
        super().__init__(
            f"Tool '{tool_id}' failed: {reason}", tool_id=tool_id, timed_out=timed_out
        )


class ConcurrentAppendError(CoreError):
    """Two appends raced for the same sequence number in one session."""

    retryable = True

    def __init__(self, session_id: str, expected: int, actual: int) -> None:
        self.session_id = session_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Session '{session_id}': expected sequence {expected}, next is {actual}",
            session_id=session_id,
            expected=expected,
            actual=actual,
        )


class InferenceError(CoreError):
    """The LLM collaborator failed."""

    retryable = True
