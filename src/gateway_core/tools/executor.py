"""ToolChainExecutor — run a dependency-ordered tool sequence over a shared context.

State machine per run::

    PLANNING -> EXECUTING -> COMPLETED | PARTIALLY_FAILED | ABORTED

Planning problems raise :class:`PlanError` before anything runs. Runtime
problems end the run and are returned in the :class:`ChainResult` together
with every result completed so far; ``raise_for_status()`` re-raises them.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

from ..config import ChainConfig
from ..context.models import Context
from ..errors import (
    CoreError,
    PlanError,
    ToolExecutionFailedError,
    UnsafeToolError,
    ValidationError,
)
from ..telemetry import trace_tool_call
from .integrator import ResultIntegrator
from .models import Tool, ToolCall, ToolResult
from .schemas import validate_parameters

logger = logging.getLogger(__name__)


class ChainState(StrEnum):
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ChainResult:
    """Outcome of one chain run.

    ``completed`` holds the results integrated into ``context``, in order.
    ``skipped`` lists the call ids that never started.
    """

    state: ChainState
    completed: tuple[ToolResult, ...]
    context: Context
    failure: CoreError | None = None
    skipped: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state == ChainState.COMPLETED

    def raise_for_status(self) -> None:
        if self.failure is not None:
            raise self.failure

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "completed": [r.to_dict() for r in self.completed],
            "failure": self.failure.to_dict() if self.failure is not None else None,
            "skipped": list(self.skipped),
        }


def plan(calls: Sequence[ToolCall]) -> None:
    """Check that every dependency names an earlier call. Raises PlanError."""
    all_ids = {c.call_id for c in calls}
    seen: set[str] = set()
    for call in calls:
        if call.call_id in seen:
            msg = f"Duplicate call id '{call.call_id}'"
            raise PlanError(msg, call_id=call.call_id)
        for dep in call.depends_on:
            if dep in seen:
                continue
            if dep in all_ids:
                msg = f"Call '{call.call_id}' depends on '{dep}', which runs later"
            else:
                msg = f"Call '{call.call_id}' depends on unknown call '{dep}'"
            raise PlanError(msg, call_id=call.call_id, dependency=dep)
        seen.add(call.call_id)


class ToolChainExecutor:
    """Executes tool calls strictly in order, one chain run per shared context.

    A run works on its own context value; callers only see the result
    returned in :class:`ChainResult`.
    """

    def __init__(
        self,
        config: ChainConfig | None = None,
        integrator: ResultIntegrator | None = None,
    ) -> None:
        self._config = config or ChainConfig()
        self._integrator = integrator or ResultIntegrator()

    @property
    def config(self) -> ChainConfig:
        return self._config

    async def execute_chain(
        self, tool_sequence: Sequence[ToolCall | Tool], shared_context: Context
    ) -> ChainResult:
        calls = tuple(c if isinstance(c, ToolCall) else ToolCall(tool=c) for c in tool_sequence)
        plan(calls)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.chain_timeout_sec
        context = shared_context
        completed: list[ToolResult] = []

        def finish(
            state: ChainState, failure: CoreError | None = None, skipped: Sequence[ToolCall] = ()
        ) -> ChainResult:
            if failure is not None:
                logger.warning(
                    "Tool chain %s after %d/%d calls: %s",
                    state.value,
                    len(completed),
                    len(calls),
                    failure.message,
                    extra={"session_id": shared_context.session_id},
                )
            return ChainResult(
                state=state,
                completed=tuple(completed),
                context=context,
                failure=failure,
                skipped=tuple(c.call_id for c in skipped),
            )

        for index, call in enumerate(calls):
            tool = call.tool
            remaining = deadline - loop.time()
            if remaining <= 0:
                failure = ToolExecutionFailedError(tool.id, "chain timeout", timed_out=True)
                return finish(ChainState.PARTIALLY_FAILED, failure, calls[index:])

            valid, errors = validate_parameters(tool.parameter_schema, call.parameters)
            if not valid:
                msg = f"Invalid parameters for tool '{tool.id}': {'; '.join(errors)}"
                failure = ValidationError(msg, tool_id=tool.id, errors=errors)
                return finish(ChainState.ABORTED, failure, calls[index:])

            try:
                safe = bool(tool.can_execute(call.parameters, context))
                reason = "safety predicate rejected execution"
            except Exception as exc:  # noqa: BLE001
                safe = False
                reason = f"safety predicate raised: {exc}"
            if not safe:
                return finish(ChainState.ABORTED, UnsafeToolError(tool.id, reason), calls[index:])

            tool_timeout = (
                tool.timeout_sec if tool.timeout_sec is not None else self._config.tool_timeout_sec
            )
            timeout = min(tool_timeout, remaining)
            start = time.perf_counter()
            try:
                with trace_tool_call(tool.id, call.call_id):
                    raw = await asyncio.wait_for(
                        self._invoke(tool, call.parameters, context), timeout=timeout
                    )
            except TimeoutError:
                if timeout < tool_timeout:
                    reason = "chain timeout"
                else:
                    reason = f"timed out after {timeout}s"
                failure = ToolExecutionFailedError(tool.id, reason, timed_out=True)
                return finish(ChainState.PARTIALLY_FAILED, failure, calls[index + 1 :])
            except Exception as exc:  # noqa: BLE001
                failure = ToolExecutionFailedError(tool.id, str(exc) or type(exc).__name__)
                failure.__cause__ = exc
                return finish(ChainState.PARTIALLY_FAILED, failure, calls[index + 1 :])
            latency = (time.perf_counter() - start) * 1000

            result = raw if isinstance(raw, ToolResult) else ToolResult.ok(raw)
            result = replace(result, tool_id=tool.id, call_id=call.call_id, latency_ms=latency)
            if not result.success:
                failure = ToolExecutionFailedError(tool.id, result.error or "reported failure")
                return finish(ChainState.PARTIALLY_FAILED, failure, calls[index + 1 :])

            try:
                context = self._integrator.integrate(context, result)
            except ValueError as exc:
                failure = ToolExecutionFailedError(tool.id, f"integration failed: {exc}")
                return finish(ChainState.PARTIALLY_FAILED, failure, calls[index + 1 :])
            completed.append(result)
            logger.debug(
                "Tool %s completed in %.1fms",
                tool.id,
                latency,
                extra={"tool_id": tool.id, "duration_ms": latency},
            )

            if index < len(calls) - 1 and self._should_stop(call, result, context):
                logger.info("Tool chain terminated early after %s", call.call_id)
                return finish(ChainState.COMPLETED, skipped=calls[index + 1 :])

        return finish(ChainState.COMPLETED)

    @staticmethod
    async def _invoke(tool: Tool, parameters: dict[str, Any], context: Context) -> Any:
        if inspect.iscoroutinefunction(tool.executor):
            return await tool.executor(parameters, context)
        result = await asyncio.to_thread(tool.executor, parameters, context)
        if inspect.isawaitable(result):
            result = await result
        return result

    @staticmethod
    def _should_stop(call: ToolCall, result: ToolResult, context: Context) -> bool:
        if call.tool.terminal:
            return True
        if call.stop_when is None:
            return False
        try:
            return bool(call.stop_when(result, context))
        except Exception:  # noqa: BLE001
            logger.warning("stop_when of %s raised; continuing", call.call_id, exc_info=True)
            return False
