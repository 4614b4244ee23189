"""Enhancement chain — a failure-isolating left fold over enhancers."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from ..telemetry import trace_enhancer_chain
from .base import Capability, Enhancer

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SKIP = object()


def _guarded_apply(enhancer: Enhancer[Any], value: Any) -> Any:
    """Apply one enhancer; return ``_SKIP`` when it is inapplicable or fails."""
    try:
        if not enhancer.applicable(value):
            return _SKIP
        return enhancer.apply(value)
    except Exception:  # noqa: BLE001
        logger.warning(
            "Enhancer %s failed; skipping it",
            enhancer.id,
            exc_info=True,
            extra={"enhancer_id": enhancer.id},
        )
        return _SKIP


class EnhancementChain:
    """Applies ordered enhancers to a value.

    ``result_0 = initial``; ``result_i = e_i.apply(result_{i-1})`` when
    ``e_i`` applies, else ``result_{i-1}``. An enhancer that raises (or
    whose predicate raises) is logged and skipped, so the outcome equals
    the chain with that enhancer removed.
    """

    def __init__(self, parallel: bool = False, max_workers: int = 4) -> None:
        self._parallel = parallel
        self._max_workers = max_workers

    def apply(self, enhancers: Sequence[Enhancer[T]], initial: T) -> T:
        if self._parallel and _disjoint(enhancers) and dataclasses.is_dataclass(initial):
            return self.apply_parallel(enhancers, initial)
        capability = enhancers[0].capability if enhancers else Capability.CONTEXT
        with trace_enhancer_chain(capability, len(enhancers)):
            result = initial
            for enhancer in enhancers:
                out = _guarded_apply(enhancer, result)
                if out is _SKIP:
                    continue
                if out is None:
                    logger.warning(
                        "Enhancer %s returned None for a non-event value; ignoring it",
                        enhancer.id,
                        extra={"enhancer_id": enhancer.id},
                    )
                    continue
                result = out
            return result

    def apply_events(self, handlers: Sequence[Enhancer[Any]], event: Any) -> Any | None:
        """Event-handler fold; a handler returning ``None`` ends the chain with ``None``."""
        current = event
        for handler in handlers:
            out = _guarded_apply(handler, current)
            if out is _SKIP:
                continue
            if out is None:
                logger.debug("Event handler %s suppressed %s", handler.id, current.event_type)
                return None
            current = out
        return current

    def apply_parallel(self, enhancers: Sequence[Enhancer[T]], initial: T) -> T:
        """Apply enhancers with disjoint read/write sets concurrently.

        Each enhancer sees *initial*; the fields it declares in ``writes``
        are copied from its output onto the result in priority order, so the
        outcome matches the sequential fold.
        """
        if not _disjoint(enhancers):
            msg = "parallel application requires declared, disjoint read/write sets"
            raise ValueError(msg)
        capability = enhancers[0].capability if enhancers else Capability.CONTEXT
        with trace_enhancer_chain(capability, len(enhancers)):
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                outputs = list(pool.map(lambda e: _guarded_apply(e, initial), enhancers))
            result = initial
            for enhancer, out in zip(enhancers, outputs, strict=True):
                if out is _SKIP or out is None:
                    continue
                updates = {name: getattr(out, name) for name in enhancer.writes}
                result = dataclasses.replace(result, **updates)  # type: ignore[type-var]
            return result


def _disjoint(enhancers: Sequence[Enhancer[Any]]) -> bool:
    """True when every enhancer declares writes and no two touch the same field."""
    if len(enhancers) < 2:  # noqa: PLR2004
        return False
    written: set[str] = set()
    for enhancer in enhancers:
        if not enhancer.writes or written & enhancer.writes:
            return False
        written |= enhancer.writes
    for enhancer in enhancers:
        others = written - enhancer.writes
        if enhancer.reads & others:
            return False
    return True
