"""ContextAssembler — gather, score, compose and trim context under a token budget.

Sources are fetched concurrently (bounded by ``max_concurrent_sources``),
each under its own timeout and its ``floor(weight * max_tokens)`` hint.
Composition follows source priority (lower value first). When the composed
context is over budget, the least relevant contributions are dropped first,
then the lowest-priority survivor is truncated.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Sequence
from dataclasses import dataclass, replace

from ..config import AssemblyConfig
from ..errors import (
    LowQualityContextError,
    SourceError,
    SourceUnavailableError,
    ValidationError,
)
from ..telemetry import trace_source_fetch
from .models import Context, ContextMetadata, Contribution, Interaction
from .relevance import composite_score, score_contribution
from .sources import SourceSpec
from .token_budget import allocate

logger = logging.getLogger(__name__)

_WEIGHT_TOLERANCE = 1e-6


@dataclass(frozen=True)
class _Scored:
    spec: SourceSpec
    order: int
    contribution: Contribution
    relevance: float

    @property
    def tokens(self) -> int:
        return self.contribution.token_count


class ContextAssembler:
    """Assembles a :class:`Context` from a fixed set of named sources."""

    def __init__(
        self, sources: Sequence[SourceSpec], config: AssemblyConfig | None = None
    ) -> None:
        if not sources:
            msg = "at least one source is required"
            raise ValueError(msg)
        names = [s.name for s in sources]
        if len(set(names)) != len(names):
            msg = f"source names must be unique, got {names}"
            raise ValueError(msg)
        total = sum(s.weight for s in sources)
        if not math.isclose(total, 1.0, abs_tol=_WEIGHT_TOLERANCE):
            msg = f"source weights must sum to 1.0, got {total}"
            raise ValueError(msg)
        # stable: equal priorities keep declaration order
        self._sources = tuple(sorted(sources, key=lambda s: s.priority))
        self._config = config or AssemblyConfig()

    @property
    def sources(self) -> tuple[SourceSpec, ...]:
        return self._sources

    @property
    def weights(self) -> dict[str, float]:
        return {s.name: s.weight for s in self._sources}

    @property
    def config(self) -> AssemblyConfig:
        return self._config

    async def assemble(self, query: str, session_id: str, max_tokens: int) -> Context:
        """Build the context for *query*; ``token_count <= max_tokens`` always holds."""
        if max_tokens < 0:
            msg = "max_tokens must be non-negative"
            raise ValidationError(msg, max_tokens=max_tokens)

        budgets = allocate(self.weights, max_tokens)
        semaphore = asyncio.Semaphore(self._config.max_concurrent_sources)
        outcomes = await asyncio.gather(
            *(
                self._fetch(spec, query, session_id, budgets[spec.name], semaphore)
                for spec in self._sources
            )
        )

        failed = tuple(
            spec.name for spec, c in zip(self._sources, outcomes, strict=True) if c is None
        )
        if len(failed) == len(self._sources):
            msg = f"All {len(failed)} context sources failed"
            raise SourceUnavailableError(msg, sources=list(failed))

        found: list[_Scored] = []
        for order, (spec, contribution) in enumerate(zip(self._sources, outcomes, strict=True)):
            if contribution is None or contribution.is_empty():
                continue
            contribution = _rename(contribution, spec.name)
            found.append(
                _Scored(spec, order, contribution, score_contribution(query, contribution))
            )

        base = Context(query=query, session_id=session_id)
        if not found:
            logger.debug("No context found for session %s", session_id)
            return base.with_metadata(failed=failed)

        threshold = self._config.relevance_threshold
        survivors = [s for s in found if s.relevance >= threshold]
        dropped = [s.spec.name for s in found if s.relevance < threshold]
        quality = composite_score(
            {s.spec.name: s.relevance for s in survivors}, self.weights
        )
        if quality < self._config.quality_threshold:
            logger.warning(
                "Context quality %.3f below %.3f for session %s",
                quality,
                self._config.quality_threshold,
                session_id,
            )
            raise LowQualityContextError(quality, self._config.quality_threshold)

        survivors, budget_dropped, truncated = _trim(survivors, max_tokens)
        dropped.extend(budget_dropped)

        context = _compose(base, survivors)
        context = context.with_metadata(
            dropped=tuple(dropped),
            truncated=tuple(truncated),
            failed=failed,
            quality_score=quality,
        )
        logger.debug(
            "Assembled context for session %s: %d tokens from %s",
            session_id,
            context.token_count,
            list(context.metadata.sources),
        )
        return context

    async def _fetch(
        self,
        spec: SourceSpec,
        query: str,
        session_id: str,
        budget: int,
        semaphore: asyncio.Semaphore,
    ) -> Contribution | None:
        """One source fetch; failures are logged and reported as ``None``."""
        async with semaphore:
            start = time.monotonic()
            try:
                with trace_source_fetch(spec.name, budget):
                    contribution = await asyncio.wait_for(
                        spec.provider.fetch(query, session_id, budget),
                        timeout=self._config.source_timeout_sec,
                    )
                if not isinstance(contribution, Contribution):
                    raise SourceError(
                        spec.name, f"expected Contribution, got {type(contribution).__name__}"
                    )
            except TimeoutError:
                logger.warning(
                    "Source %s timed out after %.1fs",
                    spec.name,
                    self._config.source_timeout_sec,
                    extra={"source": spec.name, "session_id": session_id},
                )
                return None
            except SourceError as exc:
                logger.warning(
                    "Source %s failed: %s",
                    spec.name,
                    exc.message,
                    extra={"source": spec.name, "session_id": session_id},
                )
                return None
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Source %s raised",
                    spec.name,
                    exc_info=True,
                    extra={"source": spec.name, "session_id": session_id},
                )
                return None
            logger.debug(
                "Source %s returned %d tokens",
                spec.name,
                contribution.token_count,
                extra={
                    "source": spec.name,
                    "session_id": session_id,
                    "duration_ms": (time.monotonic() - start) * 1000,
                },
            )
            return contribution


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def _rename(contribution: Contribution, name: str) -> Contribution:
    """Attribute a contribution and its interactions to the configured source name."""
    if contribution.source == name and all(i.source == name for i in contribution.interactions):
        return contribution
    return replace(
        contribution,
        source=name,
        interactions=tuple(
            Interaction(i.role, i.content, name) for i in contribution.interactions
        ),
    )


def _drop_rank(item: _Scored) -> tuple[float, int, int]:
    # least relevant first; on equal relevance the lower-priority tier goes first
    return (item.relevance, -item.spec.priority, -item.order)


def _trim(
    survivors: list[_Scored], max_tokens: int
) -> tuple[list[_Scored], list[str], list[str]]:
    """Return (kept, dropped names, truncated names) with total tokens <= *max_tokens*."""
    kept = list(survivors)
    dropped: list[str] = []
    truncated: list[str] = []

    def total() -> int:
        return sum(s.tokens for s in kept)

    while kept and total() > max_tokens:
        # drop while the remainder is still over budget
        victim = min(kept, key=_drop_rank)
        if total() - victim.tokens > max_tokens:
            kept.remove(victim)
            dropped.append(victim.spec.name)
            continue

        # otherwise cut the lowest-priority survivor by the overflow
        target = max(kept, key=lambda s: (s.spec.priority, s.order))
        overflow = total() - max_tokens
        cut = target.contribution.truncate(max(0, target.tokens - overflow))
        if cut.is_empty():
            kept.remove(target)
            dropped.append(target.spec.name)
            continue
        kept[kept.index(target)] = replace(target, contribution=cut)
        if target.spec.name not in truncated:
            truncated.append(target.spec.name)

    kept.sort(key=lambda s: s.order)
    return kept, dropped, truncated


def _compose(base: Context, survivors: list[_Scored]) -> Context:
    history: list[Interaction] = []
    snapshot: dict[str, object] = {}
    token_counts: dict[str, int] = {}
    relevance: dict[str, float] = {}
    for item in survivors:
        name = item.spec.name
        history.extend(item.contribution.interactions)
        if item.contribution.data:
            snapshot[name] = dict(item.contribution.data)
        token_counts[name] = item.tokens
        relevance[name] = item.relevance
    return replace(
        base,
        conversation_history=tuple(history),
        workspace_snapshot=snapshot,
        metadata=ContextMetadata(
            sources=tuple(s.spec.name for s in survivors),
            token_counts=token_counts,
            relevance=relevance,
        ),
    )
