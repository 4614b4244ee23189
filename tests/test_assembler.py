"""Tests for ContextAssembler — concurrency, relevance gating and budget trimming."""

import asyncio

import pytest

from gateway_core.config import AssemblyConfig
from gateway_core.context.assembler import ContextAssembler
from gateway_core.context.models import Contribution, Interaction
from gateway_core.context.sources import SourceProvider, SourceSpec
from gateway_core.errors import LowQualityContextError, SourceError, SourceUnavailableError


def _words(n: int, prefix: str = "w") -> str:
    return " ".join(f"{prefix}{i}" for i in range(n))


class StaticSource(SourceProvider):
    """Returns a fixed contribution and records the budget it was offered."""

    def __init__(self, contribution: Contribution) -> None:
        self.contribution = contribution
        self.budgets: list[int] = []

    async def fetch(self, query, session_id, token_budget):
        self.budgets.append(token_budget)
        return self.contribution


class FailingSource(SourceProvider):
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def fetch(self, query, session_id, token_budget):
        raise self.exc


class SlowSource(SourceProvider):
    async def fetch(self, query, session_id, token_budget):
        await asyncio.sleep(10)
        return Contribution(source="slow", data={"k": "never"})


def _doc(source: str, hint: float | None = None) -> Contribution:
    """60 tokens of content (46 words)."""
    return Contribution(source=source, data={"doc": _words(46, source[:1])}, relevance_hint=hint)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_weights_must_sum_to_one():
    source = StaticSource(_doc("a"))
    with pytest.raises(ValueError, match="sum to 1.0"):
        ContextAssembler([SourceSpec("a", source, 0.5), SourceSpec("b", source, 0.4)])


def test_source_names_must_be_unique():
    source = StaticSource(_doc("a"))
    with pytest.raises(ValueError, match="unique"):
        ContextAssembler([SourceSpec("a", source, 0.5), SourceSpec("a", source, 0.5)])


# ---------------------------------------------------------------------------
# Budget trimming
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_three_sources_over_budget_keep_heaviest_intact():
    primary = _doc("primary", hint=0.9)
    assembler = ContextAssembler(
        [
            SourceSpec("primary", StaticSource(primary), weight=0.5, priority=1),
            SourceSpec("secondary", StaticSource(_doc("secondary", hint=0.6)), 0.3, priority=2),
            SourceSpec("tertiary", StaticSource(_doc("tertiary", hint=0.4)), 0.2, priority=3),
        ]
    )
    ctx = await assembler.assemble("anything", "s1", max_tokens=100)

    assert ctx.token_count <= 100
    assert ctx.metadata.token_counts["primary"] == 60
    assert ctx.workspace_snapshot["primary"] == primary.data
    assert "tertiary" in ctx.metadata.dropped
    assert ctx.metadata.truncated == ("secondary",)
    assert ctx.metadata.sources == ("primary", "secondary")


@pytest.mark.asyncio
async def test_equal_relevance_drops_lower_priority_tier_first():
    assembler = ContextAssembler(
        [
            SourceSpec("low", StaticSource(_doc("low", hint=0.5)), weight=0.5, priority=2),
            SourceSpec("high", StaticSource(_doc("high", hint=0.5)), weight=0.5, priority=1),
        ]
    )
    ctx = await assembler.assemble("anything", "s1", max_tokens=50)

    assert ctx.token_count <= 50
    assert ctx.metadata.sources == ("high",)
    assert ctx.metadata.dropped == ("low",)


@pytest.mark.asyncio
@pytest.mark.parametrize("max_tokens", [0, 1, 5, 17, 50, 99, 100, 101, 150, 179, 180, 1000])
async def test_token_count_never_exceeds_budget(max_tokens):
    history = Contribution(
        source="history",
        interactions=tuple(Interaction("user", _words(9, f"t{i}_")) for i in range(5)),
        relevance_hint=0.8,
    )
    assembler = ContextAssembler(
        [
            SourceSpec("history", StaticSource(history), weight=0.4, priority=1),
            SourceSpec("docs", StaticSource(_doc("docs", hint=0.3)), weight=0.4, priority=2),
            SourceSpec("search", StaticSource(_doc("search", hint=0.3)), weight=0.2, priority=3),
        ]
    )
    ctx = await assembler.assemble("anything", "s1", max_tokens=max_tokens)
    assert ctx.token_count <= max_tokens
    assert ctx.token_count == sum(ctx.metadata.token_counts.values())


@pytest.mark.asyncio
async def test_sub_budgets_are_weight_shares():
    a, b = StaticSource(_doc("a", hint=0.5)), StaticSource(_doc("b", hint=0.5))
    assembler = ContextAssembler([SourceSpec("a", a, 0.75), SourceSpec("b", b, 0.25)])
    await assembler.assemble("anything", "s1", max_tokens=1000)
    assert a.budgets == [750]
    assert b.budgets == [250]


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_history_follows_source_priority_and_is_renamed():
    late = Contribution(source="x", interactions=(Interaction("user", "late turn"),))
    early = Contribution(source="y", interactions=(Interaction("user", "early turn"),))
    assembler = ContextAssembler(
        [
            SourceSpec("late", StaticSource(late), weight=0.5, priority=5),
            SourceSpec("early", StaticSource(early), weight=0.5, priority=1),
        ],
        AssemblyConfig(relevance_threshold=0.0, quality_threshold=0.0),
    )
    ctx = await assembler.assemble("turn", "s1", max_tokens=100)

    assert [i.content for i in ctx.conversation_history] == ["early turn", "late turn"]
    assert [i.source for i in ctx.conversation_history] == ["early", "late"]
    assert ctx.metadata.token_counts == {"early": 3, "late": 3}


@pytest.mark.asyncio
async def test_irrelevant_contribution_is_dropped():
    assembler = ContextAssembler(
        [
            SourceSpec("good", StaticSource(_doc("good", hint=0.9)), weight=0.5),
            SourceSpec("noise", StaticSource(_doc("noise", hint=0.01)), weight=0.5),
        ]
    )
    ctx = await assembler.assemble("anything", "s1", max_tokens=500)
    assert ctx.metadata.sources == ("good",)
    assert ctx.metadata.dropped == ("noise",)
    assert ctx.metadata.quality_score == pytest.approx(0.9)


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_single_source_failure_is_skipped():
    assembler = ContextAssembler(
        [
            SourceSpec("ok", StaticSource(_doc("ok", hint=0.9)), weight=0.3),
            SourceSpec("broken", FailingSource(SourceError("broken", "down")), weight=0.3),
            SourceSpec("crashy", FailingSource(RuntimeError("bug")), weight=0.4),
        ]
    )
    ctx = await assembler.assemble("anything", "s1", max_tokens=500)
    assert ctx.metadata.sources == ("ok",)
    assert set(ctx.metadata.failed) == {"broken", "crashy"}


@pytest.mark.asyncio
async def test_slow_source_times_out():
    assembler = ContextAssembler(
        [
            SourceSpec("ok", StaticSource(_doc("ok", hint=0.9)), weight=0.5),
            SourceSpec("slow", SlowSource(), weight=0.5),
        ],
        AssemblyConfig(source_timeout_sec=0.05),
    )
    ctx = await assembler.assemble("anything", "s1", max_tokens=500)
    assert ctx.metadata.failed == ("slow",)


@pytest.mark.asyncio
async def test_all_sources_failing_raises():
    assembler = ContextAssembler(
        [
            SourceSpec("a", FailingSource(SourceError("a", "down")), weight=0.5),
            SourceSpec("b", FailingSource(SourceError("b", "down")), weight=0.5),
        ]
    )
    with pytest.raises(SourceUnavailableError):
        await assembler.assemble("anything", "s1", max_tokens=100)


@pytest.mark.asyncio
async def test_low_quality_context_is_rejected():
    assembler = ContextAssembler(
        [
            SourceSpec("a", StaticSource(_doc("a", hint=0.15)), weight=0.5),
            SourceSpec("b", StaticSource(_doc("b", hint=0.02)), weight=0.5),
        ]
    )
    with pytest.raises(LowQualityContextError) as excinfo:
        await assembler.assemble("anything", "s1", max_tokens=500)
    assert excinfo.value.threshold == 0.2


@pytest.mark.asyncio
async def test_nothing_found_is_an_empty_context():
    assembler = ContextAssembler(
        [SourceSpec("a", StaticSource(Contribution(source="a")), weight=1.0)]
    )
    ctx = await assembler.assemble("anything", "s1", max_tokens=100)
    assert ctx.token_count == 0
    assert ctx.metadata.sources == ()
    assert ctx.query == "anything"


@pytest.mark.asyncio
async def test_fetch_fan_out_is_bounded():
    active = 0
    peak = 0

    class Tracking(SourceProvider):
        async def fetch(self, query, session_id, token_budget):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return Contribution(source="t", data={"k": "anything"}, relevance_hint=0.5)

    specs = [SourceSpec(f"s{i}", Tracking(), weight=0.25) for i in range(4)]
    assembler = ContextAssembler(specs, AssemblyConfig(max_concurrent_sources=2))
    ctx = await assembler.assemble("anything", "s1", max_tokens=100)
    assert peak == 2
    assert len(ctx.metadata.sources) == 4
