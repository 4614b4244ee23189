"""Context value types — immutable, transformed only by copy-on-write."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any

from .token_budget import estimate_tokens, truncate_to_tokens


def render(value: Any) -> str:
    """Text form of an arbitrary payload, used for token estimates and prompts."""
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str)


@dataclass(frozen=True)
class Interaction:
    """One conversational turn."""

    role: str
    content: str
    source: str = ""

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.content)


@dataclass(frozen=True)
class Contribution:
    """What one source returned for a request.

    ``interactions`` is ordered data that is concatenated into the
    conversation history; ``data`` is snapshot-like data merged into the
    workspace snapshot under the source name. ``relevance_hint`` lets a
    source that already ranked its results (semantic search) supply its own
    score.
    """

    source: str
    interactions: tuple[Interaction, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)
    relevance_hint: float | None = None

    @property
    def token_count(self) -> int:
        return sum(i.token_count for i in self.interactions) + sum(
            estimate_tokens(render(v)) for v in self.data.values()
        )

    def is_empty(self) -> bool:
        return not self.interactions and not self.data

    def text(self) -> str:
        parts = [i.content for i in self.interactions]
        parts.extend(render(v) for v in self.data.values())
        return "\n".join(parts)

    def truncate(self, max_tokens: int) -> Contribution:
        """Shrink to at most *max_tokens*.

        Interactions keep the most recent turns; data keeps keys in insertion
        order. The boundary item is cut at a word boundary.
        """
        if self.token_count <= max_tokens:
            return self
        remaining = max(0, max_tokens)

        kept: list[Interaction] = []
        for item in reversed(self.interactions):
            if remaining <= 0:
                break
            if item.token_count <= remaining:
                kept.append(item)
                remaining -= item.token_count
                continue
            cut = truncate_to_tokens(item.content, remaining)
            if cut:
                kept.append(replace(item, content=cut))
                remaining -= estimate_tokens(cut)
            break
        kept.reverse()

        data: dict[str, Any] = {}
        for key, value in self.data.items():
            if remaining <= 0:
                break
            cost = estimate_tokens(render(value))
            if cost <= remaining:
                data[key] = value
                remaining -= cost
                continue
            cut = truncate_to_tokens(render(value), remaining)
            if cut:
                data[key] = cut
                remaining -= estimate_tokens(cut)
            break

        return replace(self, interactions=tuple(kept), data=data)


@dataclass(frozen=True)
class ContextLayer:
    """A labelled layer added on top of the assembled context."""

    label: str
    data: Any


@dataclass(frozen=True)
class ContextMetadata:
    """Assembly provenance."""

    sources: tuple[str, ...] = ()
    token_counts: dict[str, int] = field(default_factory=dict)
    relevance: dict[str, float] = field(default_factory=dict)
    dropped: tuple[str, ...] = ()
    truncated: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    quality_score: float = 0.0
    markers: tuple[str, ...] = ()


@dataclass(frozen=True)
class Context:
    """Assembled, immutable bundle handed to tools and the LLM.

    ``token_count`` is derived from ``metadata.token_counts`` so it always
    equals the sum of per-source counts of the last composition.
    """

    query: str = ""
    session_id: str = ""
    conversation_history: tuple[Interaction, ...] = ()
    workspace_snapshot: dict[str, Any] = field(default_factory=dict)
    tool_outputs: tuple[dict[str, Any], ...] = ()
    layers: tuple[ContextLayer, ...] = ()
    metadata: ContextMetadata = field(default_factory=ContextMetadata)

    @property
    def token_count(self) -> int:
        return sum(self.metadata.token_counts.values())

    def evolve(self, **changes: Any) -> Context:
        return replace(self, **changes)

    def with_metadata(self, **changes: Any) -> Context:
        return replace(self, metadata=replace(self.metadata, **changes))

    def with_marker(self, marker: str) -> Context:
        """Append a provenance marker (used by adapters to record that they ran)."""
        return self.with_metadata(markers=(*self.metadata.markers, marker))

    def with_token_count(self, key: str, tokens: int) -> Context:
        counts = dict(self.metadata.token_counts)
        counts[key] = counts.get(key, 0) + tokens
        return self.with_metadata(token_counts=counts)

    def with_history(self, history: tuple[Interaction, ...]) -> Context:
        """Replace the conversation history, moving per-source token counts along."""
        counts = dict(self.metadata.token_counts)
        for item in self.conversation_history:
            counts[item.source] = counts.get(item.source, 0) - item.token_count
        for item in history:
            counts[item.source] = counts.get(item.source, 0) + item.token_count
        counts = {k: max(0, v) for k, v in counts.items()}
        return replace(
            self,
            conversation_history=history,
            metadata=replace(self.metadata, token_counts=counts),
        )

    def summary(self) -> dict[str, Any]:
        return {
            "sources": list(self.metadata.sources),
            "token_count": self.token_count,
            "token_counts": dict(self.metadata.token_counts),
            "relevance": dict(self.metadata.relevance),
            "dropped": list(self.metadata.dropped),
            "truncated": list(self.metadata.truncated),
            "failed": list(self.metadata.failed),
            "quality_score": self.metadata.quality_score,
            "markers": list(self.metadata.markers),
            "interactions": len(self.conversation_history),
            "tool_outputs": len(self.tool_outputs),
            "layers": [layer.label for layer in self.layers],
        }

    def to_messages(self, system_prompt: str = "") -> list[dict[str, str]]:
        """Format as message list for an LLM chat call."""
        parts = [system_prompt] if system_prompt else []

        if self.workspace_snapshot:
            parts.append("## Workspace")
            for source, data in self.workspace_snapshot.items():
                parts.append(f"- [{source}]: {render(data)}")

        if self.tool_outputs:
            parts.append("## Tool results")
            for out in self.tool_outputs:
                parts.append(f"- {out.get('tool', 'unknown')}: {render(out.get('output', ''))}")

        for layer in self.layers:
            parts.append(f"## Layer: {layer.label}")
            parts.append(render(layer.data))

        messages: list[dict[str, str]] = []
        if parts:
            messages.append({"role": "system", "content": "\n".join(parts)})
        messages.extend({"role": i.role, "content": i.content} for i in self.conversation_history)
        if self.query:
            messages.append({"role": "user", "content": self.query})
        return messages
