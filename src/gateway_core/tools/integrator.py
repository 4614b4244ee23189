"""Fold tool results into the shared context according to their integration hint."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..context.models import Context, ContextLayer, render
from ..context.token_budget import estimate_tokens
from .models import IntegrationHint, ToolResult


def deep_merge(base: Mapping[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge *update* into a copy of *base*; nested mappings merge, others replace."""
    merged = dict(base)
    for key, value in update.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _replace_path(tree: Mapping[str, Any], path: list[str], value: Any) -> dict[str, Any]:
    updated = dict(tree)
    head, rest = path[0], path[1:]
    if not rest:
        updated[head] = value
        return updated
    child = updated.get(head, {})
    if not isinstance(child, Mapping):
        msg = f"cannot replace '{'.'.join(path)}': '{head}' is not a mapping"
        raise ValueError(msg)
    updated[head] = _replace_path(child, rest, value)
    return updated


class ResultIntegrator:
    """Pure ``(Context, ToolResult) -> Context``.

    - APPEND adds ``{tool, call_id, output}`` to ``tool_outputs``.
    - MERGE deep-merges a mapping output into ``workspace_snapshot``.
    - REPLACE_SECTION overwrites ``workspace_snapshot[section]``; dotted
      sections address nested keys.
    - NEW_LAYER adds a labelled layer, keeping the earlier ones.

    The output's token estimate is recorded under ``tool:<id>``.
    """

    def integrate(self, context: Context, result: ToolResult) -> Context:
        if not result.success:
            msg = f"cannot integrate failed result of '{result.tool_id}'"
            raise ValueError(msg)

        hint = result.integration_hint
        if hint == IntegrationHint.APPEND:
            entry = {"tool": result.tool_id, "call_id": result.call_id, "output": result.output}
            updated = context.evolve(tool_outputs=(*context.tool_outputs, entry))
        elif hint == IntegrationHint.MERGE:
            if not isinstance(result.output, Mapping):
                msg = f"MERGE needs a mapping output, got {type(result.output).__name__}"
                raise ValueError(msg)
            updated = context.evolve(
                workspace_snapshot=deep_merge(context.workspace_snapshot, result.output)
            )
        elif hint == IntegrationHint.REPLACE_SECTION:
            if not result.section:
                msg = f"REPLACE_SECTION result of '{result.tool_id}' names no section"
                raise ValueError(msg)
            updated = context.evolve(
                workspace_snapshot=_replace_path(
                    context.workspace_snapshot, result.section.split("."), result.output
                )
            )
        elif hint == IntegrationHint.NEW_LAYER:
            label = result.section or f"{result.tool_id}:{result.call_id}"
            updated = context.evolve(layers=(*context.layers, ContextLayer(label, result.output)))
        else:
            msg = f"unknown integration hint: {hint}"
            raise ValueError(msg)

        tokens = estimate_tokens(render(result.output)) if result.output is not None else 0
        return updated.with_token_count(f"tool:{result.tool_id}", tokens)
