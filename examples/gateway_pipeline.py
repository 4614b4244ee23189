#!/usr/bin/env python3
"""gateway_pipeline.py — gateway-core request demo.

Runs two requests through the RequestCoordinator: a chat request that
assembles context from the conversation log and a workspace snapshot, then
a request that also runs a small tool chain. Prints the response and the
session state projected from the event log.

Uses the stub LLM provider (deterministic, no external calls).

Prerequisites:
    pip install -e .[dev]

Usage:
    python examples/gateway_pipeline.py
    GATEWAY_LOG_FORMAT=json GATEWAY_LOG_LEVEL=DEBUG python examples/gateway_pipeline.py
    GATEWAY_TRACE_EXPORTER=stdout python examples/gateway_pipeline.py
"""

from __future__ import annotations

import asyncio
import json

from gateway_core import (
    ConversationHistorySource,
    EnhancerRegistry,
    GatewayConfig,
    InMemoryEventLog,
    IntegrationHint,
    RequestCoordinator,
    SourceSpec,
    Tool,
    ToolRegistry,
    ToolResult,
    WorkspaceSource,
    get_tracer,
    setup_logging,
)
from gateway_core.enhancers import (
    history_window_adapter,
    redaction_event_handler,
    security_tool_adapter,
)

WORKSPACE = {
    "README.md": "The gateway assembles context from several sources for each request.",
    "src/app.py": "def main():\n    print('hello gateway')\n",
}


def count_lines(parameters: dict, context) -> ToolResult:
    path = parameters.get("path", "src/app.py")
    lines = len(str(context.workspace_snapshot.get("workspace", {}).get(path, "")).splitlines())
    return ToolResult.ok({"stats": {path: {"lines": lines}}}, IntegrationHint.MERGE)


async def main() -> None:
    setup_logging()

    # ------------------------------------------------------------------
    # 1. Wire the collaborators from GATEWAY_* settings (tracing included).
    #    Conversation history comes from the event log itself; the
    #    workspace snapshot is a plain callable.
    # ------------------------------------------------------------------
    log = InMemoryEventLog()
    sources = [
        SourceSpec("conversation", ConversationHistorySource(log), weight=0.4, priority=1),
        SourceSpec("workspace", WorkspaceSource(lambda s: WORKSPACE), weight=0.6, priority=2),
    ]
    registry = EnhancerRegistry(
        [
            history_window_adapter(keep_first=1, keep_last=4),
            security_tool_adapter(["command"]),
            redaction_event_handler(),
        ]
    )
    tools = ToolRegistry([Tool(id="count_lines", executor=count_lines)])
    coordinator = RequestCoordinator.from_config(
        GatewayConfig.from_env(), registry, sources, tools, log
    )

    # ------------------------------------------------------------------
    # 2. A plain chat request.
    # ------------------------------------------------------------------
    first = await coordinator.handle(
        {"query": "How does the gateway assemble context?", "session_id": "demo", "max_tokens": 400}
    )
    print("--- Chat request ---")
    print(f"Output:  {first.inference_output}")
    print(f"Sources: {first.context_summary['sources']}")
    print(f"Events:  {first.events_appended}")

    # ------------------------------------------------------------------
    # 3. A request with a tool chain; the tool output is merged into the
    #    workspace snapshot before inference.
    # ------------------------------------------------------------------
    second = await coordinator.handle(
        {
            "query": "How many lines does the gateway app have?",
            "session_id": "demo",
            "max_tokens": 400,
            "required_tools": ["count_lines"],
            "tool_parameters": {"count_lines": {"path": "src/app.py"}},
            "include_state": True,
        }
    )
    print()
    print("--- Tool request ---")
    print(f"Chain:   {second.chain_state}")
    print(f"Results: {[r['output'] for r in second.tool_results]}")
    print(f"Errors:  {second.errors}")

    # ------------------------------------------------------------------
    # 4. Session state is a projection of the log, never stored.
    # ------------------------------------------------------------------
    print()
    print("--- Session state ---")
    print(json.dumps(second.session_state, indent=2))

    get_tracer().shutdown()


if __name__ == "__main__":
    asyncio.run(main())
