"""Tests for Context, Contribution and Interaction value types."""

from gateway_core.context.models import (
    Context,
    ContextLayer,
    ContextMetadata,
    Contribution,
    Interaction,
    render,
)


def _words(n: int, prefix: str = "w") -> str:
    return " ".join(f"{prefix}{i}" for i in range(n))


def test_render_passes_strings_and_sorts_json():
    assert render("plain") == "plain"
    assert render({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'


def test_token_count_is_sum_of_per_source_counts():
    ctx = Context(metadata=ContextMetadata(token_counts={"a": 10, "b": 5}))
    assert ctx.token_count == 15
    assert Context().token_count == 0


def test_with_token_count_adds_to_key():
    ctx = Context().with_token_count("tool:x", 4).with_token_count("tool:x", 3)
    assert ctx.metadata.token_counts == {"tool:x": 7}
    assert ctx.token_count == 7


def test_context_is_copy_on_write():
    ctx = Context(query="q")
    marked = ctx.with_marker("m1")
    assert ctx.metadata.markers == ()
    assert marked.metadata.markers == ("m1",)
    assert marked.query == "q"


def test_with_history_moves_token_counts():
    first = Interaction("user", _words(5), "conversation")
    second = Interaction("assistant", _words(5), "conversation")
    ctx = Context(
        conversation_history=(first, second),
        metadata=ContextMetadata(token_counts={"conversation": 14}),
    )
    shorter = ctx.with_history((second,))
    assert shorter.conversation_history == (second,)
    assert shorter.metadata.token_counts == {"conversation": 7}


def test_contribution_truncate_keeps_most_recent_turns():
    old = Interaction("user", _words(5, "old"))
    new = Interaction("assistant", _words(5, "new"))
    contribution = Contribution(source="c", interactions=(old, new))
    assert contribution.token_count == 14

    cut = contribution.truncate(7)
    assert cut.interactions == (new,)
    assert cut.token_count <= 7


def test_contribution_truncate_cuts_data_at_word_boundary():
    contribution = Contribution(source="c", data={"doc": _words(46)})
    assert contribution.token_count == 60

    cut = contribution.truncate(40)
    assert cut.token_count <= 40
    assert cut.data["doc"].startswith("w0 w1 w2")
    assert contribution.truncate(100) is contribution


def test_contribution_truncate_to_zero_is_empty():
    contribution = Contribution(source="c", data={"doc": _words(10)})
    assert contribution.truncate(0).is_empty()


def test_summary_lists_provenance():
    ctx = Context(
        layers=(ContextLayer("extra", {"k": 1}),),
        metadata=ContextMetadata(sources=("a",), token_counts={"a": 3}, dropped=("b",)),
    ).with_marker("compactor")
    summary = ctx.summary()
    assert summary["sources"] == ["a"]
    assert summary["token_count"] == 3
    assert summary["dropped"] == ["b"]
    assert summary["layers"] == ["extra"]
    assert summary["markers"] == ["compactor"]


def test_to_messages_orders_system_history_query():
    ctx = Context(
        query="what now",
        conversation_history=(
            Interaction("user", "hi"),
            Interaction("assistant", "hello"),
        ),
        workspace_snapshot={"workspace": {"a.py": "print(1)"}},
        tool_outputs=({"tool": "lint", "call_id": "lint", "output": "clean"},),
    )
    messages = ctx.to_messages("be brief")
    assert messages[0]["role"] == "system"
    assert "be brief" in messages[0]["content"]
    assert "## Workspace" in messages[0]["content"]
    assert "lint: clean" in messages[0]["content"]
    assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
    assert messages[-1]["content"] == "what now"


def test_to_messages_without_system_parts():
    messages = Context(query="q").to_messages()
    assert messages == [{"role": "user", "content": "q"}]
