"""Tests for ai/call/body.py, builder.py and interactions.py."""

from __future__ import annotations

import pytest

from canvasmind.ai.call.body import DEFAULT_FILTER, ConversationBody
from canvasmind.ai.call.builder import BodyBuilder
from canvasmind.ai.call.interactions import (
    Agent,
    ErrorInteraction,
    TextInteraction,
    ToolCallInteraction,
    ToolResultInteraction,
    interaction_from_dict,
    interaction_to_dict,
)
from canvasmind.ai.call.messages import MessageOrigin, RuntimeMessage
from canvasmind.ai.call.metrics import Metrics


# -----------------------------------------------------------------------------
# Test Fixtures and Helpers
# -----------------------------------------------------------------------------


def text(content: str, turn_id: str = "t1", agent: Agent = Agent.USER) -> TextInteraction:
    return TextInteraction(content=content, agent=agent, turn_id=turn_id)


# -----------------------------------------------------------------------------
# Builder Tests
# -----------------------------------------------------------------------------


class TestBodyBuilderMarkers:
    """Tests for new-interaction markers."""

    def test_create_marks_everything_new(self) -> None:
        """Live builders mark appended items as new."""
        body = BodyBuilder.create().with_default_turn_id("t1").add_user("a").add_assistant("b").build()
        assert body.interactions_new == (0, 1)

    def test_history_marks_nothing(self) -> None:
        """History builders replay without new markers."""
        body = BodyBuilder.for_history().add(text("a")).add(text("b")).build()
        assert body.interactions_new == ()

    def test_replace_trailing_range_keeps_earlier_markers(self) -> None:
        """Replacing the last two items keeps index 1 and marks the replacement."""
        builder = (
            BodyBuilder.for_history()
            .add(text("a"))
            .add(text("b"), mark_new=True)
            .add(text("c"))
        )
        assert builder.build().interactions_new == (1,)

        builder.replace_last_range([text("d"), text("e")], mark_new=True)
        body = builder.build()
        assert [item.content for item in body.interactions] == ["a", "d", "e"]
        assert body.interactions_new == (1, 2)

    def test_replace_last_range_longer_than_builder_resets(self) -> None:
        """A replacement at least as long as the builder rebuilds it."""
        builder = BodyBuilder.create().add(text("a"))
        body = builder.replace_last_range([text("x"), text("y")]).build()
        assert [item.content for item in body.interactions] == ["x", "y"]
        assert body.interactions_new == (0, 1)

    def test_replace_last_on_empty_adds(self) -> None:
        """replace_last on an empty builder behaves like add."""
        body = BodyBuilder.create().replace_last(text("only")).build()
        assert len(body.interactions) == 1
        assert body.interactions_new == (0,)

    def test_from_body_preserves_markers(self) -> None:
        """Starting from a snapshot keeps its markers."""
        original = BodyBuilder.for_history().add(text("a")).add(text("b"), mark_new=True).build()
        rebuilt = BodyBuilder.from_body(original).add(text("c")).build()
        assert rebuilt.interactions_new == (1, 2)

    def test_clear_new_markers(self) -> None:
        """clear_new_markers drops every marker."""
        body = BodyBuilder.create().add(text("a")).clear_new_markers().build()
        assert body.interactions_new == ()


class TestBodyBuilderContent:
    """Tests for convenience adders and session-level edits."""

    def test_default_turn_id_applies_to_adders(self) -> None:
        """Adders use the default turn id unless given one."""
        body = (
            BodyBuilder.create()
            .with_default_turn_id("turn-7")
            .add_system("sys")
            .add_tool_call("call-1", "add_slider", {"label": "Speed"})
            .add_error("oops", turn_id="other")
            .build()
        )
        assert [item.turn_id for item in body.interactions] == ["turn-7", "turn-7", "other"]
        assert body.interactions[0].agent is Agent.SYSTEM

    def test_ensure_turn_id_fills_missing(self) -> None:
        """ensure_turn_id patches only interactions without an id."""
        builder = BodyBuilder.create().add(text("a", turn_id="")).add(text("b", turn_id="keep"))
        body = builder.with_default_turn_id("fill").ensure_turn_id().build()
        assert [item.turn_id for item in body.interactions] == ["fill", "keep"]

    def test_ensure_turn_id_generates_when_no_default(self) -> None:
        """Without a default a fresh id is generated."""
        body = BodyBuilder.create().add(text("a", turn_id="")).ensure_turn_id().build()
        assert body.turn_ids_valid()

    def test_policies_are_copied(self) -> None:
        """Filters and schema travel with the built body."""
        body = (
            BodyBuilder.create()
            .with_tool_filter("canvas")
            .with_context_filter("*")
            .with_json_output_schema('{"type": "object"}')
            .with_json_output_schema(None)
            .build()
        )
        assert body.tool_filter == "canvas"
        assert body.context_filter == "*"
        assert body.requires_json_output

    def test_set_completion_time_targets_last(self) -> None:
        """Completion time is written to the last interaction's metrics."""
        body = BodyBuilder.create().add(text("a")).add(text("b")).set_completion_time(1.25).build()
        assert body.interactions[-1].metrics.completion_time == 1.25
        assert body.interactions[0].metrics.completion_time == 0.0


# -----------------------------------------------------------------------------
# Body Tests
# -----------------------------------------------------------------------------


class TestConversationBody:
    """Tests for ConversationBody queries and derivation."""

    def test_defaults(self) -> None:
        """An empty body excludes tools and context."""
        body = ConversationBody()
        assert body.is_empty
        assert body.tool_filter == DEFAULT_FILTER
        assert body.context_filter == DEFAULT_FILTER
        assert not body.requires_json_output

    def test_blank_schema_does_not_require_json(self) -> None:
        """Whitespace-only schemas do not count."""
        assert not ConversationBody(json_output_schema="   ").requires_json_output

    def test_new_markers_are_normalized(self) -> None:
        """Out-of-range and duplicate indices are dropped and the rest sorted."""
        body = ConversationBody(interactions=(text("a"), text("b")), interactions_new=(1, 1, 5, -1, 0))
        assert body.interactions_new == (0, 1)

    def test_pending_tool_calls(self) -> None:
        """Calls are pending until a result with the same id appears."""
        call = ToolCallInteraction(id="1", name="add_slider", turn_id="t1")
        body = ConversationBody(interactions=(call,))
        assert body.pending_tool_calls_count() == 1

        unrelated = body.with_appended(ToolResultInteraction(id="2", name="other", turn_id="t1"))
        assert unrelated.pending_tool_calls() == [call]

        answered = unrelated.with_appended(ToolResultInteraction(id="1", name="add_slider", turn_id="t1"))
        assert answered.pending_tool_calls_count() == 0

    def test_with_appended_marks_only_new_items(self) -> None:
        """with_appended_range marks exactly the appended items."""
        body = BodyBuilder.create().add(text("a")).build()
        appended = body.with_appended_range([text("b"), None, text("c")])
        assert appended.interactions_new == (1, 2)
        assert body.interactions_new == (0,)
        assert appended.with_appended_range([]).interactions_new == ()

    def test_last_lookups(self) -> None:
        """last_interaction and last_text filter by agent."""
        body = ConversationBody(
            interactions=(
                text("question"),
                text("answer", agent=Agent.ASSISTANT),
                ErrorInteraction(content="oops", turn_id="t1"),
            )
        )
        assert isinstance(body.last_interaction(), ErrorInteraction)
        assert body.last_text().content == "answer"
        assert body.last_text(Agent.USER).content == "question"
        assert body.last_interaction(Agent.SYSTEM) is None
        assert len(body.errors()) == 1

    def test_metrics_fold(self) -> None:
        """Body metrics fold every interaction's metrics."""
        body = ConversationBody(
            interactions=(
                TextInteraction(content="a", turn_id="t1", metrics=Metrics(input_tokens_prompt=4)),
                TextInteraction(content="b", turn_id="t1", metrics=Metrics(output_tokens_generation=6)),
            )
        )
        assert body.metrics.total_tokens == 10

    def test_messages_from_tool_results(self) -> None:
        """Diagnostics carried by tool results surface on the body, de-duplicated."""
        warning = RuntimeMessage.warning(MessageOrigin.TOOL, "slider clamped")
        body = ConversationBody(
            interactions=(
                ToolResultInteraction(id="1", turn_id="t1", messages=[warning]),
                ToolResultInteraction(id="2", turn_id="t1", messages=(warning,)),
            )
        )
        assert body.messages == (warning,)

    def test_turn_ids_valid(self) -> None:
        """Any interaction without a turn id invalidates the body."""
        assert ConversationBody(interactions=(text("a"),)).turn_ids_valid()
        assert not ConversationBody(interactions=(text("a"), text("b", turn_id=""))).turn_ids_valid()

    def test_dict_round_trip_preserves_history(self) -> None:
        """Serialized bodies restore interactions, policies and fingerprint."""
        body = (
            BodyBuilder.create()
            .with_default_turn_id("t1")
            .with_tool_filter("canvas")
            .add_user("Add a slider")
            .add_tool_call("call-1", "add_slider", {"label": "Speed"})
            .add_tool_result("call-1", "add_slider", {"result": "ok"})
            .build()
        )
        restored = ConversationBody.from_dict(body.to_dict(include_new_markers=True))
        assert restored.interactions == body.interactions
        assert restored.tool_filter == "canvas"
        assert restored.fingerprint() == body.fingerprint()

    def test_replayed_history_is_not_new(self) -> None:
        """Restored interactions are history even when markers were persisted."""
        body = BodyBuilder.create().with_default_turn_id("t1").add_user("hi").add_assistant("hello").build()
        assert body.interactions_new == (0, 1)
        assert ConversationBody.from_dict(body.to_dict()).interactions_new == ()
        assert ConversationBody.from_dict(body.to_dict(include_new_markers=True)).interactions_new == ()

    def test_last_turn_id(self) -> None:
        """The newest non-empty turn id wins."""
        body = ConversationBody(interactions=(text("a", turn_id="t1"), text("b", turn_id="t2"), text("c", turn_id="")))
        assert body.last_turn_id() == "t2"
        assert ConversationBody().last_turn_id() == ""

    def test_fingerprint_changes_with_content(self) -> None:
        """Fingerprints are stable and differ when history differs."""
        first = BodyBuilder.for_history().add(text("a")).build()
        other = BodyBuilder.for_history().add(text("b")).build()
        assert first.fingerprint() == first.fingerprint()
        assert first.fingerprint() != other.fingerprint()
        assert first.fingerprint() != first.with_tool_filter("canvas").fingerprint()


# -----------------------------------------------------------------------------
# Interaction Tests
# -----------------------------------------------------------------------------


class TestInteractions:
    """Tests for interaction keys, rendering and serialization."""

    def test_stream_keys_prefer_turn_id(self) -> None:
        """Turn ids anchor stream keys so streamed updates replace in place."""
        assert text("a", turn_id="t9").stream_key() == "turn:t9"
        assert ToolResultInteraction(id="c1", turn_id="t9").stream_key() == "turn:t9:tool.result:c1"
        assert ToolCallInteraction(id="c1").stream_key() == "tool.call:c1"

    def test_dedup_key_tracks_content(self) -> None:
        """Dedup keys differ when content differs."""
        assert text("a").dedup_key() != text("b").dedup_key()
        assert text("a").dedup_key() == text("a").dedup_key()

    def test_tool_call_dedup_key_ignores_argument_order(self) -> None:
        """Arguments are hashed canonically."""
        first = ToolCallInteraction(id="c1", arguments={"a": 1, "b": 2})
        second = ToolCallInteraction(id="c1", arguments={"b": 2, "a": 1})
        assert first.dedup_key() == second.dedup_key()

    def test_role_and_display(self) -> None:
        """Tool calls and results share the tool role class."""
        call = ToolCallInteraction(id="c1")
        assert call.role_class() == "tool"
        assert call.display_name() == "Tool Call"
        assert ErrorInteraction(content="x").role_class() == "error"

    def test_render_tool_call(self) -> None:
        """Tool calls render as name(id) followed by JSON arguments."""
        rendered = ToolCallInteraction(id="c1", name="add_slider", arguments={"label": "Speed"}).render_content()
        assert rendered.startswith("add_slider(c1)\n")
        assert '"label": "Speed"' in rendered

    def test_with_helpers_return_copies(self) -> None:
        """with_turn_id and with_metrics leave the original untouched."""
        original = text("a", turn_id="")
        updated = original.with_turn_id("t2").with_metrics(Metrics(finish_reason="stop"))
        assert original.turn_id == ""
        assert updated.turn_id == "t2"
        assert updated.metrics.finish_reason == "stop"

    def test_from_dict_rejects_unknown_type(self) -> None:
        """Unknown type tags raise ValueError."""
        with pytest.raises(ValueError, match="Unknown interaction type"):
            interaction_from_dict({"type": "video"})

    def test_agent_parse_unknown(self) -> None:
        """Unknown agent strings parse to UNKNOWN."""
        assert Agent.parse("robot") is Agent.UNKNOWN
        assert Agent.parse(" User ") is Agent.USER

    def test_tool_result_messages_serialize(self) -> None:
        """Tool result diagnostics survive serialization."""
        warning = RuntimeMessage.warning(MessageOrigin.TOOL, "clamped")
        result = ToolResultInteraction(id="c1", name="add_slider", result={"ok": True}, messages=(warning,), turn_id="t1")
        restored = interaction_from_dict(interaction_to_dict(result))
        assert restored == result
