"""Tests for ai/call/result.py."""

from __future__ import annotations

import pytest

from canvasmind.ai.call.interactions import ErrorInteraction, TextInteraction
from canvasmind.ai.call.messages import MessageOrigin, MessageSeverity, RuntimeMessage
from canvasmind.ai.call.metrics import Metrics
from canvasmind.ai.call.request import CallRequest
from canvasmind.ai.call.result import UNKNOWN_PROVENANCE, CallResult, CallStatus

from tests.helpers import DEFAULT_MODEL, PROVIDER, make_body, make_context


def make_request() -> CallRequest:
    context, _ = make_context()
    return CallRequest(context, provider=PROVIDER, body=make_body())


def answer(content: str = "Slider added.", finish_reason: str | None = "stop") -> TextInteraction:
    return TextInteraction(content=content, turn_id="t1", metrics=Metrics(finish_reason=finish_reason))


# -----------------------------------------------------------------------------
# Success Factories
# -----------------------------------------------------------------------------


class TestCreateSuccess:
    """Tests for the success factories."""

    def test_stamps_provider_and_model(self) -> None:
        """Every interaction is stamped with the request's provider and model."""
        result = CallResult.create_success([answer()], make_request())
        assert result.status is CallStatus.FINISHED
        assert result.success
        metrics = result.body.interactions[0].metrics
        assert metrics.provider == PROVIDER
        assert metrics.model == DEFAULT_MODEL
        assert result.body.interactions_new == (0,)

    def test_without_request_uses_unknown_provenance(self) -> None:
        """A missing request stamps Unknown and fails validation."""
        result = CallResult.create_success([answer()])
        assert result.metrics.provider == UNKNOWN_PROVENANCE
        assert result.metrics.model == UNKNOWN_PROVENANCE
        assert not result.success
        assert "Request must not be null" in [message.text for message in result.messages]

    def test_missing_finish_reason_is_invalid(self) -> None:
        """Metrics without a finish reason make the result invalid."""
        result = CallResult.create_success([answer(finish_reason=None)], make_request())
        ok, errors = result.is_valid()
        assert not ok
        assert [error.text for error in errors] == ["Metrics finish reason is required"]
        assert not errors[0].surfaceable

    def test_from_raw_payload(self) -> None:
        """Raw payloads are decoded by the request's provider and kept."""
        payload = {"content": "Decoded.", "finish_reason": "stop"}
        result = CallResult.create_success_raw(payload, make_request())
        assert result.raw is payload
        assert result.result_text == "Decoded."
        assert result.body.interactions[0].metrics.provider == PROVIDER

    def test_set_body_raw_requires_request(self) -> None:
        """Decoding needs a request to find the provider."""
        with pytest.raises(ValueError):
            CallResult().set_body_raw({"content": "x"})


# -----------------------------------------------------------------------------
# Error Factories
# -----------------------------------------------------------------------------


class TestErrorFactories:
    """Tests for the error factories."""

    @pytest.mark.parametrize(
        ("factory", "origin", "text"),
        [
            (CallResult.create_error, MessageOrigin.RETURN, "boom"),
            (CallResult.create_provider_error, MessageOrigin.PROVIDER, "Provider error: boom"),
            (CallResult.create_network_error, MessageOrigin.NETWORK, "Network error: boom"),
            (CallResult.create_tool_error, MessageOrigin.TOOL, "Tool error: boom"),
        ],
    )
    def test_failure_shape(self, factory, origin: MessageOrigin, text: str) -> None:
        """Failures are finished, unsuccessful and hold the raw text in an error interaction."""
        result = factory("boom", make_request())
        assert result.status is CallStatus.FINISHED
        assert not result.success
        last = result.body.last_interaction()
        assert isinstance(last, ErrorInteraction)
        assert last.content == "boom"
        matching = [message for message in result.messages if message.text == text]
        assert len(matching) == 1
        assert matching[0].origin is origin
        assert matching[0].severity is MessageSeverity.ERROR

    def test_failure_carries_request_turn_id(self) -> None:
        """Error interactions join the request's turn so the body stays replayable."""
        context, _ = make_context()
        request = CallRequest(context, provider=PROVIDER, body=make_body(turn_id="turn-7"))
        result = CallResult.create_provider_error("boom", request)
        assert result.body.last_interaction().turn_id == "turn-7"
        assert result.body.turn_ids_valid()

    def test_failure_without_request_gets_a_turn_id(self) -> None:
        """Without a request a fresh turn id is generated."""
        result = CallResult.create_error("boom")
        assert result.body.last_interaction().turn_id
        assert result.body.turn_ids_valid()

    def test_error_with_metrics(self) -> None:
        """Metrics passed to create_error land on the error interaction."""
        result = CallResult.create_error("boom", metrics=Metrics(input_tokens_prompt=5))
        assert result.metrics.input_tokens == 5

    def test_empty_result_is_invalid(self) -> None:
        """A result needs a request and either a body or messages."""
        ok, errors = CallResult().is_valid()
        texts = [error.text for error in errors]
        assert not ok
        assert "Request must not be null" in texts
        assert "Either body or messages must be set" in texts


# -----------------------------------------------------------------------------
# Messages and Mutation
# -----------------------------------------------------------------------------


class TestResultMessages:
    """Tests for message merging and body mutation."""

    def test_messages_are_ranked_and_deduplicated(self) -> None:
        """Errors sort first and repeated texts collapse."""
        result = CallResult.create_success([answer()], make_request())
        result.add_message(RuntimeMessage.info(MessageOrigin.RETURN, "note"))
        result.add_message(RuntimeMessage.info(MessageOrigin.RETURN, "note"))
        result.add_message(RuntimeMessage.error(MessageOrigin.TOOL, "broken"))
        messages = result.messages
        assert messages[0].text == "broken"
        assert [message.text for message in messages].count("note") == 1
        assert not result.success

    def test_merge_runtime_messages_retags_origin(self) -> None:
        """Merged diagnostics can be re-tagged with a new origin."""
        target = CallResult.create_success([answer()], make_request())
        source = CallResult.create_provider_error("quota", make_request())
        target.merge_runtime_messages_from(source, MessageOrigin.TOOL)
        merged = [message for message in target.messages if message.text == "Provider error: quota"]
        assert merged and merged[0].origin is MessageOrigin.TOOL
        target.merge_runtime_messages_from(None)

    def test_append_interactions_keeps_existing_markers(self) -> None:
        """Appended interactions are new alongside those already marked."""
        result = CallResult.create_success([answer("first")], make_request())
        result.append_interactions([answer("second")])
        assert result.body.interactions_new == (0, 1)
        assert result.result_text == "second"

    def test_set_completion_time(self) -> None:
        """Completion time is recorded on the last interaction."""
        result = CallResult.create_success([answer()], make_request())
        result.set_completion_time(1.5)
        assert result.metrics.completion_time == 1.5

    def test_set_body_from_interactions(self) -> None:
        """Plain interaction lists become a body with every item new."""
        result = CallResult()
        result.set_body([answer("a"), answer("b")])
        assert result.body.interactions_new == (0, 1)


# -----------------------------------------------------------------------------
# Projection
# -----------------------------------------------------------------------------


class TestResultProjection:
    """Tests for to_dict field projection."""

    def test_default_fields(self) -> None:
        """success, result and messages are projected by default."""
        result = CallResult.create_success([answer()], make_request())
        payload = result.to_dict()
        assert set(payload) == {"success", "result", "messages"}
        assert payload["success"] is True
        assert payload["result"]["type"] == "text"
        assert payload["result"]["content"] == "Slider added."
        assert all(isinstance(message, dict) for message in payload["messages"])

    def test_custom_paths(self) -> None:
        """Dotted paths reach into metrics and the request description."""
        result = CallResult.create_success(
            [TextInteraction(content="x", turn_id="t1", metrics=Metrics(input_tokens_prompt=7, output_tokens_generation=3, finish_reason="stop"))],
            make_request(),
        )
        payload = result.to_dict(
            {
                "tokens": "metrics.total_tokens",
                "finish": "metrics.finish_reason",
                "provider": "request.provider",
                "state": "Status",
                "missing": "unknown.path",
            }
        )
        assert payload == {
            "tokens": 10,
            "finish": "stop",
            "provider": PROVIDER,
            "state": "finished",
            "missing": None,
        }

    def test_raw_payload_is_the_result(self) -> None:
        """When a raw payload exists it is projected as-is."""
        payload = {"content": "Decoded.", "finish_reason": "stop"}
        result = CallResult.create_success_raw(payload, make_request())
        assert result.to_dict({"out": "result"}) == {"out": payload}

    def test_multiple_new_items_project_as_list(self) -> None:
        """Several new interactions project as a list."""
        result = CallResult.create_success([answer("a"), answer("b")], make_request())
        projected = result.to_dict({"out": "result"})["out"]
        assert [item["content"] for item in projected] == ["a", "b"]
