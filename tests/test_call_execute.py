"""Tests for CallRequest.execute: provider dispatch, retries, streaming and failures."""

from __future__ import annotations

import asyncio

import pytest

from canvasmind.ai.call.errors import CANCELLED_MESSAGE
from canvasmind.ai.call.interactions import Agent, ErrorInteraction, TextInteraction
from canvasmind.ai.call.messages import MessageCode, MessageOrigin, MessageSeverity
from canvasmind.ai.call.policies import PolicyPipeline
from canvasmind.ai.call.request import CallRequest
from canvasmind.ai.call.result import CallStatus
from canvasmind.services import telemetry
from canvasmind.services.settings import ProviderSettings, Settings

from tests.helpers import (
    DEFAULT_MODEL,
    PROVIDER,
    FakeStreamingAdapter,
    make_body,
    make_context,
)


def error_messages(result):
    return [message for message in result.messages if message.severity is MessageSeverity.ERROR]


class WordCounter:
    """Counts whitespace separated words."""

    model_name = DEFAULT_MODEL

    def count(self, text: str) -> int:
        return len(text.split())

    def estimate(self, text: str) -> int:
        return self.count(text)


def fast_retry_settings(max_retries: int = 3) -> Settings:
    return Settings(max_retries=max_retries, retry_min_seconds=0, retry_max_seconds=0)


# -----------------------------------------------------------------------------
# Success Path
# -----------------------------------------------------------------------------


class TestExecuteSuccess:
    """Tests for successful calls."""

    @pytest.mark.asyncio
    async def test_returns_decoded_response(self) -> None:
        """The provider's answer becomes a finished, stamped result."""
        context, provider = make_context(
            responses=[{"content": "Slider added.", "input_tokens": 12, "output_tokens": 4, "finish_reason": "stop"}]
        )
        request = CallRequest(context, provider=PROVIDER, body=make_body())

        result = await request.execute()

        assert result.success
        assert result.status is CallStatus.FINISHED
        assert result.result_text == "Slider added."
        assert result.request is request
        assert provider.calls == 1
        metrics = result.metrics
        assert metrics.provider == PROVIDER
        assert metrics.model == DEFAULT_MODEL
        assert metrics.input_tokens == 12
        assert metrics.output_tokens == 4
        assert metrics.finish_reason == "stop"
        assert metrics.completion_time > 0

    @pytest.mark.asyncio
    async def test_response_interactions_are_new(self) -> None:
        """Interactions produced by the call are marked new and keep the turn id."""
        context, _ = make_context(responses=[{"content": "Done.", "finish_reason": "stop"}])
        result = await CallRequest(context, provider=PROVIDER, body=make_body(turn_id="turn-3")).execute()
        new_items = result.body.new_interactions()
        assert len(new_items) == 1
        assert isinstance(new_items[0], TextInteraction)
        assert new_items[0].agent is Agent.ASSISTANT
        assert new_items[0].turn_id == "turn-3"

    @pytest.mark.asyncio
    async def test_missing_finish_reason_defaults_to_stop(self) -> None:
        """A missing finish reason is filled in with a warning."""
        context, _ = make_context(responses=[{"content": "Done."}])
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute()
        assert result.success
        assert result.metrics.finish_reason == "stop"
        assert any(message.text == "Finish reason missing; defaulted to 'stop'." for message in result.messages)

    @pytest.mark.asyncio
    async def test_estimates_use_context_counters(self) -> None:
        """Heuristic estimates come from the context's token counters."""
        context, _ = make_context(responses=[{"content": "Slider added to canvas.", "finish_reason": "stop"}])
        context.token_counters.register(DEFAULT_MODEL, WordCounter())
        body = make_body("Add a slider")

        result = await CallRequest(context, provider=PROVIDER, body=body).execute()

        assert result.success
        assert result.metrics.estimated_input_tokens == len("You edit a node canvas.\nAdd a slider".split())
        assert result.metrics.estimated_output_tokens == 4
        assert result.body.interactions_new == (0,)

    @pytest.mark.asyncio
    async def test_emits_telemetry(self, telemetry_sink) -> None:
        """Validation, start and completion events are emitted in order."""
        context, _ = make_context(responses=[{"content": "Done.", "input_tokens": 3, "finish_reason": "stop"}])
        await CallRequest(context, provider=PROVIDER, body=make_body()).execute()
        events = telemetry_sink.tail()
        assert [event.event for event in events] == [
            telemetry.CALL_VALIDATED,
            telemetry.CALL_STARTED,
            telemetry.CALL_COMPLETED,
        ]
        assert events[-1].success is True
        assert events[-1].input_tokens == 3
        assert events[-1].model == DEFAULT_MODEL


# -----------------------------------------------------------------------------
# Failure Paths
# -----------------------------------------------------------------------------


class TestExecuteFailures:
    """Tests for validation, provider, network and timeout failures."""

    @pytest.mark.asyncio
    async def test_validation_failure_skips_provider(self, telemetry_sink) -> None:
        """Invalid requests never reach the provider."""
        context, provider = make_context()
        request = CallRequest(context, body=make_body())

        result = await request.execute()

        assert not result.success
        assert result.status is CallStatus.FINISHED
        assert provider.calls == 0
        assert isinstance(result.body.last_interaction(), ErrorInteraction)
        assert result.body.last_interaction().content == "Request validation failed"
        texts = [message.text for message in error_messages(result)]
        assert "Request validation failed" in texts
        assert "Provider is required" in texts
        assert [event.event for event in telemetry_sink.tail()] == [telemetry.CALL_VALIDATED]
        assert telemetry_sink.tail()[0].success is False

    @pytest.mark.asyncio
    async def test_provider_exception(self) -> None:
        """Non-network exceptions become provider errors."""
        context, _ = make_context(responses=[ValueError("quota exceeded")])
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute()
        assert not result.success
        assert result.status is CallStatus.FINISHED
        assert result.body.last_interaction().content == "quota exceeded"
        assert any(
            message.origin is MessageOrigin.PROVIDER and message.text == "Provider error: quota exceeded"
            for message in error_messages(result)
        )

    @pytest.mark.asyncio
    async def test_provider_returns_nothing(self) -> None:
        """A provider returning None yields a provider error."""
        context, _ = make_context(responses=[None])
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute()
        assert not result.success
        assert "Provider error: Provider returned no response" in [m.text for m in result.messages]

    @pytest.mark.asyncio
    async def test_network_error_after_retries(self, telemetry_sink) -> None:
        """Connection failures are retried, then reported with Network origin."""
        context, provider = make_context(
            settings=fast_retry_settings(3),
            responses=[ConnectionError("offline"), ConnectionError("offline"), ConnectionError("offline")],
        )
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute()
        assert provider.calls == 3
        assert not result.success
        network = [message for message in error_messages(result) if message.origin is MessageOrigin.NETWORK]
        assert network and network[0].text.startswith("Network error: ")
        assert telemetry_sink.tail()[-1].event == telemetry.CALL_FAILED

    @pytest.mark.asyncio
    async def test_retry_recovers(self) -> None:
        """A transient failure followed by success succeeds."""
        context, provider = make_context(
            settings=fast_retry_settings(2),
            responses=[ConnectionError("blip"), {"content": "Recovered.", "finish_reason": "stop"}],
        )
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute()
        assert result.success
        assert result.result_text == "Recovered."
        assert provider.calls == 2

    @pytest.mark.asyncio
    async def test_provider_errors_are_not_retried(self) -> None:
        """Only transport failures are retried."""
        context, provider = make_context(settings=fast_retry_settings(3), responses=[ValueError("bad request")])
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute()
        assert not result.success
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_timeout(self, telemetry_sink) -> None:
        """A slow provider is abandoned after the timeout."""
        context, _ = make_context(delay=5)
        request = CallRequest(
            context,
            provider=PROVIDER,
            body=make_body(),
            timeout_seconds=0.05,
            policies=PolicyPipeline(),
        )
        result = await request.execute()
        assert not result.success
        timeouts = [message for message in error_messages(result) if message.code is MessageCode.NETWORK_TIMEOUT]
        assert timeouts and timeouts[0].origin is MessageOrigin.PROVIDER
        assert timeouts[0].text == f"Provider error: {CANCELLED_MESSAGE}"
        assert telemetry_sink.tail()[-1].event == telemetry.CALL_CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_before_start(self) -> None:
        """A token set before execution cancels without calling the provider body."""
        context, provider = make_context()
        cancel = asyncio.Event()
        cancel.set()
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute(cancel=cancel)
        assert not result.success
        assert provider.calls == 0
        assert f"Provider error: {CANCELLED_MESSAGE}" in [message.text for message in result.messages]

    @pytest.mark.asyncio
    async def test_cancel_during_call(self) -> None:
        """Setting the token while the provider runs aborts the call."""
        context, provider = make_context(delay=5)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute(cancel=cancel)
        assert not result.success
        assert provider.calls == 1
        assert result.body.last_interaction().content == CANCELLED_MESSAGE


# -----------------------------------------------------------------------------
# Streaming
# -----------------------------------------------------------------------------


class TestExecuteStreaming:
    """Tests for streaming through the provider's adapter."""

    @pytest.mark.asyncio
    async def test_streams_deltas(self) -> None:
        """Each delta is delivered and the final result is returned."""
        adapter = FakeStreamingAdapter(["Adding ", "a ", "slider."])
        context, provider = make_context(adapter=adapter)
        deltas = []

        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute(
            stream=True,
            on_delta=deltas.append,
        )

        assert result.success
        assert result.result_text == "Adding a slider."
        assert provider.calls == 0
        assert [delta.result_text for delta in deltas] == ["Adding ", "Adding a ", "Adding a slider.", "Adding a slider."]
        assert [delta.status for delta in deltas[:-1]] == [CallStatus.STREAMING] * 3

    @pytest.mark.asyncio
    async def test_stream_argument_applies_to_one_call(self) -> None:
        """execute(stream=True) leaves the request's own preference untouched."""
        adapter = FakeStreamingAdapter(["Streamed."])
        context, provider = make_context(adapter=adapter, responses=[{"content": "Plain.", "finish_reason": "stop"}])
        request = CallRequest(context, provider=PROVIDER, body=make_body())

        streamed = await request.execute(stream=True)
        assert streamed.result_text == "Streamed."
        assert request.wants_streaming is False

        plain = await request.execute()
        assert plain.result_text == "Plain."
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_global_streaming_toggle_blocks_call(self) -> None:
        """Disabling streaming in the application settings rejects streamed calls."""
        adapter = FakeStreamingAdapter(["never"])
        context, provider = make_context(adapter=adapter, settings=Settings(enable_streaming=False))
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute(stream=True)
        assert not result.success
        assert provider.calls == 0
        assert MessageCode.STREAMING_DISABLED_PROVIDER in {message.code for message in result.messages}

    @pytest.mark.asyncio
    async def test_falls_back_without_adapter(self) -> None:
        """Providers without an adapter are called normally."""
        context, provider = make_context(responses=[{"content": "Plain.", "finish_reason": "stop"}])
        request = CallRequest(context, provider=PROVIDER, body=make_body(), wants_streaming=True)
        result = await request.execute()
        assert result.success
        assert result.result_text == "Plain."
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_stream_failure(self) -> None:
        """Errors raised mid-stream become provider errors."""
        adapter = FakeStreamingAdapter(["partial"], error=RuntimeError("stream reset"))
        context, _ = make_context(adapter=adapter)
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute(stream=True)
        assert not result.success
        assert any("Streaming failed" in message.text for message in error_messages(result))

    @pytest.mark.asyncio
    async def test_streaming_validation_error_blocks_call(self) -> None:
        """Streaming is not silently downgraded when the provider disallows it."""
        adapter = FakeStreamingAdapter(["never"])
        context, provider = make_context(
            adapter=adapter,
            provider_settings=ProviderSettings(name=PROVIDER, enable_streaming=False),
        )
        result = await CallRequest(context, provider=PROVIDER, body=make_body()).execute(stream=True)
        assert not result.success
        assert provider.calls == 0
        assert MessageCode.STREAMING_DISABLED_PROVIDER in {message.code for message in result.messages}
