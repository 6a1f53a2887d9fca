"""Shared fakes for call-core tests."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping

from canvasmind.ai.call import (
    Agent,
    BaseProvider,
    BodyBuilder,
    CallContext,
    CallResult,
    CallStatus,
    Capability,
    ConversationBody,
    ErrorInteraction,
    Metrics,
    ModelCapabilityRegistry,
    ProviderRegistry,
    TextInteraction,
    ToolCallInteraction,
)
from canvasmind.ai.call.streaming import StreamingOptions
from canvasmind.ai.utils import TokenCounterRegistry
from canvasmind.services.settings import ProviderSettings, Settings

PROVIDER = "fake"
DEFAULT_MODEL = "fake-model"
SMALL_MODEL = "fake-small"
STATIC_MODEL = "fake-static"

FULL_CAPABILITIES = Capability.TOOL_REASONING_CHAT | Capability.JSON_OUTPUT


def make_models() -> ModelCapabilityRegistry:
    models = ModelCapabilityRegistry()
    models.register_model(
        PROVIDER,
        DEFAULT_MODEL,
        FULL_CAPABILITIES,
        default_for=FULL_CAPABILITIES,
        context_limit=1000,
    )
    models.register_model(PROVIDER, SMALL_MODEL, Capability.TEXT2TEXT, context_limit=200)
    models.register_model(PROVIDER, STATIC_MODEL, Capability.TEXT2TEXT, supports_streaming=False)
    return models


def make_body(*users: str, turn_id: str = "t1", **options: Any) -> ConversationBody:
    builder = BodyBuilder.create().with_default_turn_id(turn_id).add_system("You edit a node canvas.")
    for text in users or ("Add a slider",):
        builder.add_user(text)
    if "tool_filter" in options:
        builder.with_tool_filter(options["tool_filter"])
    if "context_filter" in options:
        builder.with_context_filter(options["context_filter"])
    if "schema" in options:
        builder.with_json_output_schema(options["schema"])
    return builder.build()


def _turn_id(body: ConversationBody) -> str:
    for interaction in reversed(body.interactions):
        if not isinstance(interaction, ErrorInteraction) and interaction.turn_id:
            return interaction.turn_id
    return "t1"


class FakeStreamingAdapter:
    """Yields growing text snapshots, then a finished result."""

    def __init__(self, chunks: list[str], *, error: Exception | None = None, finish_reason: str | None = "stop") -> None:
        self.chunks = chunks
        self.error = error
        self.finish_reason = finish_reason

    async def stream(self, request, options: StreamingOptions, cancel=None) -> AsyncIterator[CallResult]:
        text = ""
        turn_id = _turn_id(request.body)
        for chunk in self.chunks:
            text += chunk
            partial = CallResult.create_success([TextInteraction(content=text, turn_id=turn_id)], request)
            partial.status = CallStatus.STREAMING
            yield partial
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        final = TextInteraction(
            content=text,
            turn_id=turn_id,
            metrics=Metrics(output_tokens_generation=len(self.chunks), finish_reason=self.finish_reason),
        )
        yield CallResult.create_success([final], request)


class FakeProvider(BaseProvider):
    """Provider replaying queued responses.

    Queue entries are raw payload dicts, exceptions to raise, ``None`` or
    ready-made :class:`CallResult` objects.
    """

    def __init__(
        self,
        models: ModelCapabilityRegistry,
        *,
        name: str = PROVIDER,
        settings: ProviderSettings | Settings | None = None,
        responses: list[Any] | None = None,
        adapter: FakeStreamingAdapter | None = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__(name, models=models, settings=settings)
        self.responses = list(responses or [])
        self.adapter = adapter
        self.delay = delay
        self.calls = 0
        self.select_calls = 0

    def encode(self, request) -> str:
        return json.dumps({"model": request.model, "body": request.body.to_dict()})

    def decode(self, raw: Mapping[str, Any], request) -> list:
        turn_id = _turn_id(request.body)
        usage = Metrics(
            input_tokens_prompt=int(raw.get("input_tokens", 0)),
            output_tokens_generation=int(raw.get("output_tokens", 0)),
            finish_reason=raw.get("finish_reason"),
        )
        items: list = []
        if raw.get("content"):
            items.append(TextInteraction(content=raw["content"], agent=Agent.ASSISTANT, turn_id=turn_id))
        for call in raw.get("tool_calls") or ():
            items.append(
                ToolCallInteraction(
                    id=call["id"],
                    name=call["name"],
                    arguments=call.get("arguments"),
                    turn_id=turn_id,
                )
            )
        if items:
            items[-1] = items[-1].with_metrics(usage)
        return items

    async def call(self, request, cancel=None):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.pop(0) if self.responses else {"content": "Done.", "finish_reason": "stop"}
        if isinstance(response, BaseException):
            raise response
        if response is None or isinstance(response, CallResult):
            return response
        return CallResult.create_success_raw(response, request)

    def select_model(self, capability: Capability, requested_model: str | None) -> str:
        self.select_calls += 1
        return super().select_model(capability, requested_model)

    def get_streaming_adapter(self):
        return self.adapter


@dataclass
class FakeContextProvider:
    name: str
    values: dict[str, Any] = field(default_factory=dict)

    def get_context(self) -> Mapping[str, Any]:
        return self.values


def make_context(
    *,
    settings: Settings | None = None,
    provider_settings: ProviderSettings | None = None,
    responses: list[Any] | None = None,
    adapter: FakeStreamingAdapter | None = None,
    delay: float = 0.0,
    context_providers: tuple = (),
) -> tuple[CallContext, FakeProvider]:
    models = make_models()
    provider = FakeProvider(
        models,
        settings=provider_settings,
        responses=responses,
        adapter=adapter,
        delay=delay,
    )
    context = CallContext(
        models=models,
        providers=ProviderRegistry([provider]),
        settings=settings or Settings(),
        context_providers=context_providers,
        token_counters=TokenCounterRegistry(),
    )
    return context, provider
