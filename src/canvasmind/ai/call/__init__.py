"""Conversation orchestration core: bodies, requests, results and the tool pass.

Example:
    body = BodyBuilder.create().with_default_turn_id("t1").add_user("Add a slider").build()
    request = CallRequest(context, provider="openai", body=body)
    result = await execute_call(request, executor)
"""

from .body import DEFAULT_FILTER, ConversationBody
from .builder import BodyBuilder
from .capability import Capability, has_input, has_output, parse_capability, to_detailed_string
from .context import CallContext, ContextProvider
from .errors import ClassifiedError, ErrorKind, classify_exception
from .filters import Filter, canonicalize_filter, parse_filter
from .interactions import (
    Agent,
    ErrorInteraction,
    ImageInteraction,
    Interaction,
    TextInteraction,
    ToolCallInteraction,
    ToolResultInteraction,
    interaction_from_dict,
    interaction_to_dict,
)
from .messages import MessageCode, MessageOrigin, MessageSeverity, RuntimeMessage, merge_messages
from .metrics import Metrics
from .models import ModelCapabilities, ModelCapabilityRegistry, ModelCapabilityRegistryProtocol
from .policies import PolicyPipeline
from .providers import BaseProvider, DuplicateProviderError, Provider, ProviderRegistry
from .request import CallRequest
from .result import CallResult, CallStatus
from .streaming import StreamingAdapter, StreamingOptions, TextCoalescer
from .tool_loop import execute_call, run_tool_pass
from .tool_request import ToolCatalogProtocol, ToolExecutorProtocol, ToolInvocationRequest

__all__ = [
    # body / builder
    "ConversationBody",
    "BodyBuilder",
    "DEFAULT_FILTER",
    # capability
    "Capability",
    "has_input",
    "has_output",
    "parse_capability",
    "to_detailed_string",
    # context / providers / models
    "CallContext",
    "ContextProvider",
    "Provider",
    "BaseProvider",
    "ProviderRegistry",
    "DuplicateProviderError",
    "ModelCapabilities",
    "ModelCapabilityRegistry",
    "ModelCapabilityRegistryProtocol",
    # interactions
    "Agent",
    "Interaction",
    "TextInteraction",
    "ToolCallInteraction",
    "ToolResultInteraction",
    "ImageInteraction",
    "ErrorInteraction",
    "interaction_to_dict",
    "interaction_from_dict",
    # diagnostics
    "MessageCode",
    "MessageOrigin",
    "MessageSeverity",
    "RuntimeMessage",
    "merge_messages",
    "ClassifiedError",
    "ErrorKind",
    "classify_exception",
    # filters
    "Filter",
    "parse_filter",
    "canonicalize_filter",
    # metrics
    "Metrics",
    # execution
    "CallRequest",
    "CallResult",
    "CallStatus",
    "PolicyPipeline",
    "StreamingAdapter",
    "StreamingOptions",
    "TextCoalescer",
    "ToolInvocationRequest",
    "ToolExecutorProtocol",
    "ToolCatalogProtocol",
    "run_tool_pass",
    "execute_call",
]
