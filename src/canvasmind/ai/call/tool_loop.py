"""Single-pass execution of the tool calls a provider response asks for.

Only the tool calls pending when the provider responded are executed.
Feeding tool results back to the model for another round is left to the
caller, which can build a follow-up :class:`CallRequest` from the returned
body.
"""

from __future__ import annotations

import logging

from ..ai_types import CancelToken
from .messages import MessageOrigin, RuntimeMessage
from .request import CallRequest, DeltaCallback
from .result import CallResult, CallStatus
from .tool_request import ToolExecutorProtocol, ToolInvocationRequest

__all__ = ["run_tool_pass", "execute_call", "TOOL_MISSING_MESSAGE"]

LOGGER = logging.getLogger(__name__)

TOOL_MISSING_MESSAGE = "Tool not found or did not return a value"


async def run_tool_pass(
    result: CallResult,
    request: CallRequest,
    executor: ToolExecutorProtocol,
    cancel: CancelToken | None = None,
) -> CallResult:
    """Execute each pending tool call once, sequentially, appending results to *result*.

    Args:
        result: Provider result whose body may hold pending tool calls.
        request: Request that produced *result*; supplies provider, model and timeouts.
        executor: Runs the tools.
        cancel: Cooperative cancel token passed to every tool.

    Returns:
        The same *result*, with tool results appended and tool diagnostics merged.
    """
    pending = result.body.pending_tool_calls()
    if not pending:
        return result

    LOGGER.debug("Running %d pending tool call(s)", len(pending))
    result.status = CallStatus.CALLING_TOOLS
    tool_timeout = request.context.settings.tool_timeout
    for call in pending:
        invocation = ToolInvocationRequest.from_tool_call(
            call,
            executor,
            provider=request.provider,
            model=request.model,
            timeout_seconds=tool_timeout,
            models=request.context.models,
        )
        tool_result = await invocation.execute(cancel)
        if tool_result is None:
            result.add_message(RuntimeMessage.error(MessageOrigin.TOOL, f"Tool error: {TOOL_MISSING_MESSAGE}"))
            continue

        last = tool_result.body.last_interaction()
        if last is not None:
            if not last.turn_id:
                last = last.with_turn_id(call.turn_id)
            result.append_interactions([last])
        result.merge_runtime_messages_from(tool_result, MessageOrigin.TOOL)

    result.status = CallStatus.FINISHED
    return result


async def execute_call(
    request: CallRequest,
    executor: ToolExecutorProtocol | None = None,
    *,
    process_tools: bool | None = None,
    stream: bool | None = None,
    cancel: CancelToken | None = None,
    on_delta: DeltaCallback | None = None,
) -> CallResult:
    """Execute *request* and, when enabled, one pass over the requested tool calls.

    ``process_tools`` defaults to ``Settings.process_tools``.
    """
    result = await request.execute(stream=stream, cancel=cancel, on_delta=on_delta)
    if process_tools is None:
        process_tools = request.context.settings.process_tools
    if not process_tools or executor is None:
        return result
    return await run_tool_pass(result, request, executor, cancel)
