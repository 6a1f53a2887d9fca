"""Await helpers honouring a cooperative cancel token and a timeout."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, TypeVar

from ..ai_types import CancelToken

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class OperationCancelledError(TimeoutError):
    """Raised when a cancel token fires or a deadline passes before completion."""

    def __init__(self, message: str = "Operation cancelled", *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


async def await_cancellable(
    awaitable: Awaitable[T],
    *,
    timeout: float | None = None,
    cancel: CancelToken | None = None,
) -> T:
    """Await *awaitable*, giving up when *cancel* is set or *timeout* elapses.

    The pending work is cancelled before :class:`OperationCancelledError` is
    raised. A non-positive *timeout* means no deadline.

    Example:
        token = asyncio.Event()
        result = await await_cancellable(provider.call(request), timeout=30, cancel=token)
    """
    deadline = timeout if timeout is not None and timeout > 0 else None
    if cancel is not None and cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelledError("Operation cancelled before start")

    task = asyncio.ensure_future(awaitable)
    if cancel is None:
        try:
            return await asyncio.wait_for(task, timeout=deadline)
        except asyncio.TimeoutError as exc:
            raise OperationCancelledError(f"Operation timed out after {deadline}s", timed_out=True) from exc

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, timeout=deadline, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    # Errors raised while unwinding abandoned work are not reported.
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await task
    timed_out = not cancel.is_set()
    LOGGER.debug("Awaitable abandoned (timed_out=%s)", timed_out)
    if timed_out:
        raise OperationCancelledError(f"Operation timed out after {deadline}s", timed_out=True)
    raise OperationCancelledError("Operation cancelled")


__all__ = ["OperationCancelledError", "await_cancellable"]
