"""Classification of transport and runtime exceptions into the error taxonomy.

Provider and tool boundaries catch every exception and turn it into a
failed :class:`~canvasmind.ai.call.result.CallResult`. This module decides
which factory (network or provider) an exception maps to and which text
is preserved.
"""

from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass
from enum import Enum

import httpx
import openai

from .messages import MessageCode

__all__ = [
    "ErrorKind",
    "ClassifiedError",
    "CANCELLED_MESSAGE",
    "NETWORK_EXCEPTIONS",
    "TIMEOUT_EXCEPTIONS",
    "RETRYABLE_EXCEPTIONS",
    "classify_exception",
    "exception_message",
    "is_cancellation",
    "is_network_error",
]

CANCELLED_MESSAGE = "Call cancelled or timed out"

# Checked before the network classes; openai.APITimeoutError subclasses APIConnectionError.
TIMEOUT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    asyncio.CancelledError,
    asyncio.TimeoutError,
    TimeoutError,
    httpx.TimeoutException,
    openai.APITimeoutError,
)

NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.NetworkError,
    httpx.ProxyError,
    openai.APIConnectionError,
    ConnectionError,
    socket.gaierror,
)

RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = NETWORK_EXCEPTIONS + (openai.RateLimitError,)

_STATUS_CODES: tuple[tuple[type[BaseException], MessageCode], ...] = (
    (openai.AuthenticationError, MessageCode.AUTHENTICATION_MISSING),
    (openai.PermissionDeniedError, MessageCode.AUTHORIZATION_FAILED),
    (openai.RateLimitError, MessageCode.RATE_LIMITED),
)


class ErrorKind(str, Enum):
    PROVIDER = "provider"
    NETWORK = "network"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class ClassifiedError:
    """Outcome of :func:`classify_exception`."""

    kind: ErrorKind
    message: str
    code: MessageCode = MessageCode.UNKNOWN


def is_cancellation(exc: BaseException) -> bool:
    return isinstance(exc, TIMEOUT_EXCEPTIONS)


def is_network_error(exc: BaseException) -> bool:
    if is_cancellation(exc):
        return False
    return isinstance(exc, NETWORK_EXCEPTIONS)


def exception_message(exc: BaseException) -> str:
    """Prefer the inner cause's text, then the exception's own text."""
    inner = exc.__cause__ or exc.__context__
    if inner is not None and str(inner).strip():
        return str(inner)
    text = str(exc).strip()
    return text or "Unknown error"


def classify_exception(exc: BaseException) -> ClassifiedError:
    """Map *exc* onto the provider/network/cancelled taxonomy."""
    if is_cancellation(exc):
        return ClassifiedError(ErrorKind.CANCELLED, CANCELLED_MESSAGE, MessageCode.NETWORK_TIMEOUT)
    if is_network_error(exc):
        return ClassifiedError(ErrorKind.NETWORK, exception_message(exc))
    code = MessageCode.UNKNOWN
    for exc_type, mapped in _STATUS_CODES:
        if isinstance(exc, exc_type):
            code = mapped
            break
    return ClassifiedError(ErrorKind.PROVIDER, exception_message(exc), code)
