"""Utility helpers for AI operations."""

from .cancellation import OperationCancelledError, await_cancellable
from .tokens import ApproxByteCounter, TiktokenCounter, TokenCounterRegistry, estimate_tokens

__all__ = [
    "ApproxByteCounter",
    "OperationCancelledError",
    "TiktokenCounter",
    "TokenCounterRegistry",
    "await_cancellable",
    "estimate_tokens",
]
