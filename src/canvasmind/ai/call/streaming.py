"""Streaming contracts and text delta coalescing."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterable, AsyncIterator, Protocol, runtime_checkable

from ..ai_types import CancelToken

if TYPE_CHECKING:
    from .request import CallRequest
    from .result import CallResult

__all__ = ["StreamingOptions", "StreamingAdapter", "TextCoalescer", "coalesce_text"]


@dataclass(slots=True, frozen=True)
class StreamingOptions:
    """Tuning for how streamed deltas are delivered.

    Attributes:
        coalesce_tokens: Batch small text deltas before yielding them.
        coalesce_delay_ms: Maximum time a partial batch is held.
        preferred_chunk_size: Batch size, in characters, that triggers a flush.
    """

    coalesce_tokens: bool = True
    coalesce_delay_ms: int = 40
    preferred_chunk_size: int = 24


@runtime_checkable
class StreamingAdapter(Protocol):
    """Provider component yielding incremental results for a request.

    Each yielded :class:`CallResult` carries the body accumulated so far;
    the last one is the final result.
    """

    def stream(
        self,
        request: CallRequest,
        options: StreamingOptions,
        cancel: CancelToken | None = None,
    ) -> AsyncIterator[CallResult]:
        ...


class TextCoalescer:
    """Accumulates text deltas and releases them in readable batches."""

    _BOUNDARIES = ("\n", ". ", "! ", "? ")

    def __init__(self, options: StreamingOptions | None = None) -> None:
        self._options = options or StreamingOptions()
        self._buffer: list[str] = []
        self._size = 0
        self._last_flush = time.monotonic()

    def feed(self, chunk: str) -> str | None:
        """Add *chunk*; return a batch when one is ready, else ``None``."""
        if not chunk:
            return None
        if not self._options.coalesce_tokens:
            return chunk
        self._buffer.append(chunk)
        self._size += len(chunk)
        elapsed_ms = (time.monotonic() - self._last_flush) * 1000
        if (
            self._size >= self._options.preferred_chunk_size
            or elapsed_ms >= self._options.coalesce_delay_ms
            or chunk.endswith(self._BOUNDARIES)
        ):
            return self.flush()
        return None

    def flush(self) -> str:
        text = "".join(self._buffer)
        self._buffer.clear()
        self._size = 0
        self._last_flush = time.monotonic()
        return text


async def coalesce_text(chunks: AsyncIterable[str], options: StreamingOptions | None = None) -> AsyncIterator[str]:
    """Re-chunk an async stream of text deltas."""
    coalescer = TextCoalescer(options)
    async for chunk in chunks:
        batch = coalescer.feed(chunk)
        if batch:
            yield batch
    tail = coalescer.flush()
    if tail:
        yield tail
