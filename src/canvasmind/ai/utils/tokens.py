"""Token estimation utilities for AI operations."""

from __future__ import annotations

import logging
import math
from typing import Dict

import tiktoken

from ..ai_types import TokenCounterProtocol

LOGGER = logging.getLogger(__name__)

# Average bytes per token for English prose (GPT-style tokenization)
CHARS_PER_TOKEN = 4.0
_DEFAULT_BYTES_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate the number of tokens in a text string.

    Uses a simple byte-based heuristic of ~4 bytes per token.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count (minimum 1 for non-empty text, 0 for empty).
    """
    if not text:
        return 0
    return max(1, math.ceil(len(text.encode("utf-8", errors="ignore")) / CHARS_PER_TOKEN))


class ApproxByteCounter(TokenCounterProtocol):
    """Deterministic fallback counter that estimates tokens via byte length."""

    def __init__(self, *, model_name: str | None = None, charset: str = "utf-8", bytes_per_token: int = _DEFAULT_BYTES_PER_TOKEN) -> None:
        self.model_name = model_name
        self._charset = charset
        self._bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        return self.estimate(text)

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        data = text.encode(self._charset, errors="ignore")
        return max(1, math.ceil(len(data) / self._bytes_per_token))


class TiktokenCounter(TokenCounterProtocol):
    """Token counter backed by OpenAI's tiktoken package."""

    def __init__(self, model_name: str, *, encoding_name: str | None = None) -> None:
        if not model_name:
            raise ValueError("model_name is required for TiktokenCounter")
        self.model_name = model_name
        self._encoding = self._load_encoding(model_name, encoding_name)
        self._fallback = ApproxByteCounter(model_name=model_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        try:
            return len(self._encoding.encode(text))
        except Exception:  # pragma: no cover - encoder rejects unusual input
            LOGGER.debug("tiktoken encode failed; falling back to approximation", exc_info=True)
            return self._fallback.estimate(text)

    def estimate(self, text: str) -> int:
        return self._fallback.estimate(text)

    @staticmethod
    def _load_encoding(model_name: str, encoding_name: str | None) -> tiktoken.Encoding:
        if encoding_name:
            return tiktoken.get_encoding(encoding_name)
        try:
            return tiktoken.encoding_for_model(model_name)
        except KeyError:
            LOGGER.debug("Falling back to cl100k_base encoding for model %s", model_name)
            return tiktoken.get_encoding("cl100k_base")


class TokenCounterRegistry:
    """Registry maintaining tokenizer implementations per model.

    Models without a registered counter get a tiktoken counter on first use
    when ``auto_tiktoken`` is enabled and tiktoken knows the model; anything
    else falls back to the byte heuristic.
    """

    _shared: TokenCounterRegistry | None = None

    def __init__(self, *, fallback: TokenCounterProtocol | None = None, auto_tiktoken: bool = False) -> None:
        self._fallback = fallback or ApproxByteCounter()
        self._counters: Dict[str, TokenCounterProtocol] = {}
        self._auto_tiktoken = auto_tiktoken

    @classmethod
    def global_instance(cls) -> "TokenCounterRegistry":
        if cls._shared is None:
            cls._shared = TokenCounterRegistry(auto_tiktoken=True)
        return cls._shared

    def register(self, model_name: str, counter: TokenCounterProtocol) -> None:
        key = self._normalize_key(model_name)
        if not key:
            raise ValueError("model_name is required for token counter registration")
        self._counters[key] = counter

    def unregister(self, model_name: str) -> None:
        key = self._normalize_key(model_name)
        self._counters.pop(key, None)

    def has(self, model_name: str | None) -> bool:
        key = self._normalize_key(model_name)
        return bool(key and key in self._counters)

    def get(self, model_name: str | None = None) -> TokenCounterProtocol:
        key = self._normalize_key(model_name)
        if not key:
            return self._fallback
        counter = self._counters.get(key)
        if counter is None and self._auto_tiktoken:
            counter = self._build_tiktoken_counter(key)
            if counter is not None:
                self._counters[key] = counter
        return counter or self._fallback

    def count(self, model_name: str | None, text: str) -> int:
        counter = self.get(model_name)
        try:
            return counter.count(text)
        except Exception:  # pragma: no cover - counters are third-party code
            LOGGER.debug("Token counter failed; falling back to estimate", exc_info=True)
            return counter.estimate(text)

    def estimate(self, text: str) -> int:
        return self._fallback.estimate(text)

    @staticmethod
    def _build_tiktoken_counter(model_name: str) -> TokenCounterProtocol | None:
        try:
            tiktoken.encoding_name_for_model(model_name)
        except KeyError:
            return None
        try:
            return TiktokenCounter(model_name)
        except Exception as exc:  # pragma: no cover - encoding download failures
            LOGGER.debug("Failed to initialize tiktoken counter for %s: %s", model_name, exc)
            return None

    @staticmethod
    def _normalize_key(model_name: str | None) -> str:
        return (model_name or "").strip().lower()


__all__ = [
    "ApproxByteCounter",
    "CHARS_PER_TOKEN",
    "TiktokenCounter",
    "TokenCounterRegistry",
    "estimate_tokens",
]
