"""AI call orchestration, tools and token utilities."""

from .call import BodyBuilder, CallContext, CallRequest, CallResult, ConversationBody, execute_call
from .utils import TokenCounterRegistry

__all__ = [
    "BodyBuilder",
    "CallContext",
    "CallRequest",
    "CallResult",
    "ConversationBody",
    "TokenCounterRegistry",
    "execute_call",
]
