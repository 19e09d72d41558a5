"""AI backend client, prompts, and reply-to-proposal derivation."""

from .client import AIClient, ChatReply, ClientSettings, ToolCallResult
from .errors import (
    AssistantError,
    ConfigurationError,
    ErrorCode,
    ExtractionError,
    MatchingError,
    NoChangeError,
    TransportError,
)

__all__ = [
    "AIClient",
    "AssistantError",
    "ChatReply",
    "ClientSettings",
    "ConfigurationError",
    "ErrorCode",
    "ExtractionError",
    "MatchingError",
    "NoChangeError",
    "ToolCallResult",
    "TransportError",
]
