"""Standardized error types for the assistant pipeline.

Errors fall into four families that the widget surfaces differently:

* configuration errors block sending entirely (missing credential),
* transport errors come back from the backend and are shown inline,
* extraction errors mean a reply could not be turned into a usable candidate,
* matching errors mean a search block could not be located in the field.

None of them is ever allowed to degrade into a destructive field write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorCode:
    """Constants for error codes attached to assistant errors."""

    # Configuration
    MISSING_API_KEY = "missing_api_key"
    MISSING_MODEL = "missing_model"

    # Transport
    REQUEST_FAILED = "request_failed"
    EMPTY_RESPONSE = "empty_response"

    # Extraction
    INVALID_JSON = "invalid_json"
    EMPTY_CANDIDATE = "empty_candidate"

    # Matching
    SEARCH_NOT_FOUND = "search_not_found"
    EMPTY_SEARCH = "empty_search"
    MALFORMED_BLOCK = "malformed_block"

    # No-op
    NO_CHANGE = "no_change"


@dataclass
class AssistantError(Exception):
    """Base exception class for every assistant pipeline failure.

    Attributes:
        code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
    """

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "assistant"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "category": self.category,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return self.message


@dataclass
class ConfigurationError(AssistantError):
    """Raised before a request is issued when configuration is incomplete."""

    code: str = field(default=ErrorCode.MISSING_API_KEY)
    message: str = field(default="No API key configured. Sending is disabled.")
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "configuration"


@dataclass
class TransportError(AssistantError):
    """Raised when the backend returns a non-success response."""

    code: str = field(default=ErrorCode.REQUEST_FAILED)
    message: str = field(default="Request failed")
    details: dict[str, Any] = field(default_factory=dict)
    status_code: int | None = field(default=None)

    category: ClassVar[str] = "transport"

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


@dataclass
class ExtractionError(AssistantError):
    """Raised when a reply cannot be turned into a usable edit candidate."""

    code: str = field(default=ErrorCode.INVALID_JSON)
    message: str = field(default="The assistant reply is not valid JSON")
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "extraction"


@dataclass
class MatchingError(AssistantError):
    """Raised when a search/replace block cannot be located in the field."""

    code: str = field(default=ErrorCode.SEARCH_NOT_FOUND)
    message: str = field(default="The search block was not found in the field")
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "matching"


@dataclass
class NoChangeError(AssistantError):
    """Raised when a candidate would leave the field untouched."""

    code: str = field(default=ErrorCode.NO_CHANGE)
    message: str = field(default="The proposed value matches the current value")
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "no_change"


__all__ = [
    "AssistantError",
    "ConfigurationError",
    "ErrorCode",
    "ExtractionError",
    "MatchingError",
    "NoChangeError",
    "TransportError",
]
