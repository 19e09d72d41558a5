"""Chat message and message-part data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Sequence, Union


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _message_id() -> str:
    return f"msg-{uuid.uuid4().hex[:12]}"


ChatRole = Literal["user", "assistant", "system"]


@dataclass(frozen=True, slots=True)
class TextPart:
    """Plain text fragment of a message."""

    text: str

    type: Literal["text"] = "text"


@dataclass(frozen=True, slots=True)
class ToolPart:
    """Structured tool invocation recorded on an assistant message."""

    name: str
    arguments: str
    call_id: str | None = None

    type: Literal["tool"] = "tool"


MessagePart = Union[TextPart, ToolPart]


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """Represents a row inside the chat history list."""

    role: ChatRole
    parts: tuple[MessagePart, ...] = ()
    id: str = field(default_factory=_message_id)
    created_at: datetime = field(default_factory=_utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_text(cls, role: ChatRole, text: str, *, message_id: str | None = None, **metadata: Any) -> "ChatMessage":
        kwargs: Dict[str, Any] = {"role": role, "parts": (TextPart(text),), "metadata": dict(metadata)}
        if message_id:
            kwargs["id"] = message_id
        return cls(**kwargs)

    @property
    def text(self) -> str:
        """Concatenate every text part in order."""

        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    @property
    def tool_parts(self) -> tuple[ToolPart, ...]:
        return tuple(part for part in self.parts if isinstance(part, ToolPart))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for persistence."""

        return {
            "id": self.id,
            "role": self.role,
            "parts": [_part_to_dict(part) for part in self.parts],
            "created_at": self.created_at.isoformat(),
            "metadata": dict(self.metadata),
        }


def last_assistant_message(history: Sequence[ChatMessage]) -> ChatMessage | None:
    """Return the newest assistant message in ``history``."""

    for message in reversed(history):
        if message.role == "assistant":
            return message
    return None


def _part_to_dict(part: MessagePart) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": part.type, "text": part.text}
    payload: Dict[str, Any] = {"type": part.type, "name": part.name, "arguments": part.arguments}
    if part.call_id:
        payload["call_id"] = part.call_id
    return payload


__all__ = [
    "ChatMessage",
    "ChatRole",
    "MessagePart",
    "TextPart",
    "ToolPart",
    "last_assistant_message",
]
