"""Map chat history into backend requests and decode structured edit calls."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence

from jsonschema import Draft7Validator

from ..chat.message_model import ChatMessage

LOGGER = logging.getLogger(__name__)

APPLY_EDIT_TOOL_NAME = "apply_edit"
TOOL_ACK_TEMPLATE = "✅ Applied edit to {label}."

_CONVERSATION_ROLES = ("user", "assistant")

APPLY_EDIT_PARAMETERS: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "search": {
            "type": "string",
            "description": "Exact text copied from the current field value.",
        },
        "replace": {
            "type": "string",
            "description": "Text that replaces the first occurrence of `search`.",
        },
    },
    "required": ["search", "replace"],
    "additionalProperties": False,
}

APPLY_EDIT_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": APPLY_EDIT_TOOL_NAME,
        "description": "Replace a span of the selected field's current value.",
        "parameters": APPLY_EDIT_PARAMETERS,
    },
}

_ARGUMENT_VALIDATOR = Draft7Validator(APPLY_EDIT_PARAMETERS)


@dataclass(frozen=True, slots=True)
class ToolEdit:
    """Decoded arguments of an ``apply_edit`` call."""

    search: str
    replace: str


def to_backend_messages(history: Sequence[ChatMessage], instruction: str) -> List[Dict[str, str]]:
    """Convert ``history`` into chat-completion messages.

    Only user and assistant turns are kept, each flattened to its text parts.
    Turns with no text are dropped. A non-empty ``instruction`` is prepended
    as the system turn.
    """

    messages: List[Dict[str, str]] = []
    for message in history:
        if message.role not in _CONVERSATION_ROLES:
            continue
        text = message.text
        if not text.strip():
            continue
        messages.append({"role": message.role, "content": text})
    if instruction and instruction.strip():
        messages.insert(0, {"role": "system", "content": instruction})
    return messages


def decode_tool_call(name: str | None, arguments: str | Mapping[str, Any] | None) -> ToolEdit | None:
    """Return the edit described by an ``apply_edit`` call, if it is valid.

    Calls to other tools, arguments that are not a JSON object and arguments
    failing the declared schema all return ``None``.
    """

    if name != APPLY_EDIT_TOOL_NAME:
        return None
    payload: Any = arguments
    if isinstance(arguments, str):
        try:
            payload = json.loads(arguments) if arguments.strip() else None
        except json.JSONDecodeError:
            LOGGER.debug("Ignoring %s call with unparsable arguments", APPLY_EDIT_TOOL_NAME)
            return None
    if not isinstance(payload, Mapping):
        return None

    issues = sorted(_ARGUMENT_VALIDATOR.iter_errors(dict(payload)), key=lambda issue: list(issue.path))
    if issues:
        LOGGER.debug("Ignoring %s call: %s", APPLY_EDIT_TOOL_NAME, "; ".join(issue.message for issue in issues))
        return None
    return ToolEdit(search=payload["search"], replace=payload["replace"])


def tool_acknowledgment(label: str | None) -> str:
    """Visible reply substituted for a tool-applied edit."""

    return TOOL_ACK_TEMPLATE.format(label=(label or "the field").strip() or "the field")


__all__ = [
    "APPLY_EDIT_PARAMETERS",
    "APPLY_EDIT_TOOL",
    "APPLY_EDIT_TOOL_NAME",
    "TOOL_ACK_TEMPLATE",
    "ToolEdit",
    "decode_tool_call",
    "to_backend_messages",
    "tool_acknowledgment",
]
