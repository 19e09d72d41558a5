"""Field value variants and their text serialization.

Host-supplied field values arrive as arbitrary data (strings, JSON documents,
rich-text trees). They are wrapped in a closed set of variants so every code
path that needs the text form goes through one total ``serialize`` method.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Sequence, Union

from ..ai.errors import ErrorCode, ExtractionError

ValueType = Literal["text", "json", "rich-text"]
VALUE_TYPES: tuple[str, ...] = ("text", "json", "rich-text")

_JSON_CLOSERS = {"{": "}", "[": "]"}


@dataclass(frozen=True, slots=True)
class TextValue:
    """Plain string field content."""

    text: str

    kind: Literal["text"] = "text"

    def serialize(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class StructuredValue:
    """JSON document (object, array or scalar) field content."""

    document: Any

    kind: Literal["json"] = "json"

    def serialize(self) -> str:
        return json.dumps(self.document, indent=2, ensure_ascii=False)


@dataclass(frozen=True, slots=True)
class RichTextValue:
    """Rich-text document tree (``{"type": "root", "children": [...]}``)."""

    tree: Mapping[str, Any]

    kind: Literal["rich-text"] = "rich-text"

    def serialize(self) -> str:
        return json.dumps(self.tree, indent=2, ensure_ascii=False)


FieldValue = Union[TextValue, StructuredValue, RichTextValue]


def coerce_field_value(raw: Any, value_type: str | None = None) -> FieldValue:
    """Wrap ``raw`` host data in the matching :data:`FieldValue` variant.

    An explicit ``value_type`` wins over inference. String input for a
    structured type is parsed when possible so re-serialization stays stable;
    unparsable strings are kept as text rather than rejected.
    """

    if isinstance(raw, (TextValue, StructuredValue, RichTextValue)):
        return raw

    normalized_type = (value_type or "").strip().lower() or None
    if normalized_type is not None and normalized_type not in VALUE_TYPES:
        raise ValueError(f"Unsupported value type: {value_type!r}")

    if normalized_type == "text":
        return TextValue("" if raw is None else raw if isinstance(raw, str) else _dump_compact(raw))

    if normalized_type in ("json", "rich-text"):
        document = raw
        if isinstance(raw, str):
            try:
                document = json.loads(raw)
            except json.JSONDecodeError:
                return TextValue(raw)
        if normalized_type == "rich-text" and isinstance(document, Mapping):
            return RichTextValue(document)
        return StructuredValue(document)

    if raw is None:
        return TextValue("")
    if isinstance(raw, str):
        return TextValue(raw)
    if _looks_like_rich_text(raw):
        return RichTextValue(raw)
    if isinstance(raw, (Mapping, list, tuple)):
        return StructuredValue(list(raw) if isinstance(raw, tuple) else raw)
    return TextValue(str(raw))


def requires_structured_output(value: FieldValue) -> bool:
    """Return ``True`` when replies for ``value`` must be structured data."""

    return not isinstance(value, TextValue)


def normalize_json_candidate(text: str) -> str:
    """Slice ``text`` down to its outermost JSON object or array.

    Finds the first opening brace or bracket and the last occurrence of its
    matching closer. Text without such a pair is returned stripped.
    """

    stripped = (text or "").strip()
    start = -1
    for index, char in enumerate(stripped):
        if char in _JSON_CLOSERS:
            start = index
            break
    if start < 0:
        return stripped
    closer = _JSON_CLOSERS[stripped[start]]
    end = stripped.rfind(closer)
    if end < start:
        return stripped
    return stripped[start : end + 1]


def parse_json_candidate(text: str) -> Any:
    """Normalize and parse ``text`` as JSON.

    Raises:
        ExtractionError: When the normalized text is empty or not valid JSON.
    """

    normalized = normalize_json_candidate(text)
    if not normalized:
        raise ExtractionError(
            code=ErrorCode.EMPTY_CANDIDATE,
            message="The assistant reply did not contain any JSON",
        )
    try:
        return json.loads(normalized)
    except json.JSONDecodeError as exc:
        raise ExtractionError(
            message=f"The assistant reply is not valid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})",
            details={"line": exc.lineno, "column": exc.colno},
        ) from exc


def _looks_like_rich_text(raw: Any) -> bool:
    return (
        isinstance(raw, Mapping)
        and raw.get("type") == "root"
        and isinstance(raw.get("children"), Sequence)
        and not isinstance(raw.get("children"), (str, bytes))
    )


def _dump_compact(raw: Any) -> str:
    try:
        return json.dumps(raw, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(raw)


__all__ = [
    "FieldValue",
    "RichTextValue",
    "StructuredValue",
    "TextValue",
    "VALUE_TYPES",
    "ValueType",
    "coerce_field_value",
    "normalize_json_candidate",
    "parse_json_candidate",
    "requires_structured_output",
]
