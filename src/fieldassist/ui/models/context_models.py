"""Context item models describing host-supplied fields.

A context item is an immutable snapshot of one editable field the host is
willing to share with the assistant. The widget never mutates it; the host
replaces the whole list whenever field values change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ...editor.values import FieldValue, TextValue, coerce_field_value


@dataclass(frozen=True, slots=True)
class ContextItem:
    """A labeled reference to an editable field's current value.

    Attributes:
        id: Unique identifier within the context list.
        label: Display label, also quoted in the prompt.
        value: The field value wrapped in its variant.
        description: Optional grounding description for the model.
        field_name: Target field for mutations; reference-only when absent.
        value_type: ``"text"``, ``"json"`` or ``"rich-text"``.
    """

    id: str
    label: str
    value: FieldValue = field(default_factory=lambda: TextValue(""))
    description: str | None = None
    field_name: str | None = None
    value_type: str = "text"

    @classmethod
    def create(
        cls,
        id: str,
        label: str,
        value: Any = None,
        *,
        description: str | None = None,
        field_name: str | None = None,
        value_type: str | None = None,
    ) -> "ContextItem":
        """Build a context item from raw host data."""

        wrapped = coerce_field_value(value, value_type)
        # A declared type sticks even when the raw value does not parse yet.
        declared = (value_type or "").strip().lower()
        return cls(
            id=str(id),
            label=str(label or id),
            value=wrapped,
            description=description or None,
            field_name=field_name or None,
            value_type=declared or wrapped.kind,
        )

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ContextItem":
        """Build a context item from a host payload mapping.

        Accepts both ``field_name``/``value_type`` and the camel-cased
        ``fieldName``/``valueType`` keys.
        """

        if "id" not in payload:
            raise ValueError("Context items require an 'id'")
        return cls.create(
            payload["id"],
            payload.get("label") or payload["id"],
            payload.get("value"),
            description=payload.get("description"),
            field_name=payload.get("field_name") or payload.get("fieldName"),
            value_type=payload.get("value_type") or payload.get("valueType"),
        )

    @property
    def current_text(self) -> str:
        """Serialized form of the field value, used for prompts and patches."""

        return self.value.serialize()

    @property
    def field_key(self) -> tuple[str, str | None]:
        """Identity of the edited field; a change resets the apply lifecycle."""

        return (self.id, self.field_name)

    @property
    def is_editable(self) -> bool:
        return bool(self.field_name)


__all__ = ["ContextItem"]
