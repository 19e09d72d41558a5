"""Edit proposal and apply-state models.

Proposals are derived, never persisted: they are recomputed whenever the
selected context, its live value, or the newest assistant reply changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ApplyPhase(Enum):
    """Phase of the apply lifecycle.

    Values:
        IDLE: No applied proposal is waiting for undo or accept.
        AUTO_APPLIED: A proposal was dispatched and can still be undone.
    """

    IDLE = "idle"
    AUTO_APPLIED = "auto_applied"


@dataclass(frozen=True, slots=True)
class EditProposal:
    """Candidate edit derived from an assistant reply.

    Attributes:
        source_message_id: The assistant message the edit came from.
        field_name: Field the edit targets.
        proposed_text: Full field value after the edit.
        patch_text: Serializable patch from the current value to ``proposed_text``.
        value_type: Value type of the targeted field.
        strategy: How the edit was derived (exact, fuzzy or full_text).
    """

    source_message_id: str
    field_name: str
    proposed_text: str
    patch_text: str
    value_type: str = "text"
    strategy: str = "full_text"


@dataclass(slots=True)
class ApplyState:
    """Apply/undo state for the selected field.

    Attributes:
        phase: Current lifecycle phase.
        applied_message_id: Message whose proposal is live, while auto-applied.
        original_value: Field value captured before the forward dispatch.
        field_name: Field the live proposal was dispatched to.
        value_type: Value type of that field.
    """

    phase: ApplyPhase = ApplyPhase.IDLE
    applied_message_id: str | None = None
    original_value: str | None = None
    field_name: str | None = None
    value_type: str = "text"
    handled_message_ids: set[str] = field(default_factory=set)

    @property
    def can_undo(self) -> bool:
        return self.phase is ApplyPhase.AUTO_APPLIED and self.original_value is not None

    def clear(self) -> None:
        """Return to idle, keeping the record of handled messages."""

        self.phase = ApplyPhase.IDLE
        self.applied_message_id = None
        self.original_value = None
        self.field_name = None
        self.value_type = "text"


__all__ = ["ApplyPhase", "ApplyState", "EditProposal"]
