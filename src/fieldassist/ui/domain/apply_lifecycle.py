"""Apply lifecycle domain service.

A two-state machine (``IDLE`` / ``AUTO_APPLIED``) deciding when a proposal
is dispatched to the host, remembering the pre-apply value for undo, and
guaranteeing that one assistant message is dispatched at most once.
"""

from __future__ import annotations

import logging

from ...editor.diff_builder import DiffBuilder
from ..events import ApplyFieldPatch, ApplyStateChanged, EventBus
from ..models.proposal_models import ApplyPhase, ApplyState, EditProposal

LOGGER = logging.getLogger(__name__)


class ApplyLifecycle:
    """Domain manager for auto-apply, undo and accept.

    Every dispatch goes through the event bus as a single
    :class:`ApplyFieldPatch` command. The host owns the field value; this
    manager only reads it through the ``current_value`` arguments.

    Events Emitted:
        - ApplyFieldPatch: On a forward apply and on an undo that changes the value.
        - ApplyStateChanged: After every transition.
    """

    def __init__(self, event_bus: EventBus, *, diff_builder: DiffBuilder | None = None) -> None:
        """Initialize the lifecycle.

        Args:
            event_bus: The bus carrying field commands to the host.
            diff_builder: Builder used for inverse patches and debug previews.
        """
        self._bus = event_bus
        self._diff_builder = diff_builder or DiffBuilder()
        self._state = ApplyState()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ApplyState:
        return self._state

    @property
    def phase(self) -> ApplyPhase:
        return self._state.phase

    @property
    def can_undo(self) -> bool:
        return self._state.can_undo

    def is_handled(self, message_id: str | None) -> bool:
        """Whether ``message_id`` was already dispatched or retired."""
        return message_id is not None and message_id in self._state.handled_message_ids

    def mark_handled(self, message_id: str | None) -> None:
        """Retire ``message_id`` so its proposal never auto-applies."""
        if message_id:
            self._state.handled_message_ids.add(message_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def offer(self, proposal: EditProposal | None, current_value: str, *, auto_apply: bool = True) -> bool:
        """Auto-apply ``proposal`` if it is new.

        Args:
            proposal: The latest derived proposal.
            current_value: The live field value, captured as the undo snapshot.
            auto_apply: When ``False`` nothing is dispatched; the caller
                applies later through :meth:`apply`.

        Returns:
            ``True`` when a forward patch was dispatched.
        """
        if proposal is None or not auto_apply:
            return False
        return self.apply(proposal, current_value)

    def apply(self, proposal: EditProposal, current_value: str) -> bool:
        """Dispatch ``proposal`` and enter ``AUTO_APPLIED``.

        Proposals from an already handled message are ignored, which also
        covers the message currently auto-applied.

        Emits:
            ApplyFieldPatch: The forward patch.
            ApplyStateChanged: With phase ``auto_applied``.
        """
        message_id = proposal.source_message_id
        if self.is_handled(message_id) or self._state.applied_message_id == message_id:
            LOGGER.debug("ApplyLifecycle.apply: message %s already handled", message_id)
            return False

        state = self._state
        state.phase = ApplyPhase.AUTO_APPLIED
        state.applied_message_id = message_id
        state.original_value = current_value
        state.field_name = proposal.field_name
        state.value_type = proposal.value_type
        state.handled_message_ids.add(message_id)

        LOGGER.info(
            "Auto-applying proposal from %s to field %s (%s)",
            message_id,
            proposal.field_name,
            proposal.strategy,
        )
        self._log_preview(current_value, proposal.proposed_text, proposal.field_name)
        self._bus.publish(
            ApplyFieldPatch(
                field_name=proposal.field_name,
                patch_text=proposal.patch_text,
                proposed_text=proposal.proposed_text,
                value_type=proposal.value_type,
            )
        )
        self._emit_state_changed("applied")
        return True

    def undo(self, current_value: str) -> bool:
        """Restore the pre-apply value and return to ``IDLE``.

        The inverse patch runs from ``current_value`` to the stored snapshot.
        When the field already holds the snapshot nothing is dispatched.

        Returns:
            ``True`` when an inverse patch was dispatched.

        Emits:
            ApplyFieldPatch: The inverse patch, when the value differs.
            ApplyStateChanged: With phase ``idle``.
        """
        state = self._state
        if not state.can_undo:
            LOGGER.debug("ApplyLifecycle.undo: nothing to undo")
            return False

        original = state.original_value or ""
        field_name = state.field_name or ""
        value_type = state.value_type
        dispatched = False
        if current_value != original:
            patch_text = self._diff_builder.run(current_value, original)
            LOGGER.info("Undoing proposal from %s on field %s", state.applied_message_id, field_name)
            self._log_preview(current_value, original, field_name)
            self._bus.publish(
                ApplyFieldPatch(
                    field_name=field_name,
                    patch_text=patch_text,
                    proposed_text=original,
                    value_type=value_type,
                )
            )
            dispatched = True
        else:
            LOGGER.debug("ApplyLifecycle.undo: field already holds the original value")

        state.clear()
        self._emit_state_changed("undone")
        return dispatched

    def accept(self) -> bool:
        """Keep the applied change and drop the undo snapshot.

        Emits:
            ApplyStateChanged: With phase ``idle``.
        """
        if self._state.phase is not ApplyPhase.AUTO_APPLIED:
            return False
        LOGGER.debug("ApplyLifecycle.accept: message %s", self._state.applied_message_id)
        self._state.clear()
        self._emit_state_changed("accepted")
        return True

    def reset(self, *, retire_message_id: str | None = None, reason: str = "field_changed") -> None:
        """Return to ``IDLE`` unconditionally, discarding any snapshot.

        Args:
            retire_message_id: Message to mark handled so a reply written
                for the previous field never applies to the new one.
            reason: Reported on the state-changed event.

        Emits:
            ApplyStateChanged: When the phase was ``auto_applied``.
        """
        self.mark_handled(retire_message_id)
        was_applied = self._state.phase is ApplyPhase.AUTO_APPLIED
        self._state.clear()
        if was_applied:
            LOGGER.debug("ApplyLifecycle.reset: %s", reason)
            self._emit_state_changed(reason)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _log_preview(self, before: str, after: str, field_name: str) -> None:
        if LOGGER.isEnabledFor(logging.DEBUG):
            LOGGER.debug("Field diff:\n%s", self._diff_builder.preview(before, after, label=field_name))

    def _emit_state_changed(self, reason: str) -> None:
        state = self._state
        self._bus.publish(
            ApplyStateChanged(
                phase=state.phase.value,
                message_id=state.applied_message_id,
                field_name=state.field_name,
                reason=reason,
            )
        )


__all__ = ["ApplyLifecycle"]
