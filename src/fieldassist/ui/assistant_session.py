"""Assistant session controller.

Wires the context registry, chat history, proposal derivation, apply
lifecycle and turn manager for one assistant widget. The host feeds context
items in, listens for field commands on the event bus, and feeds the updated
items back after applying them.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from ..ai.client import ChatReply
from ..ai.conversation import APPLY_EDIT_TOOL, decode_tool_call, to_backend_messages, tool_acknowledgment
from ..ai.errors import AssistantError, ConfigurationError, TransportError
from ..ai.prompts import build_instruction
from ..ai.proposals import ProposalBuilder, ProposalOutcome
from ..chat.message_model import ChatMessage, TextPart, ToolPart, last_assistant_message
from ..editor.diff_builder import DiffBuilder
from ..editor.patch_engine import PatchEngine
from ..services.settings import Settings, SettingsCell
from .domain.apply_lifecycle import ApplyLifecycle
from .domain.context_registry import ContextRegistry
from .domain.turn_manager import AssistantTurnManager, ClientFactory
from .events import ApplyToolEdit, AssistantTurnCompleted, EventBus, NoticePosted
from .models.context_models import ContextItem
from .models.proposal_models import ApplyState, EditProposal

LOGGER = logging.getLogger(__name__)


class AssistantSession:
    """Controller for a single assistant widget instance.

    Recomputes the proposal after every context, selection or history
    change and hands new proposals to the apply lifecycle.

    Events Emitted:
        - ApplyFieldPatch / ApplyToolEdit: Field commands for the host
        - ApplyStateChanged, ContextSelectionChanged: State notifications
        - AssistantTurnStarted / Completed / Failed / Canceled: Request progress
        - NoticePosted: Inline errors for configuration and transport failures
    """

    def __init__(
        self,
        settings: SettingsCell | None = None,
        *,
        event_bus: EventBus | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._bus = event_bus or EventBus()
        self._settings = settings or SettingsCell(event_bus=self._bus)
        self._diff_builder = DiffBuilder()
        self._registry = ContextRegistry(self._bus)
        self._lifecycle = ApplyLifecycle(self._bus, diff_builder=self._diff_builder)
        self._turns = AssistantTurnManager(self._settings.get, self._bus, client_factory=client_factory)
        self._history: list[ChatMessage] = []
        self._outcome = ProposalOutcome()
        self._last_error: AssistantError | None = None
        self._field_key: tuple[str, str | None] | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def settings(self) -> Settings:
        return self._settings.get()

    @property
    def contexts(self) -> tuple[ContextItem, ...]:
        return self._registry.items

    @property
    def selected(self) -> ContextItem | None:
        return self._registry.selected

    @property
    def history(self) -> tuple[ChatMessage, ...]:
        return tuple(self._history)

    @property
    def proposal(self) -> EditProposal | None:
        return self._outcome.proposal

    @property
    def proposal_error(self) -> str | None:
        return self._outcome.error_message

    @property
    def last_error(self) -> str | None:
        return self._last_error.message if self._last_error is not None else None

    @property
    def can_send(self) -> bool:
        return self._settings.get().has_api_key

    @property
    def apply_state(self) -> ApplyState:
        return self._lifecycle.state

    @property
    def is_busy(self) -> bool:
        return self._turns.is_running()

    # ------------------------------------------------------------------
    # Context feed
    # ------------------------------------------------------------------

    def set_contexts(self, items: Iterable[ContextItem | Mapping[str, Any]]) -> ContextItem | None:
        """Replace the host context list (also used to deliver updated values)."""
        self._registry.set_contexts(items)
        self._sync_field_identity()
        self.recompute()
        return self.selected

    def select(self, context_id: str | None) -> ContextItem | None:
        self._registry.select(context_id)
        self._sync_field_identity()
        self.recompute()
        return self.selected

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def send(self, text: str) -> ChatMessage | None:
        """Send a user message and record the assistant reply.

        Returns:
            The recorded assistant message, or ``None`` when nothing was
            recorded (blank input, missing credential, failure, superseded).
        """
        prompt = (text or "").strip()
        if not prompt:
            return None

        settings = self._settings.get()
        if not settings.has_api_key:
            self._report(ConfigurationError(), level="warning")
            return None

        self._history.append(ChatMessage.from_text("user", prompt))
        context = self.selected
        instruction = build_instruction(context, char_budget=settings.context_char_budget)
        messages = to_backend_messages(self._history, instruction)
        tools = [APPLY_EDIT_TOOL] if context is not None and context.is_editable else None

        try:
            reply = await self._turns.request(messages, tools=tools, prompt=prompt)
        except (ConfigurationError, TransportError) as exc:
            self._report(exc, level="error")
            return None
        if reply is None:
            return None

        self._last_error = None
        message, used_tool = self._record_reply(reply, context)
        self._bus.publish(
            AssistantTurnCompleted(turn_id=self._turns.last_turn_id or "", message_id=message.id, used_tool=used_tool)
        )
        self.recompute()
        return message

    def cancel(self) -> None:
        self._turns.cancel()

    async def aclose(self) -> None:
        await self._turns.aclose()

    # ------------------------------------------------------------------
    # Apply lifecycle
    # ------------------------------------------------------------------

    def recompute(self) -> ProposalOutcome:
        """Re-derive the proposal and auto-apply it when enabled."""
        settings = self._settings.get()
        context = self.selected
        builder = ProposalBuilder(
            engine=PatchEngine(
                match_threshold=min(1.0, max(0.0, settings.match_threshold)),
                match_distance=max(0, settings.match_distance),
                diff_builder=self._diff_builder,
            )
        )
        self._outcome = builder.build(context, self._history, exclude=self._lifecycle.state.handled_message_ids)
        proposal = self._outcome.proposal
        if proposal is not None and context is not None:
            self._lifecycle.offer(proposal, context.current_text, auto_apply=settings.auto_apply)
        return self._outcome

    def apply_pending(self) -> bool:
        """Apply the current proposal manually (used when auto-apply is off)."""
        proposal, context = self.proposal, self.selected
        if proposal is None or context is None:
            return False
        return self._lifecycle.apply(proposal, context.current_text)

    def undo(self) -> bool:
        context = self.selected
        if context is None:
            return False
        return self._lifecycle.undo(context.current_text)

    def accept(self) -> bool:
        return self._lifecycle.accept()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _sync_field_identity(self) -> None:
        context = self.selected
        key = context.field_key if context is not None else None
        if key == self._field_key:
            return
        previous, self._field_key = self._field_key, key
        latest = last_assistant_message(self._history)
        LOGGER.debug("AssistantSession: field changed %s -> %s", previous, key)
        self._lifecycle.reset(retire_message_id=latest.id if latest is not None else None)

    def _record_reply(self, reply: ChatReply, context: ContextItem | None) -> tuple[ChatMessage, bool]:
        for call in reply.tool_calls:
            edit = decode_tool_call(call.name, call.arguments)
            if edit is None or context is None or not context.is_editable:
                continue
            LOGGER.info("Backend requested a direct edit of field %s", context.field_name)
            self._bus.publish(ApplyToolEdit(field_name=context.field_name or "", search=edit.search, replace=edit.replace))
            message = ChatMessage(
                role="assistant",
                parts=(
                    TextPart(tool_acknowledgment(context.label)),
                    ToolPart(name=call.name, arguments=call.arguments, call_id=call.call_id),
                ),
            )
            self._lifecycle.mark_handled(message.id)
            self._history.append(message)
            return message, True

        message = ChatMessage.from_text("assistant", reply.text)
        sent_key = context.field_key if context is not None else None
        if sent_key != self._field_key:
            LOGGER.info("Reply %s was written for %s; not applying it to %s", message.id, sent_key, self._field_key)
            self._lifecycle.mark_handled(message.id)
        self._history.append(message)
        return message, False

    def _report(self, error: AssistantError, *, level: str) -> None:
        self._last_error = error
        LOGGER.log(logging.WARNING if level == "warning" else logging.ERROR, "Assistant error: %s", error.message)
        self._bus.publish(NoticePosted(message=error.message, level=level))


__all__ = ["AssistantSession"]
