"""End-to-end tests for the assistant session controller."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from fieldassist.ai.client import ChatReply, ToolCallResult
from fieldassist.ai.conversation import APPLY_EDIT_TOOL
from fieldassist.editor.patches import apply_patch
from fieldassist.services.settings import Settings, SettingsCell
from fieldassist.ui.assistant_session import AssistantSession
from fieldassist.ui.events import (
    ApplyFieldPatch,
    ApplyToolEdit,
    AssistantTurnCompleted,
    FieldCommand,
    NoticePosted,
)
from fieldassist.ui.models.context_models import ContextItem
from fieldassist.ui.models.proposal_models import ApplyPhase

SEARCH_REPLACE_REPLY = "<<<<<<< SEARCH\nworld\n=======\nthere\n>>>>>>> REPLACE"


def _title(value: str = "Hello world") -> ContextItem:
    return ContextItem.create("title", "Title", value, description="Page headline", field_name="title")


def _body(value: str = "Body copy") -> ContextItem:
    return ContextItem.create("body", "Body", value, field_name="body")


def _session(event_bus, factory, **settings) -> AssistantSession:
    values = {"api_key": "sk-test"}
    values.update(settings)
    cell = SettingsCell(Settings(**values), event_bus=event_bus)
    return AssistantSession(cell, event_bus=event_bus, client_factory=factory)


class _Host:
    """Minimal host that applies field commands to its own values."""

    def __init__(self, session: AssistantSession, *items: ContextItem) -> None:
        self.session = session
        self.values = {item.id: item for item in items}
        session.event_bus.subscribe(FieldCommand, self._on_command)

    def _on_command(self, command: FieldCommand) -> None:
        item = next(item for item in self.values.values() if item.field_name == command.field_name)
        current = item.current_text
        if isinstance(command, ApplyFieldPatch):
            updated = apply_patch(current, command.patch_text).text
        else:
            updated = current.replace(command.search, command.replace, 1)
        self.values[item.id] = ContextItem.create(
            item.id, item.label, updated, field_name=item.field_name, value_type=item.value_type
        )

    def refeed(self) -> None:
        self.session.set_contexts(list(self.values.values()))


@pytest.mark.asyncio
async def test_search_replace_reply_auto_applies_once(event_bus, recorder, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text=SEARCH_REPLACE_REPLY))
    session = _session(event_bus, factory)
    host = _Host(session, _title())
    host.refeed()

    message = await session.send("Say there instead of world")

    assert message is not None
    assert host.values["title"].current_text == "Hello there"
    assert session.apply_state.phase is ApplyPhase.AUTO_APPLIED

    host.refeed()
    host.refeed()

    assert len(recorder.of_type(ApplyFieldPatch)) == 1
    completed = recorder.of_type(AssistantTurnCompleted)
    assert completed[0].message_id == message.id
    assert completed[0].used_tool is False


@pytest.mark.asyncio
async def test_request_carries_instruction_and_tool(event_bus, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text="No change needed."))
    session = _session(event_bus, factory)
    session.set_contexts([_title()])

    await session.send("What do you think?")

    call = factory.calls[0]
    assert call["tools"] == [APPLY_EDIT_TOOL]
    system, user = call["messages"]
    assert system["role"] == "system"
    assert "source: `Title`" in system["content"]
    assert "description: Page headline" in system["content"]
    assert user == {"role": "user", "content": "What do you think?"}


@pytest.mark.asyncio
async def test_undo_restores_original_value(event_bus, recorder, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text=SEARCH_REPLACE_REPLY))
    session = _session(event_bus, factory)
    host = _Host(session, _title())
    host.refeed()

    await session.send("Say there")
    host.refeed()
    assert session.undo() is True
    host.refeed()

    assert host.values["title"].current_text == "Hello world"
    assert session.apply_state.phase is ApplyPhase.IDLE
    assert len(recorder.of_type(ApplyFieldPatch)) == 2


@pytest.mark.asyncio
async def test_accept_keeps_value(event_bus, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text=SEARCH_REPLACE_REPLY))
    session = _session(event_bus, factory)
    host = _Host(session, _title())
    host.refeed()

    await session.send("Say there")
    host.refeed()

    assert session.accept() is True
    assert session.undo() is False
    assert host.values["title"].current_text == "Hello there"


@pytest.mark.asyncio
async def test_missing_api_key_blocks_sending(event_bus, recorder, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text="unused"))
    session = AssistantSession(SettingsCell(), event_bus=event_bus, client_factory=factory)
    session.set_contexts([_title()])

    assert session.can_send is False
    assert await session.send("Hello?") is None

    assert session.last_error == "No API key configured. Sending is disabled."
    notices = recorder.of_type(NoticePosted)
    assert [(notice.message, notice.level) for notice in notices] == [
        ("No API key configured. Sending is disabled.", "warning")
    ]
    assert session.history == ()
    assert factory.clients == []


@pytest.mark.asyncio
async def test_transport_failure_is_reported_without_mutation(event_bus, recorder, scripted_factory) -> None:
    factory = scripted_factory(httpx.ConnectError("offline"))
    session = _session(event_bus, factory)
    session.set_contexts([_title()])

    assert await session.send("Rewrite it") is None

    assert session.last_error == "Request failed: offline"
    assert recorder.of_type(NoticePosted)[-1].level == "error"
    assert recorder.of_type(FieldCommand) == []
    assert [message.role for message in session.history] == ["user"]


@pytest.mark.asyncio
async def test_tool_call_dispatches_direct_edit(event_bus, recorder, scripted_factory) -> None:
    call = ToolCallResult(
        name="apply_edit",
        arguments=json.dumps({"search": "world", "replace": "there"}),
        call_id="call-1",
        index=0,
    )
    factory = scripted_factory(ChatReply(text="", tool_calls=[call]))
    session = _session(event_bus, factory)
    host = _Host(session, _title())
    host.refeed()

    message = await session.send("Say there")
    host.refeed()

    assert message is not None
    assert message.text == "✅ Applied edit to Title."
    assert message.tool_parts[0].call_id == "call-1"
    edits = recorder.of_type(ApplyToolEdit)
    assert [(edit.field_name, edit.search, edit.replace) for edit in edits] == [("title", "world", "there")]
    assert recorder.of_type(ApplyFieldPatch) == []
    assert recorder.of_type(AssistantTurnCompleted)[0].used_tool is True
    assert host.values["title"].current_text == "Hello there"
    assert session.proposal is None


@pytest.mark.asyncio
async def test_invalid_tool_call_falls_back_to_text(event_bus, recorder, scripted_factory) -> None:
    call = ToolCallResult(name="apply_edit", arguments='{"search": "world"}')
    factory = scripted_factory(ChatReply(text="I could not finish the edit.", tool_calls=[call]))
    session = _session(event_bus, factory)
    session.set_contexts([_title()])

    message = await session.send("Say there")

    assert message is not None
    assert message.text == "I could not finish the edit."
    assert recorder.of_type(ApplyToolEdit) == []


@pytest.mark.asyncio
async def test_field_switch_retires_previous_reply(event_bus, recorder, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text="A completely new headline"))
    session = _session(event_bus, factory, auto_apply=False)
    session.set_contexts([_title(), _body()])

    await session.send("Rewrite the title")
    assert session.proposal is not None
    assert session.proposal.field_name == "title"

    session.select("body")

    assert session.proposal is None
    assert session.apply_pending() is False
    assert recorder.of_type(FieldCommand) == []


@pytest.mark.asyncio
async def test_reply_arriving_after_field_switch_is_not_applied(event_bus, recorder, scripted_factory) -> None:
    gate = asyncio.Event()
    factory = scripted_factory((gate, ChatReply(text="A brand new headline")))
    session = _session(event_bus, factory)
    session.set_contexts([_title(), _body()])

    pending = asyncio.ensure_future(session.send("Rewrite the title"))
    while not factory.clients:
        await asyncio.sleep(0)
    await factory.clients[0].started.wait()
    session.select("body")
    gate.set()
    message = await pending

    assert message is not None
    assert session.proposal is None
    assert recorder.of_type(FieldCommand) == []

    session.select("title")

    assert session.proposal is None
    assert recorder.of_type(FieldCommand) == []


@pytest.mark.asyncio
async def test_reply_sent_without_selection_is_retired_when_field_arrives(
    event_bus, recorder, scripted_factory
) -> None:
    factory = scripted_factory(ChatReply(text="Sure, happy to help with anything."))
    session = _session(event_bus, factory)

    await session.send("hi")
    session.set_contexts([_title()])

    assert session.proposal is None
    assert recorder.of_type(FieldCommand) == []
    assert session.history[-1].text == "Sure, happy to help with anything."


@pytest.mark.asyncio
async def test_manual_apply_when_auto_apply_is_off(event_bus, recorder, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text=SEARCH_REPLACE_REPLY))
    session = _session(event_bus, factory, auto_apply=False)
    session.set_contexts([_title()])

    await session.send("Say there")

    assert recorder.of_type(ApplyFieldPatch) == []
    assert session.proposal is not None
    assert session.apply_pending() is True
    assert session.apply_pending() is False
    assert len(recorder.of_type(ApplyFieldPatch)) == 1


@pytest.mark.asyncio
async def test_json_field_receives_valid_document(event_bus, recorder, scripted_factory) -> None:
    seo = ContextItem.create("seo", "SEO", {"title": "Old"}, field_name="seo")
    factory = scripted_factory(ChatReply(text='Here you go:\n```json\n{"title": "New"}\n```'))
    session = _session(event_bus, factory)
    session.set_contexts([seo])

    await session.send("Update the SEO title")

    patches = recorder.of_type(ApplyFieldPatch)
    assert len(patches) == 1
    assert patches[0].value_type == "json"
    assert json.loads(patches[0].proposed_text) == {"title": "New"}


@pytest.mark.asyncio
async def test_unmatched_search_surfaces_inline_error(event_bus, recorder, scripted_factory) -> None:
    reply = "<<<<<<< SEARCH\nthis text is nowhere in the field at all\n=======\nx\n>>>>>>> REPLACE"
    factory = scripted_factory(ChatReply(text=reply))
    session = _session(event_bus, factory, match_threshold=0.0)
    session.set_contexts([_title()])

    await session.send("Edit")

    assert session.proposal is None
    assert session.proposal_error == "The search block was not found in the field"
    assert recorder.of_type(FieldCommand) == []


@pytest.mark.asyncio
async def test_blank_input_is_ignored(event_bus, scripted_factory) -> None:
    factory = scripted_factory()
    session = _session(event_bus, factory)

    assert await session.send("   ") is None
    assert session.history == ()
