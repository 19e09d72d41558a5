"""Tests for the assistant turn manager."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from fieldassist.ai.client import ChatReply
from fieldassist.ai.errors import ConfigurationError, ErrorCode, TransportError
from fieldassist.services.settings import Settings, SettingsCell
from fieldassist.ui.domain.turn_manager import AssistantTurnManager
from fieldassist.ui.events import AssistantTurnCanceled, AssistantTurnFailed, AssistantTurnStarted

MESSAGES = [{"role": "user", "content": "Shorten the title"}]


async def _wait_started(factory) -> None:
    while not factory.clients:
        await asyncio.sleep(0)
    await factory.clients[0].started.wait()


@pytest.fixture
def cell() -> SettingsCell:
    return SettingsCell(Settings(api_key="sk-test", temperature=0.4))


@pytest.mark.asyncio
async def test_request_returns_reply(cell, event_bus, recorder, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text="Short title"))
    manager = AssistantTurnManager(cell.get, event_bus, client_factory=factory)

    reply = await manager.request(MESSAGES, tools=[{"type": "function"}], prompt="Shorten the title")

    assert reply is not None and reply.text == "Short title"
    assert factory.calls[0]["temperature"] == 0.4
    assert factory.calls[0]["tools"] == [{"type": "function"}]
    started = recorder.of_type(AssistantTurnStarted)
    assert len(started) == 1
    assert started[0].prompt == "Shorten the title"
    assert manager.last_turn_id == started[0].turn_id
    assert manager.is_running() is False


@pytest.mark.asyncio
async def test_missing_api_key_sends_nothing(event_bus, recorder, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text="unused"))
    manager = AssistantTurnManager(SettingsCell().get, event_bus, client_factory=factory)

    with pytest.raises(ConfigurationError) as excinfo:
        await manager.request(MESSAGES)

    assert excinfo.value.message == "No API key configured. Sending is disabled."
    assert factory.clients == []
    assert recorder.events == []


@pytest.mark.asyncio
async def test_new_request_supersedes_outstanding_one(cell, event_bus, recorder, scripted_factory) -> None:
    gate = asyncio.Event()
    factory = scripted_factory((gate, ChatReply(text="stale")), ChatReply(text="fresh"))
    manager = AssistantTurnManager(cell.get, event_bus, client_factory=factory)

    first = asyncio.ensure_future(manager.request(MESSAGES))
    await _wait_started(factory)
    second = await manager.request(MESSAGES)
    gate.set()

    assert await first is None
    assert second is not None and second.text == "fresh"
    started = recorder.of_type(AssistantTurnStarted)
    canceled = recorder.of_type(AssistantTurnCanceled)
    assert [event.turn_id for event in canceled] == [started[0].turn_id]
    assert manager.last_turn_id == started[1].turn_id


@pytest.mark.asyncio
async def test_cancel_drops_the_reply(cell, event_bus, recorder, scripted_factory) -> None:
    gate = asyncio.Event()
    factory = scripted_factory((gate, ChatReply(text="late")))
    manager = AssistantTurnManager(cell.get, event_bus, client_factory=factory)

    pending = asyncio.ensure_future(manager.request(MESSAGES))
    await _wait_started(factory)
    manager.cancel()

    assert await pending is None
    assert len(recorder.of_type(AssistantTurnCanceled)) == 1
    assert manager.last_turn_id is None


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(cell, event_bus, recorder, scripted_factory) -> None:
    factory = scripted_factory(httpx.ConnectError("connection refused"))
    manager = AssistantTurnManager(cell.get, event_bus, client_factory=factory)

    with pytest.raises(TransportError) as excinfo:
        await manager.request(MESSAGES)

    assert excinfo.value.message == "Request failed: connection refused"
    assert excinfo.value.code == ErrorCode.REQUEST_FAILED
    failed = recorder.of_type(AssistantTurnFailed)
    assert len(failed) == 1
    assert failed[0].error == "connection refused"


@pytest.mark.asyncio
async def test_empty_reply_is_a_transport_error(cell, event_bus, recorder, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text="   "))
    manager = AssistantTurnManager(cell.get, event_bus, client_factory=factory)

    with pytest.raises(TransportError) as excinfo:
        await manager.request(MESSAGES)

    assert excinfo.value.code == ErrorCode.EMPTY_RESPONSE
    assert len(recorder.of_type(AssistantTurnFailed)) == 1


@pytest.mark.asyncio
async def test_client_is_rebuilt_when_settings_change(cell, event_bus, scripted_factory) -> None:
    factory = scripted_factory(ChatReply(text="one"), ChatReply(text="two"), ChatReply(text="three"))
    manager = AssistantTurnManager(cell.get, event_bus, client_factory=factory)

    await manager.request(MESSAGES)
    await manager.request(MESSAGES)
    cell.set_model("anthropic/claude-3.5-sonnet")
    await manager.request(MESSAGES)

    assert len(factory.clients) == 2
    assert factory.clients[0].closed is True
    assert factory.clients[1].settings.model == "anthropic/claude-3.5-sonnet"

    await manager.aclose()
    assert factory.clients[1].closed is True
