"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from fieldassist.ai.client import ChatReply, ClientSettings
from fieldassist.ui.events import Event, EventBus


class EventRecorder:
    """Collects every event of the subscribed types in publish order."""

    def __init__(self, bus: EventBus, *event_types: type[Event]) -> None:
        self.events: list[Any] = []
        for event_type in event_types or (Event,):
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type[Event]) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


class ScriptedClient:
    """AIClient stand-in that replays scripted replies.

    Each step is a :class:`ChatReply`, an exception to raise, or a
    ``(gate, step)`` pair that waits for ``gate`` before resolving ``step``.
    """

    def __init__(self, settings: ClientSettings, script: list[Any]) -> None:
        self.settings = settings
        self._script = script
        self.calls: list[dict[str, Any]] = []
        self.started = asyncio.Event()
        self.closed = False

    async def complete_chat(self, messages, *, tools=None, temperature=None, **_: Any) -> ChatReply:
        self.calls.append({"messages": messages, "tools": tools, "temperature": temperature})
        step = self._script.pop(0) if self._script else ChatReply(text="")
        self.started.set()
        if isinstance(step, tuple):
            gate, step = step
            await gate.wait()
        if isinstance(step, BaseException):
            raise step
        return step

    async def aclose(self) -> None:
        self.closed = True


class ScriptedClientFactory:
    """Client factory sharing one script across every client it builds."""

    def __init__(self, *steps: Any) -> None:
        self.script: list[Any] = list(steps)
        self.clients: list[ScriptedClient] = []

    def __call__(self, settings: ClientSettings) -> ScriptedClient:
        client = ScriptedClient(settings, self.script)
        self.clients.append(client)
        return client

    @property
    def calls(self) -> list[dict[str, Any]]:
        return [call for client in self.clients for call in client.calls]


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


@pytest.fixture
def scripted_factory() -> Callable[..., ScriptedClientFactory]:
    """Return a constructor for scripted client factories."""

    return ScriptedClientFactory
