"""Assistant turn manager domain service.

Owns the single in-flight backend request of a widget. Issuing a new request
cancels the outstanding one so a stale reply can never overwrite a newer
proposal. Settings are read when a request is issued, never captured earlier.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Iterable, Mapping, Sequence

import httpx
from openai import APIError, APIStatusError

from ...ai.client import AIClient, ChatReply, ClientSettings
from ...ai.errors import ConfigurationError, ErrorCode, TransportError
from ...services.settings import Settings
from ..events import AssistantTurnCanceled, AssistantTurnFailed, AssistantTurnStarted, EventBus

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[ClientSettings], AIClient]

TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (APIError, httpx.HTTPError)


class AssistantTurnManager:
    """Domain manager for backend requests.

    Events Emitted:
        - AssistantTurnStarted: When a request is issued
        - AssistantTurnFailed: When a request raises a transport error
        - AssistantTurnCanceled: When a request is superseded or canceled
    """

    def __init__(
        self,
        settings_provider: Callable[[], Settings],
        event_bus: EventBus,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize the turn manager.

        Args:
            settings_provider: Returns the latest settings; called per request.
            event_bus: The event bus for publishing events.
            client_factory: Builds a client for a settings snapshot.
        """
        self._get_settings = settings_provider
        self._bus = event_bus
        self._client_factory: ClientFactory = client_factory or AIClient
        self._client: AIClient | None = None
        self._client_signature: tuple[Any, ...] | None = None
        self._task: asyncio.Task[ChatReply] | None = None
        self._active_turn_id: str | None = None
        self._last_turn_id: str | None = None
        self._canceled_turns: set[str] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def active_turn_id(self) -> str | None:
        return self._active_turn_id

    @property
    def last_turn_id(self) -> str | None:
        """Identifier of the most recent request that produced a reply."""
        return self._last_turn_id

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Iterable[Mapping[str, Any]] | None = None,
        prompt: str = "",
    ) -> ChatReply | None:
        """Send ``messages`` and wait for the aggregated reply.

        Args:
            messages: Backend-ready chat messages.
            tools: Tool declarations advertised for this request.
            prompt: The user text, reported on the started event.

        Returns:
            The reply, or ``None`` when this request was superseded.

        Raises:
            ConfigurationError: When no API key is configured; nothing is sent.
            TransportError: When the backend fails or returns nothing.

        Emits:
            AssistantTurnStarted, then AssistantTurnFailed or
            AssistantTurnCanceled where applicable.
        """
        settings = self._get_settings()
        if not settings.has_api_key:
            raise ConfigurationError()

        self.cancel()
        turn_id = f"turn-{uuid.uuid4().hex[:8]}"
        self._active_turn_id = turn_id
        client = await self._client_for(settings.client_settings())
        if self._active_turn_id != turn_id:
            LOGGER.debug("AssistantTurnManager: turn %s superseded before sending", turn_id)
            return None

        task = asyncio.ensure_future(
            client.complete_chat(list(messages), tools=list(tools or ()), temperature=settings.temperature)
        )
        self._task = task
        LOGGER.debug("AssistantTurnManager.request: turn_id=%s, messages=%d", turn_id, len(messages))
        self._bus.publish(AssistantTurnStarted(turn_id=turn_id, prompt=prompt))

        try:
            reply = await task
        except asyncio.CancelledError:
            if turn_id in self._canceled_turns:
                self._canceled_turns.discard(turn_id)
                LOGGER.debug("AssistantTurnManager: turn %s superseded", turn_id)
                return None
            if self._active_turn_id == turn_id:
                self._active_turn_id = None
            self._bus.publish(AssistantTurnCanceled(turn_id=turn_id))
            raise
        except TRANSPORT_ERRORS as exc:
            if self._active_turn_id == turn_id:
                self._active_turn_id = None
            LOGGER.warning("AssistantTurnManager: turn %s failed: %s", turn_id, exc)
            self._bus.publish(AssistantTurnFailed(turn_id=turn_id, error=str(exc)))
            status_code = exc.status_code if isinstance(exc, APIStatusError) else None
            raise TransportError(
                message=f"Request failed: {exc}",
                status_code=status_code,
                details={"turn_id": turn_id},
            ) from exc
        finally:
            if self._task is task:
                self._task = None

        if self._active_turn_id != turn_id:
            LOGGER.debug("AssistantTurnManager: dropping stale reply for %s", turn_id)
            return None
        self._active_turn_id = None
        self._last_turn_id = turn_id

        if reply.is_empty:
            self._bus.publish(AssistantTurnFailed(turn_id=turn_id, error="empty response"))
            raise TransportError(
                code=ErrorCode.EMPTY_RESPONSE,
                message="Request failed: the assistant returned an empty response",
                details={"turn_id": turn_id},
            )
        return reply

    def cancel(self) -> None:
        """Cancel the outstanding request, if any.

        Emits:
            AssistantTurnCanceled: For the canceled turn.
        """
        task = self._task
        turn_id = self._active_turn_id
        self._active_turn_id = None
        if task is None or task.done() or turn_id is None:
            return
        self._canceled_turns.add(turn_id)
        task.cancel()
        LOGGER.debug("AssistantTurnManager.cancel: turn_id=%s", turn_id)
        self._bus.publish(AssistantTurnCanceled(turn_id=turn_id))

    async def aclose(self) -> None:
        """Cancel any request and release the cached client."""
        self.cancel()
        client, self._client, self._client_signature = self._client, None, None
        if client is not None:
            await client.aclose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _client_for(self, client_settings: ClientSettings) -> AIClient:
        signature = client_settings.signature()
        if self._client is not None and signature == self._client_signature:
            return self._client
        previous = self._client
        self._client = self._client_factory(client_settings)
        self._client_signature = signature
        LOGGER.debug("AssistantTurnManager: built client for model %s", client_settings.model)
        if previous is not None:
            await previous.aclose()
        return self._client


__all__ = ["AssistantTurnManager", "TRANSPORT_ERRORS"]
