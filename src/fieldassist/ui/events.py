"""Typed event channel between the assistant widget and its host editor.

Field mutations leave the widget only as :class:`FieldCommand` variants
(:class:`ApplyFieldPatch` and :class:`ApplyToolEdit`); everything else on the
bus is a notification the host may observe.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

# Type variable for event types
E = TypeVar("E", bound="Event")

# Handler type: a callable that takes an event and returns None
Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events in the system.

    Example::

        @dataclass(slots=True)
        class ContextSelectionChanged(Event):
            context_id: str | None
    """

    pass


# =============================================================================
# Field Commands (outbound to the host editor)
# =============================================================================


@dataclass(slots=True)
class FieldCommand(Event):
    """Base class for requests asking the host to mutate a stored field.

    Attributes:
        field_name: The host field the command targets.
    """

    field_name: str


@dataclass(slots=True)
class ApplyFieldPatch(FieldCommand):
    """Ask the host to apply ``patch_text`` (or adopt ``proposed_text``).

    Sent exactly once per forward apply or undo transition. The host is
    expected to re-render with the new value on a later cycle.

    Attributes:
        patch_text: Serializable patch from the current value.
        proposed_text: Full field value after the patch.
        value_type: ``"text"``, ``"json"`` or ``"rich-text"``.
    """

    patch_text: str
    proposed_text: str
    value_type: str = "text"


@dataclass(slots=True)
class ApplyToolEdit(FieldCommand):
    """Ask the host to replace ``search`` with ``replace`` in the field.

    Emitted when the backend invokes the structured edit tool directly.
    """

    search: str
    replace: str


FIELD_COMMAND_TYPES: tuple[type[FieldCommand], ...] = (ApplyFieldPatch, ApplyToolEdit)


# =============================================================================
# Assistant Notifications
# =============================================================================


@dataclass(slots=True)
class ApplyStateChanged(Event):
    """Emitted after every apply lifecycle transition.

    Attributes:
        phase: ``"idle"`` or ``"auto_applied"``.
        message_id: Message whose proposal is live, if any.
        field_name: Field the live proposal targets, if any.
        reason: What triggered the transition.
    """

    phase: str
    message_id: str | None = None
    field_name: str | None = None
    reason: str = ""


@dataclass(slots=True)
class ContextSelectionChanged(Event):
    """Emitted when the selected context resolves to a different item.

    Attributes:
        context_id: The newly selected context, or ``None`` when empty.
        previous_id: The previously selected context.
    """

    context_id: str | None
    previous_id: str | None = None


@dataclass(slots=True)
class AssistantTurnStarted(Event):
    """Emitted when a backend request is issued."""

    turn_id: str
    prompt: str


@dataclass(slots=True)
class AssistantTurnCompleted(Event):
    """Emitted when a backend reply has been recorded.

    Attributes:
        turn_id: The request identifier.
        message_id: The recorded assistant message.
        used_tool: Whether the reply was a structured edit tool call.
    """

    turn_id: str
    message_id: str
    used_tool: bool = False


@dataclass(slots=True)
class AssistantTurnFailed(Event):
    """Emitted when a backend request fails."""

    turn_id: str
    error: str


@dataclass(slots=True)
class AssistantTurnCanceled(Event):
    """Emitted when a backend request is superseded or canceled."""

    turn_id: str


@dataclass(slots=True)
class NoticePosted(Event):
    """Emitted when an inline notice should be shown to the user.

    Attributes:
        message: The notice text.
        level: ``"info"``, ``"warning"`` or ``"error"``.
    """

    message: str
    level: str = "info"


@dataclass(slots=True)
class SettingsChanged(Event):
    """Emitted when assistant settings are modified.

    Attributes:
        settings: Redacted mapping of the current settings.
        changed: Names of the fields that changed.
    """

    settings: dict[str, Any]
    changed: tuple[str, ...] = ()


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus for decoupled communication.

    Handlers subscribed to a base class (for example :class:`FieldCommand`)
    also receive its subclasses. Bound-method handlers are held weakly.

    Example::

        bus = EventBus()
        bus.subscribe(ApplyFieldPatch, host.apply_patch)
        bus.publish(ApplyFieldPatch(field_name="body", patch_text="...", proposed_text="..."))

    Thread Safety:
        Not thread-safe. All operations run on the widget's event loop thread.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register a handler to receive events of ``event_type``.

        Subscribing the same handler twice results in two invocations.
        """
        handler_ref = _HandlerRef.create(handler)
        self._handlers[event_type].append(handler_ref)
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler`` for ``event_type``.

        Safe to call for handlers that were never subscribed.
        """
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return

        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Broadcast ``event`` to handlers of its type and its base types.

        Handlers run synchronously in registration order. A handler that
        raises is logged and the remaining handlers still run.
        """
        event_type = type(event)
        delivered = 0

        for klass in event_type.__mro__:
            if klass is object:
                break
            handlers = self._handlers.get(klass)
            if not handlers:
                continue

            dead_indices: list[int] = []
            for i, handler_ref in enumerate(list(handlers)):
                handler = handler_ref.resolve()
                if handler is None:
                    dead_indices.append(i)
                    continue
                delivered += 1
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "Handler %s raised exception for event %s",
                        _handler_name(handler),
                        event_type.__name__,
                    )

            for i in reversed(dead_indices):
                if i < len(handlers):
                    handlers.pop(i)

        if delivered:
            logger.debug("Published %s to %d handler(s)", event_type.__name__, delivered)
        else:
            logger.debug("No handlers for event type %s", event_type.__name__)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Return the number of handlers for ``event_type`` (or in total)."""
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Wrapper for handler references supporting both weak and strong refs.

    Bound methods are held through :class:`WeakMethod` so subscribers can be
    garbage collected; plain functions and lambdas are held strongly.
    """

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                # Some callables can't be weakly referenced
                pass

        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        """Return the handler, or ``None`` if it was garbage collected."""
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    """Get a human-readable name for a handler for logging purposes."""
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    # Core infrastructure
    "Event",
    "EventBus",
    "Handler",
    # Field commands
    "FieldCommand",
    "ApplyFieldPatch",
    "ApplyToolEdit",
    "FIELD_COMMAND_TYPES",
    # Notifications
    "ApplyStateChanged",
    "ContextSelectionChanged",
    "AssistantTurnStarted",
    "AssistantTurnCompleted",
    "AssistantTurnFailed",
    "AssistantTurnCanceled",
    "NoticePosted",
    "SettingsChanged",
]
