"""Widget-side state: context selection, apply lifecycle, and the event channel."""

from .events import EventBus, FieldCommand

__all__ = [
    "EventBus",
    "FieldCommand",
]
