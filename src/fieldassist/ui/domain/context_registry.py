"""Context registry domain service.

Holds the host-supplied context items and the current selection. The
selection always resolves to a member of the list when the list is not
empty: if the selected item disappears the registry falls back to the
first item.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from ..events import ContextSelectionChanged, EventBus
from ..models.context_models import ContextItem

LOGGER = logging.getLogger(__name__)


class ContextRegistry:
    """Domain manager for the list of editable contexts.

    Events Emitted:
        - ContextSelectionChanged: When the resolved selection changes.
    """

    def __init__(self, event_bus: EventBus | None = None) -> None:
        self._bus = event_bus
        self._items: tuple[ContextItem, ...] = ()
        self._selected_id: str | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def items(self) -> tuple[ContextItem, ...]:
        return self._items

    @property
    def selected_id(self) -> str | None:
        return self._selected_id

    @property
    def selected(self) -> ContextItem | None:
        """The selected context item, or ``None`` when the registry is empty."""
        return self.get(self._selected_id) if self._selected_id is not None else None

    def get(self, context_id: str | None) -> ContextItem | None:
        for item in self._items:
            if item.id == context_id:
                return item
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_contexts(self, items: Iterable[ContextItem | Mapping[str, Any]]) -> ContextItem | None:
        """Replace the context list and re-resolve the selection.

        Mappings are converted with :meth:`ContextItem.from_mapping`. When two
        items share an id, the first one wins.

        Returns:
            The resolved selection.

        Emits:
            ContextSelectionChanged: When the resolved selection id changed.
        """
        normalized: list[ContextItem] = []
        seen: set[str] = set()
        for raw in items:
            item = raw if isinstance(raw, ContextItem) else ContextItem.from_mapping(raw)
            if item.id in seen:
                LOGGER.warning("ContextRegistry: ignoring duplicate context id %s", item.id)
                continue
            seen.add(item.id)
            normalized.append(item)
        self._items = tuple(normalized)
        LOGGER.debug("ContextRegistry.set_contexts: %d item(s)", len(self._items))
        return self._resolve(self._selected_id)

    def select(self, context_id: str | None) -> ContextItem | None:
        """Select ``context_id``; unknown ids fall back to the first item.

        Emits:
            ContextSelectionChanged: When the resolved selection id changed.
        """
        if context_id is not None and self.get(context_id) is None:
            LOGGER.debug("ContextRegistry.select: unknown context %s", context_id)
        return self._resolve(context_id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _resolve(self, requested_id: str | None) -> ContextItem | None:
        previous = self._selected_id
        if requested_id is not None and self.get(requested_id) is not None:
            resolved = requested_id
        elif self._items:
            resolved = self._items[0].id
        else:
            resolved = None

        self._selected_id = resolved
        if resolved != previous:
            LOGGER.debug("ContextRegistry: selection %s -> %s", previous, resolved)
            if self._bus is not None:
                self._bus.publish(ContextSelectionChanged(context_id=resolved, previous_id=previous))
        return self.selected


__all__ = ["ContextRegistry"]
