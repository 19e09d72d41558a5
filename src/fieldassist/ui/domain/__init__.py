"""Domain layer for the assistant widget.

Domain managers encapsulate widget state independently of any UI toolkit
and communicate through the event bus.

Domain Managers:
    - ContextRegistry: Context list and selection auto-heal
    - ApplyLifecycle: Auto-apply, undo and accept of proposals
    - AssistantTurnManager: Single in-flight backend request
"""

from __future__ import annotations

from .apply_lifecycle import ApplyLifecycle
from .context_registry import ContextRegistry
from .turn_manager import AssistantTurnManager

__all__ = [
    "ApplyLifecycle",
    "AssistantTurnManager",
    "ContextRegistry",
]
