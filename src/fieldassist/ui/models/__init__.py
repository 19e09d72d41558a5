"""Data models shared by the UI domain managers."""

from .context_models import ContextItem
from .proposal_models import ApplyPhase, ApplyState, EditProposal

__all__ = ["ApplyPhase", "ApplyState", "ContextItem", "EditProposal"]
