"""Derive the current edit proposal from the selected context and history."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Container, Sequence

from ..chat.message_model import ChatMessage
from ..editor.patch_engine import PatchEngine
from ..ui.models.context_models import ContextItem
from ..ui.models.proposal_models import EditProposal
from .errors import AssistantError, ExtractionError, MatchingError, NoChangeError
from .extraction import ExtractedCandidate, latest_json_candidate, latest_text_candidate

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ProposalOutcome:
    """Result of a proposal derivation.

    Attributes:
        proposal: The usable proposal, if any.
        error: Inline diagnostic when a candidate was rejected.
    """

    proposal: EditProposal | None = None
    error: AssistantError | None = None

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error is not None else None


@dataclass(slots=True)
class ProposalBuilder:
    """Run extraction and the patch engine for one context/history pair.

    Pure and synchronous, so it can be re-run on every state change.
    """

    engine: PatchEngine = field(default_factory=PatchEngine)

    def build(
        self,
        context: ContextItem | None,
        history: Sequence[ChatMessage],
        *,
        exclude: Container[str] = (),
    ) -> ProposalOutcome:
        """Derive the proposal for ``context`` from ``history``.

        Messages in ``exclude`` (already dispatched or retired) are never used
        as a source.
        """
        if context is None or not context.is_editable:
            return ProposalOutcome()

        try:
            candidate = self._select_candidate(context, history, exclude)
        except ExtractionError as exc:
            return ProposalOutcome(error=exc)
        if candidate is None:
            return ProposalOutcome()

        try:
            outcome = self.engine.build(context.current_text, candidate.text, context.value_type)
        except NoChangeError:
            LOGGER.debug("Candidate from %s leaves %s unchanged", candidate.message_id, context.field_name)
            return ProposalOutcome()
        except (MatchingError, ExtractionError) as exc:
            LOGGER.info(
                "Discarded candidate from %s for %s: %s",
                candidate.message_id,
                context.field_name,
                exc.message,
            )
            return ProposalOutcome(error=exc)

        proposal = EditProposal(
            source_message_id=candidate.message_id,
            field_name=context.field_name or "",
            proposed_text=outcome.proposed_text,
            patch_text=outcome.patch_text,
            value_type=context.value_type,
            strategy=outcome.strategy,
        )
        return ProposalOutcome(proposal=proposal)

    @staticmethod
    def _select_candidate(
        context: ContextItem, history: Sequence[ChatMessage], exclude: Container[str]
    ) -> ExtractedCandidate | None:
        if context.value_type == "json":
            return latest_json_candidate(history, exclude=exclude)
        return latest_text_candidate(history, exclude=exclude)


__all__ = ["ProposalBuilder", "ProposalOutcome"]
