"""Pull raw edit candidates out of assistant replies."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Container, Sequence

from ..chat.message_model import ChatMessage, last_assistant_message
from ..editor.patch_engine import has_search_replace_markers
from ..editor.values import normalize_json_candidate, parse_json_candidate
from .errors import ExtractionError

LOGGER = logging.getLogger(__name__)

ACK_GLYPH = "✅"
ACK_PHRASE = "applied edit"

# First fenced block; the language tag (``json``, ``html``...) is optional.
_FENCE_RE = re.compile(r"```(?:[ \t]*[\w.+-]*[ \t]*\r?\n)?(?P<body>.*?)```", re.DOTALL)


@dataclass(frozen=True, slots=True)
class ExtractedCandidate:
    """A raw edit candidate and the assistant message it came from."""

    message_id: str
    text: str


def extract_candidate(text: str | None) -> str:
    """Return the inner text of the first fenced block, or the whole text, trimmed."""

    raw = text or ""
    match = _FENCE_RE.search(raw)
    if match is not None:
        raw = match.group("body")
    return raw.strip()


def is_acknowledgment(text: str | None) -> bool:
    """Return ``True`` for replies that only confirm an already-applied edit."""

    stripped = (text or "").strip()
    if not stripped:
        return False
    return stripped.startswith(ACK_GLYPH) or ACK_PHRASE in stripped.lower()


def latest_text_candidate(
    history: Sequence[ChatMessage], *, exclude: Container[str] = ()
) -> ExtractedCandidate | None:
    """Candidate from the newest assistant message only.

    Acknowledgments, empty replies and messages in ``exclude`` yield ``None``.
    """

    message = last_assistant_message(history)
    if message is None or message.id in exclude:
        return None
    candidate = extract_candidate(message.text)
    if not candidate or is_acknowledgment(candidate):
        return None
    return ExtractedCandidate(message_id=message.id, text=candidate)


def latest_json_candidate(
    history: Sequence[ChatMessage], *, exclude: Container[str] = ()
) -> ExtractedCandidate | None:
    """Closest assistant message yielding a parseable JSON candidate.

    Walks assistant messages from newest to oldest. Acknowledgments are
    skipped, as are candidates that do not parse after brace/bracket
    normalization. Search/replace candidates are returned as-is; the patch
    engine validates the document they produce. The walk stops at the first
    message in ``exclude``; anything older is stale.

    Raises:
        ExtractionError: When no message qualifies and the newest assistant
            reply was rejected for not being valid JSON.
    """

    newest_error: ExtractionError | None = None
    seen_newest = False
    for message in reversed(history):
        if message.role != "assistant":
            continue
        if message.id in exclude:
            break
        is_newest = not seen_newest
        seen_newest = True

        candidate = extract_candidate(message.text)
        if not candidate or is_acknowledgment(candidate):
            continue
        if has_search_replace_markers(candidate):
            return ExtractedCandidate(message_id=message.id, text=candidate)
        try:
            parse_json_candidate(candidate)
        except ExtractionError as exc:
            LOGGER.debug("Skipping assistant message %s: %s", message.id, exc.message)
            if is_newest:
                newest_error = exc
            continue
        return ExtractedCandidate(message_id=message.id, text=normalize_json_candidate(candidate))

    if newest_error is not None:
        raise newest_error
    return None


__all__ = [
    "ACK_GLYPH",
    "ACK_PHRASE",
    "ExtractedCandidate",
    "extract_candidate",
    "is_acknowledgment",
    "latest_json_candidate",
    "latest_text_candidate",
]
