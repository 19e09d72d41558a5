"""Convert raw edit candidates into verifiable patches against a field value."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Literal

from diff_match_patch import diff_match_patch

from ..ai.errors import ErrorCode, MatchingError, NoChangeError
from .diff_builder import DiffBuilder
from .values import normalize_json_candidate, parse_json_candidate

LOGGER = logging.getLogger(__name__)

SEARCH_MARKER = "<<<<<<< SEARCH"
DIVIDER_MARKER = "======="
REPLACE_MARKER = ">>>>>>>"

_BLOCK_RE = re.compile(
    re.escape(SEARCH_MARKER) + r"(?P<search>.*?)" + re.escape(DIVIDER_MARKER) + r"(?P<replace>.*?)" + re.escape(REPLACE_MARKER),
    re.DOTALL,
)

PatchStrategy = Literal["exact", "fuzzy", "full_text"]


@dataclass(frozen=True, slots=True)
class SearchReplaceBlock:
    """Search/replace pair lifted out of a marker-delimited candidate."""

    search: str
    replace: str


@dataclass(slots=True)
class PatchOutcome:
    """Patch text plus the full value it produces."""

    patch_text: str
    proposed_text: str
    strategy: PatchStrategy
    fuzzy_offset: int | None = None


def parse_search_replace_block(candidate: str) -> SearchReplaceBlock | None:
    """Return the first marker-delimited block in ``candidate``.

    Returns ``None`` when no marker is present at all.

    Raises:
        MatchingError: When markers are present but do not form a block.
    """

    text = candidate or ""
    match = _BLOCK_RE.search(text)
    if match is None:
        if has_search_replace_markers(text):
            raise MatchingError(
                code=ErrorCode.MALFORMED_BLOCK,
                message="The search/replace block is incomplete; expected SEARCH, ======= and >>>>>>> markers",
            )
        return None
    return SearchReplaceBlock(
        search=match.group("search").strip(),
        replace=match.group("replace").strip(),
    )


def has_search_replace_markers(text: str) -> bool:
    return SEARCH_MARKER in (text or "") or REPLACE_MARKER in (text or "")


@dataclass(slots=True)
class PatchEngine:
    """Turn a candidate edit into ``(patch_text, proposed_text)``.

    Marker-delimited candidates are applied as search/replace edits (exact
    first, then fuzzy). Anything else is treated as the complete replacement
    value. The patch is always a diff between the source and the resulting
    full text, so it can be inverted later without re-deriving the edit.
    """

    match_threshold: float = 0.5
    match_distance: int = 1000
    diff_builder: DiffBuilder = field(default_factory=DiffBuilder)

    def __post_init__(self) -> None:
        if not 0.0 <= self.match_threshold <= 1.0:
            raise ValueError("match_threshold must be between 0.0 and 1.0")
        if self.match_distance < 0:
            raise ValueError("match_distance must not be negative")

    def build(self, source_text: str, candidate: str, value_type: str = "text") -> PatchOutcome:
        """Build the patch for ``candidate`` against ``source_text``.

        Raises:
            MatchingError: When a search block cannot be located.
            ExtractionError: When a JSON field's result does not parse.
            NoChangeError: When the result equals ``source_text``.
        """

        source = source_text or ""
        block = parse_search_replace_block(candidate)
        fuzzy_offset: int | None = None
        if block is None:
            proposed = (candidate or "").strip()
            strategy: PatchStrategy = "full_text"
        else:
            proposed, strategy, fuzzy_offset = self._apply_block(source, block)

        if value_type == "json":
            if strategy == "full_text":
                proposed = normalize_json_candidate(proposed)
            parse_json_candidate(proposed)

        if proposed == source:
            raise NoChangeError()

        patch_text = self.diff_builder.run(source, proposed)
        LOGGER.debug(
            "PatchEngine.build: strategy=%s, source_len=%d, proposed_len=%d",
            strategy,
            len(source),
            len(proposed),
        )
        return PatchOutcome(
            patch_text=patch_text,
            proposed_text=proposed,
            strategy=strategy,
            fuzzy_offset=fuzzy_offset,
        )

    def locate(self, source_text: str, search: str) -> int | None:
        """Return the offset of the best approximate match, or ``None``."""

        if not search or not source_text:
            return None
        dmp = diff_match_patch()
        dmp.Match_Threshold = self.match_threshold
        dmp.Match_Distance = self.match_distance
        # Bitap matching is limited to Match_MaxBits characters; anchor on the prefix.
        pattern = search[: dmp.Match_MaxBits] if dmp.Match_MaxBits else search
        location = dmp.match_main(source_text, pattern, 0)
        return None if location < 0 else location

    @staticmethod
    def span_score(search: str, span: str) -> float:
        """Edit distance between ``search`` and ``span`` relative to ``len(search)``.

        Locating only scores the first ``Match_MaxBits`` characters, so the
        remainder is also scored on its own; the worse ratio wins.
        """

        if not search:
            return 0.0 if not span else 1.0
        dmp = diff_match_patch()

        def ratio(expected: str, actual: str) -> float:
            diffs = dmp.diff_main(expected, actual, False)
            dmp.diff_cleanupSemantic(diffs)
            return dmp.diff_levenshtein(diffs) / max(1, len(expected))

        score = ratio(search, span)
        anchored = dmp.Match_MaxBits
        if anchored and len(search) > anchored:
            score = max(score, ratio(search[anchored:], span[anchored:]))
        return score

    def _apply_block(self, source: str, block: SearchReplaceBlock) -> tuple[str, PatchStrategy, int | None]:
        if not block.search:
            raise MatchingError(
                code=ErrorCode.EMPTY_SEARCH,
                message="The search block is empty",
            )

        if block.search in source:
            return source.replace(block.search, block.replace, 1), "exact", None

        location = self.locate(source, block.search)
        if location is None:
            raise MatchingError(
                message="The search block was not found in the field",
                details={"search_preview": block.search[:80]},
            )

        # The matched span is assumed to be as long as the search text.
        end = min(len(source), location + len(block.search))
        score = self.span_score(block.search, source[location:end])
        if score > self.match_threshold:
            raise MatchingError(
                message="The search block was not found in the field",
                details={"search_preview": block.search[:80], "score": round(score, 3)},
            )
        LOGGER.warning(
            "Fuzzy search match at offset %d; replacing %d chars assuming the span length of the search block",
            location,
            end - location,
        )
        return source[:location] + block.replace + source[end:], "fuzzy", location


__all__ = [
    "DIVIDER_MARKER",
    "PatchEngine",
    "PatchOutcome",
    "PatchStrategy",
    "REPLACE_MARKER",
    "SEARCH_MARKER",
    "SearchReplaceBlock",
    "has_search_replace_markers",
    "parse_search_replace_block",
]
