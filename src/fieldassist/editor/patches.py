"""Patch text parser and application helpers."""

from __future__ import annotations

from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Tuple

from diff_match_patch import diff_match_patch


class PatchApplyError(RuntimeError):
    """Raised when patch text cannot be applied cleanly."""

    def __init__(
        self,
        message: str,
        *,
        reason: str = "hunk_failed",
        expected: str | None = None,
        actual: str | None = None,
        hunk_header: str | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.expected = expected
        self.actual = actual
        self.hunk_header = hunk_header

    def details(self) -> dict[str, str | None]:
        return {
            "reason": self.reason,
            "expected": self.expected,
            "actual": self.actual,
            "hunk": self.hunk_header,
        }


@dataclass(slots=True)
class PatchResult:
    """Result of applying patch text to a field value."""

    text: str
    spans: Tuple[Tuple[int, int], ...]
    summary: str


def apply_patch(original_text: str, patch_text: str) -> PatchResult:
    """Apply ``patch_text`` to ``original_text`` and return the patched value.

    Every hunk must land; a partially applied patch is never returned.
    """

    if not patch_text or not patch_text.strip():
        raise PatchApplyError("Patch does not contain any hunks", reason="empty_patch")

    dmp = _strict_matcher()
    try:
        patches = dmp.patch_fromText(patch_text)
    except ValueError as exc:
        raise PatchApplyError(f"Malformed patch text: {exc}", reason="invalid_patch") from exc
    if not patches:
        raise PatchApplyError("Patch does not contain any hunks", reason="empty_patch")

    patched_text, results = dmp.patch_apply(patches, original_text)
    for index, applied in enumerate(results):
        if applied:
            continue
        hunk = patches[index]
        raise PatchApplyError(
            "Context mismatch while applying patch",
            reason="hunk_failed",
            expected=_hunk_source_text(hunk),
            hunk_header=_hunk_header(hunk),
        )

    spans = _compute_spans(original_text, patched_text)
    summary = _summarize_patch(original_text, patched_text)
    return PatchResult(text=patched_text, spans=spans, summary=summary)


def _strict_matcher() -> diff_match_patch:
    # Hunks must match their recorded context exactly.
    dmp = diff_match_patch()
    dmp.Match_Threshold = 0.0
    dmp.Patch_DeleteThreshold = 0.0
    return dmp


def _hunk_header(hunk) -> str:
    return str(hunk).splitlines()[0] if str(hunk) else ""


def _hunk_source_text(hunk) -> str:
    return "".join(text for op, text in hunk.diffs if op != diff_match_patch.DIFF_INSERT)


def _compute_spans(before: str, after: str) -> Tuple[Tuple[int, int], ...]:
    matcher = SequenceMatcher(a=before, b=after, autojunk=False)
    spans: list[tuple[int, int]] = []
    for tag, _i1, _i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal" or j1 == j2:
            continue
        spans.append((j1, j2))
    return tuple(spans)


def _summarize_patch(before: str, after: str) -> str:
    delta = len(after) - len(before)
    if delta == 0:
        return "patch: Δ0"
    sign = "+" if delta > 0 else "-"
    return f"patch: {sign}{abs(delta)} chars"


__all__ = [
    "PatchApplyError",
    "PatchResult",
    "apply_patch",
]
