"""Helpers that convert raw text pairs into serializable patches."""

from __future__ import annotations

import difflib
from dataclasses import dataclass

from diff_match_patch import diff_match_patch


@dataclass(slots=True)
class DiffBuilder:
    """Build patch text that turns one field value into another.

    The patch is character-level so applying it to ``original`` reproduces
    ``updated`` byte for byte, and the inverse is simply the patch built
    with the arguments swapped.
    """

    default_label: str = "field"
    preview_context_lines: int = 3
    preview_max_lines: int = 200
    diff_timeout: float = 1.0

    def run(self, original: str, updated: str) -> str:
        if original is None or updated is None:
            raise ValueError("Both original and updated text must be provided")
        if original == updated:
            raise ValueError("No differences detected between the provided texts")

        dmp = diff_match_patch()
        dmp.Diff_Timeout = self.diff_timeout
        diffs = dmp.diff_main(original, updated)
        dmp.diff_cleanupEfficiency(diffs)
        patches = dmp.patch_make(original, diffs)
        return dmp.patch_toText(patches)

    def invert(self, original: str, updated: str) -> str:
        """Return the patch that restores ``original`` from ``updated``."""

        return self.run(updated, original)

    def preview(self, original: str, updated: str, *, label: str | None = None) -> str:
        """Render a human-readable unified diff for logs and review panes."""

        name = (label or "").strip() or self.default_label
        diff_iter = difflib.unified_diff(
            original.splitlines(),
            updated.splitlines(),
            fromfile=f"{name}:before",
            tofile=f"{name}:after",
            n=max(0, self.preview_context_lines),
            lineterm="",
        )
        lines: list[str] = []
        for line in diff_iter:
            lines.append(line)
            if len(lines) >= self.preview_max_lines:
                lines.append("... (diff truncated)")
                break
        return "\n".join(lines)


__all__ = ["DiffBuilder"]
