"""Prompt templates for the field assistant.

Builds the single system instruction sent ahead of the conversation: a base
editing instruction plus, when a field is selected, its label, description,
a type hint and a truncated excerpt of its current value.
"""

from __future__ import annotations

from ..editor.patch_engine import DIVIDER_MARKER, REPLACE_MARKER, SEARCH_MARKER
from ..editor.values import requires_structured_output
from ..ui.models.context_models import ContextItem

# Character budget for the field excerpt
DEFAULT_CONTEXT_CHAR_BUDGET = 4_000

STRUCTURED_TYPE_HINT = "The value is structured data: respond with valid JSON only."
TRUNCATION_NOTE = "(excerpt truncated to the first {budget:,} characters)"


def base_instruction() -> str:
    """Instruction sent on every turn, with or without a selected field."""
    return f"""You are a content editing assistant embedded in a CMS.
Help the user draft, revise and polish the content of the selected field.

## Editing the field

To change part of the field, reply with exactly one search/replace block:

{SEARCH_MARKER}
exact text copied from the current value
{DIVIDER_MARKER}
replacement text
{REPLACE_MARKER} REPLACE

- Copy the search text verbatim from the field excerpt below.
- Use one block per reply; only the first block is applied.
- To rewrite the whole field, reply with the complete new value instead.
- Every reply is read as an edit. When you add commentary, put the block or the new value inside a single fenced code block."""


def build_context_excerpt(context: ContextItem, char_budget: int = DEFAULT_CONTEXT_CHAR_BUDGET) -> tuple[str, bool]:
    """Return the serialized field value cut to ``char_budget`` characters.

    Returns:
        ``(excerpt, truncated)``; ``len(excerpt) <= char_budget`` always holds.
    """
    budget = max(0, int(char_budget))
    text = context.current_text
    if len(text) <= budget:
        return text, False
    return text[:budget], True


def build_instruction(
    context: ContextItem | None,
    *,
    char_budget: int = DEFAULT_CONTEXT_CHAR_BUDGET,
) -> str:
    """Build the system instruction for the current selection.

    Args:
        context: The selected context item, or ``None``.
        char_budget: Maximum characters of field content to include.

    Returns:
        The instruction text.
    """
    sections = [base_instruction()]
    if context is None:
        return sections[0]

    lines = [f"source: `{context.label}`"]
    if context.description:
        lines.append(f"description: {context.description}")
    if context.value_type != "text" or requires_structured_output(context.value):
        lines.append(STRUCTURED_TYPE_HINT)
    if not context.is_editable:
        lines.append("This source is reference material only; do not propose edits to it.")

    excerpt, truncated = build_context_excerpt(context, char_budget)
    lines.append("")
    lines.append("Current value:")
    lines.append(excerpt)
    if truncated:
        lines.append(TRUNCATION_NOTE.format(budget=max(0, int(char_budget))))

    sections.append("\n".join(lines))
    return "\n\n".join(sections)


__all__ = [
    "DEFAULT_CONTEXT_CHAR_BUDGET",
    "STRUCTURED_TYPE_HINT",
    "base_instruction",
    "build_context_excerpt",
    "build_instruction",
]
