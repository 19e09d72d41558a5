"""Editor package containing field value variants and the patch layer."""

from .diff_builder import DiffBuilder
from .patch_engine import PatchEngine, PatchOutcome
from .patches import PatchApplyError, PatchResult, apply_patch
from .values import FieldValue, RichTextValue, StructuredValue, TextValue, coerce_field_value

__all__ = [
    "DiffBuilder",
    "FieldValue",
    "PatchApplyError",
    "PatchEngine",
    "PatchOutcome",
    "PatchResult",
    "RichTextValue",
    "StructuredValue",
    "TextValue",
    "apply_patch",
    "coerce_field_value",
]
