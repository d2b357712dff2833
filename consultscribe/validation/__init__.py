"""Review of low-confidence transcript words."""

from .reducer import (
    can_proceed_with_validation,
    extract_flagged_words,
    validation_reducer,
)
from .transcript import build_final_transcript, collect_corrections
from .validator import TranscriptionValidator

__all__ = [
    "TranscriptionValidator",
    "build_final_transcript",
    "can_proceed_with_validation",
    "collect_corrections",
    "extract_flagged_words",
    "validation_reducer",
]
