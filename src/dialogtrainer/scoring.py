"""Score dictation attempts from alignment results."""

from __future__ import annotations

from collections.abc import Sequence

from .config import MASTERY_THRESHOLD
from .models import AlignmentOp, OpKind

MASTERED_MESSAGE = "Great job!"
REVIEW_MESSAGE = "Added to review queue. Keep practicing!"


def round_half_up_percent(numerator: int, denominator: int) -> int:
    """Return `round(100 * numerator / denominator)` with halves rounded up.

    Integer arithmetic keeps `.5` boundaries exact.
    """
    if denominator <= 0:
        return 0
    return (200 * numerator + denominator) // (2 * denominator)


def score(alignment: Sequence[AlignmentOp], target_word_count: int) -> int:
    """Return the percentage of target words matched, 0..100."""
    if target_word_count <= 0:
        return 0
    equal_count = sum(1 for op in alignment if op.kind is OpKind.EQUAL)
    return max(0, min(100, round_half_up_percent(equal_count, target_word_count)))


def is_mastered(value: int) -> bool:
    return value >= MASTERY_THRESHOLD


def feedback_message(value: int) -> str:
    """Short learner-facing verdict for a score."""
    return MASTERED_MESSAGE if is_mastered(value) else REVIEW_MESSAGE
