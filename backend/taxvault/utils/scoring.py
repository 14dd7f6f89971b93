"""
Selection and confidence helpers for field candidates.

Confidence comes from the extraction service (0.0 to 1.0). Selection is
highest-confidence-wins with first-seen tie-breaking, so results depend
only on entity order for exact ties.
"""

from typing import List, Optional, Tuple

from taxvault.config import settings
from .candidates import FieldCandidate

__all__ = [
    'prefer_candidate', 'select_best_candidate', 'select_top_candidates',
    'is_low_confidence', 'confidence_level',
]


def prefer_candidate(
    current: Optional[FieldCandidate],
    challenger: FieldCandidate
) -> FieldCandidate:
    """
    Keep whichever candidate is more confident.

    Ties keep current (first seen).
    """
    if current is None or challenger.confidence > current.confidence:
        return challenger
    return current


def select_best_candidate(candidates: List[FieldCandidate]) -> Optional[FieldCandidate]:
    """
    Select best candidate from list.

    Returns:
        Most confident candidate, or None if empty list
    """
    best = None
    for candidate in candidates:
        best = prefer_candidate(best, candidate)
    return best


def select_top_candidates(
    candidates: List[FieldCandidate],
    top_n: int = 3
) -> List[Tuple[FieldCandidate, float]]:
    """Select top N candidates with their confidence, for review UIs."""
    # sorted() is stable, so equal confidences keep entity order
    ranked = sorted(candidates, key=lambda c: c.confidence, reverse=True)
    return [(candidate, candidate.confidence) for candidate in ranked[:top_n]]


def is_low_confidence(confidence: float, threshold: Optional[float] = None) -> bool:
    """
    True when a field was extracted but below the review threshold.

    0.0 means "not extracted" and is not reported as low.
    """
    if threshold is None:
        threshold = settings.LOW_CONFIDENCE_THRESHOLD
    return 0 < confidence < threshold


def confidence_level(confidence: float) -> str:
    """Bucket a confidence score into high / medium / low."""
    if confidence >= 0.9:
        return 'high'
    if confidence >= 0.7:
        return 'medium'
    return 'low'
