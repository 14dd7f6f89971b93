"""
Candidate dataclasses for field selection.

Each candidate is one extraction entity competing for a receipt field;
the normalizer keeps the most confident one per field.
"""

from dataclasses import dataclass
from typing import Any, Optional

from taxvault.models.entities import RawExtractedEntity


@dataclass
class FieldCandidate:
    """A value proposed for a receipt field, with its provenance."""
    value: Any
    confidence: float
    kind: str  # entity type as reported by the extraction service
    raw_text: str = ""
    currency: Optional[str] = None  # monetary candidates only


def create_field_candidate(
    value: Any,
    entity: RawExtractedEntity,
    currency: Optional[str] = None
) -> FieldCandidate:
    """
    Wrap a normalized value with the entity it came from.

    Args:
        value: Normalized field value (str, Decimal, ISO date)
        entity: Source entity
        currency: ISO code carried by a monetary entity, if any

    Returns:
        FieldCandidate
    """
    return FieldCandidate(
        value=value,
        confidence=entity.confidence,
        kind=entity.kind,
        raw_text=entity.text,
        currency=currency,
    )
