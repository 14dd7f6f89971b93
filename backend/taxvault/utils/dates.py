"""
Date normalization for extraction entities.

Receipts in scope are Malaysian, so numeric dates are read day-first
(DD/MM/YYYY). Anything unreadable falls back to today: a bad date must
never block saving, low confidence is reported separately.
"""

from datetime import date
from typing import Optional
import re

from taxvault.models.entities import RawExtractedEntity, DateValue

_ISO_DATE = re.compile(r'(\d{4})-(\d{1,2})-(\d{1,2})')
_DAY_FIRST_DATE = re.compile(r'(\d{1,2})[/-](\d{1,2})[/-](\d{4}|\d{2})(?!\d)')


def _iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def date_value_to_iso(value: DateValue, today: Optional[date] = None) -> Optional[str]:
    """Zero-pad structured parts; missing year means this year, missing month/day means 1."""
    if value.year is None and value.month is None and value.day is None:
        return None
    today = today or date.today()
    return _iso(value.year or today.year, value.month or 1, value.day or 1)


def parse_date_text(text: Optional[str]) -> Optional[str]:
    """
    Read an ISO or day-first numeric date out of free text.

    Two-digit years are taken as 20xx.

    Examples:
        >>> parse_date_text("15/01/24")
        '2024-01-15'
        >>> parse_date_text("Date: 3-2-2025")
        '2025-02-03'
    """
    if not text:
        return None

    iso_match = _ISO_DATE.search(text)
    if iso_match:
        year, month, day = (int(part) for part in iso_match.groups())
        parsed = _iso(year, month, day)
        if parsed:
            return parsed

    match = _DAY_FIRST_DATE.search(text)
    if not match:
        return None

    day, month, year_str = match.groups()
    if len(year_str) == 2:
        year_str = '20' + year_str
    return _iso(int(year_str), int(month), int(day))


def normalize_date(entity: RawExtractedEntity, today: Optional[date] = None) -> str:
    """
    Convert a date entity to YYYY-MM-DD, falling back to today.

    Args:
        entity: receipt_date-like entity
        today: Injected clock for deterministic tests

    Returns:
        ISO 8601 date string
    """
    today = today or date.today()

    if entity.date_parts is not None:
        structured = date_value_to_iso(entity.date_parts, today=today)
        if structured:
            return structured

    return parse_date_text(entity.text) or today.isoformat()
