"""
Shared money parsing utilities.

Handles the shapes the extraction service hands back:
- Structured money: {"units": "24", "nanos": 500000000} → 24.5
- Symbol-prefixed text: "RM 125.50", "S$12", "$1,234.56"
- Parenthesised negatives: "(RM 0.05)" → -0.05
- Garbage: "N/A" → 0 (never raises)
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Tuple, Union
import re

from taxvault.models.entities import RawExtractedEntity, MoneyValue

NANOS_PER_UNIT = Decimal(1_000_000_000)
ZERO = Decimal("0")
CENT = Decimal("0.01")

# Ordered: multi-character symbols must be tried before "$"
CURRENCY_SYMBOLS: Tuple[Tuple[str, str], ...] = (
    ('S$', 'SGD'),
    ('RM', 'MYR'),
    ('MYR', 'MYR'),
    ('SGD', 'SGD'),
    ('USD', 'USD'),
    ('$', 'USD'),
    ('€', 'EUR'),
    ('EUR', 'EUR'),
    ('£', 'GBP'),
    ('GBP', 'GBP'),
)


def _symbol_pattern(symbol: str) -> re.Pattern:
    # Letter codes only count as whole words: "RM" inside "PHARMACY" is not ringgit
    if symbol.isalpha():
        return re.compile(r'(?<![A-Za-z])' + re.escape(symbol) + r'(?![A-Za-z])')
    return re.compile(re.escape(symbol))


_CURRENCY_PATTERNS = tuple((_symbol_pattern(symbol), code) for symbol, code in CURRENCY_SYMBOLS)

DISPLAY_SYMBOLS = {
    'MYR': 'RM ',
    'SGD': 'S$',
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
}

_NON_NUMERIC = re.compile(r'[^\d.,\-]')
_NUMBER = re.compile(r'-?(?:\d+(?:\.\d*)?|\.\d+)')


def to_decimal(value: Union[Decimal, int, float, str, None], default: Decimal = ZERO) -> Decimal:
    """
    Coerce a JSON-ish number into Decimal without float artefacts.

    Floats go through str() so 18.9 stays 18.9 rather than
    18.899999999999998578914528479799628257751464843750.
    """
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return default
    # NaN and Infinity cannot be ordered against money
    return result if result.is_finite() else default


def detect_currency(text: str) -> Tuple[Optional[str], str]:
    """
    Find the first known currency marker in text.

    Returns:
        (ISO code or None, text with that marker removed once)
    """
    if not text:
        return None, ""
    for pattern, code in _CURRENCY_PATTERNS:
        match = pattern.search(text)
        if match:
            return code, text[:match.start()] + text[match.end():]
    return None, text


def parse_money(amount_str: Optional[str]) -> Optional[Decimal]:
    """
    Parse a free-text amount, treating commas as thousands separators.

    Args:
        amount_str: String containing amount (e.g., "RM 1,234.56", "(0.05)")

    Returns:
        Decimal amount or None if nothing numeric remains

    Examples:
        >>> parse_money("RM 1,234.56")
        Decimal('1234.56')
        >>> parse_money("(0.05)")
        Decimal('-0.05')
    """
    if not amount_str or not isinstance(amount_str, str):
        return None

    cleaned = amount_str.strip()
    is_negative = False

    # Parentheses notation for negative amounts (rounding lines)
    if cleaned.startswith('(') and cleaned.endswith(')'):
        is_negative = True
        cleaned = cleaned[1:-1]

    _, cleaned = detect_currency(cleaned)
    cleaned = _NON_NUMERIC.sub('', cleaned).replace(',', '')

    match = _NUMBER.search(cleaned)
    if not match:
        return None

    try:
        result = Decimal(match.group(0))
    except (InvalidOperation, ValueError):
        return None

    return -result if is_negative else result


def parse_amount_text(text: Optional[str]) -> Tuple[Decimal, Optional[str]]:
    """
    Parse legacy text-only amounts such as "RM 125.50".

    Returns:
        (amount, ISO currency code or None); amount is 0 when unparseable
    """
    currency, _ = detect_currency(text or "")
    amount = parse_money(text)
    return (amount if amount is not None else ZERO), currency


def money_value_to_decimal(money: MoneyValue) -> Optional[Decimal]:
    """units + nanos / 1e9, or None when units is not a finite number."""
    try:
        units = Decimal(str(money.units).strip() or "0")
    except (InvalidOperation, ValueError):
        return None
    if not units.is_finite():
        return None
    if not money.nanos:
        return units
    return units + Decimal(money.nanos) / NANOS_PER_UNIT


def normalize_money(entity: RawExtractedEntity) -> Decimal:
    """
    Convert a monetary entity to a Decimal amount.

    Structured money wins; otherwise the recognized text is parsed.
    Returns Decimal('0') rather than raising when nothing numeric remains.
    """
    if entity.money is not None:
        value = money_value_to_decimal(entity.money)
        if value is not None:
            return value
    amount, _ = parse_amount_text(entity.text)
    return amount


def entity_currency(entity: RawExtractedEntity) -> Optional[str]:
    """Currency code carried by a monetary entity, structured value first."""
    if entity.money is not None and entity.money.currency_code:
        return entity.money.currency_code.strip().upper()
    currency, _ = detect_currency(entity.text)
    return currency


def quantize_money(amount: Decimal) -> Decimal:
    """Round to sen/cents for display and export only."""
    return amount.quantize(CENT)


def format_money(amount: Optional[Decimal], currency: str = 'MYR') -> str:
    """
    Format Decimal amount as money string.

    Examples:
        >>> format_money(Decimal('1234.5'))
        'RM 1,234.50'
        >>> format_money(Decimal('12'), 'SGD')
        'S$12.00'
    """
    if amount is None:
        return 'N/A'

    symbol = DISPLAY_SYMBOLS.get((currency or '').upper(), f"{currency} ")
    sign = '-' if amount < 0 else ''
    return f"{sign}{symbol}{abs(quantize_money(amount)):,.2f}"


def infer_tax_rate(total: Optional[Decimal], tax: Optional[Decimal]) -> Decimal:
    """
    Back out a whole-number tax rate percent from a total and its tax.

    tax / (total - tax) * 100, rounded to the nearest integer (6% SST
    receipts come back as 6). Zero when either input is missing.
    """
    if not total or not tax or total <= tax:
        return ZERO
    rate = tax / (total - tax) * 100
    return rate.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
