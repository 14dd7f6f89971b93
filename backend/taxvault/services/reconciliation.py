"""
Monetary reconciliation and integrity checks for receipt drafts.

Cheap and side-effect free, so callers re-run it on every edit. A
mismatch is a warning, never a block: the declared total is sometimes
more trustworthy than a partially misread item list.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Union

from taxvault.config import settings
from taxvault.models.receipt import (
    LineItem,
    NormalizedReceipt,
    Receipt,
    ReceiptWarning,
    WarningCode,
)
from taxvault.utils.money import to_decimal, ZERO

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str, None]


@dataclass(frozen=True)
class ReconciliationResult:
    items_total: Decimal
    tax1: Decimal
    tax2: Decimal
    rounding: Decimal
    computed_total: Decimal
    declared_total: Decimal
    mismatch: bool

    @property
    def difference(self) -> Decimal:
        return self.declared_total - self.computed_total

    def to_warning(self) -> Optional[ReceiptWarning]:
        if not self.mismatch:
            return None
        return ReceiptWarning(
            code=WarningCode.RECONCILIATION_MISMATCH,
            field='total_amount',
            message=(
                f"Items + tax + rounding ({self.computed_total:.2f}) doesn't match "
                f"receipt total ({self.declared_total:.2f})"
            ),
        )


def calculate_items_total(items: Iterable[LineItem]) -> Decimal:
    """Sum of quantity x unit price, computed fresh from the items."""
    return sum((item.amount for item in items), ZERO)


def reconcile(
    items: Iterable[LineItem],
    tax_rate_percent: Number = None,
    tax_rate2_percent: Number = None,
    rounding_amount: Number = None,
    declared_total: Number = None,
    tolerance: Optional[Decimal] = None
) -> ReconciliationResult:
    """
    Compare a declared total against items + two percentage charges + rounding.

    Args:
        items: Line items as they will be persisted
        tax_rate_percent: Primary tax (e.g. 6 for SST); None counts as 0
        tax_rate2_percent: Second charge such as service; None/disabled counts as 0
        rounding_amount: Signed rounding adjustment
        declared_total: Total printed on the receipt
        tolerance: Absolute tolerance; defaults to settings.RECONCILIATION_TOLERANCE

    Returns:
        ReconciliationResult with mismatch = |declared - computed| >= tolerance
    """
    tolerance = to_decimal(tolerance, settings.RECONCILIATION_TOLERANCE)

    items_total = calculate_items_total(items)
    tax1 = items_total * to_decimal(tax_rate_percent) / 100
    tax2 = items_total * to_decimal(tax_rate2_percent) / 100
    rounding = to_decimal(rounding_amount)
    computed_total = items_total + tax1 + tax2 + rounding
    declared = to_decimal(declared_total)

    mismatch = abs(declared - computed_total) >= tolerance
    if mismatch:
        logger.info("Reconciliation mismatch", extra={
            "declared_total": str(declared),
            "computed_total": str(computed_total),
        })

    return ReconciliationResult(
        items_total=items_total,
        tax1=tax1,
        tax2=tax2,
        rounding=rounding,
        computed_total=computed_total,
        declared_total=declared,
        mismatch=mismatch,
    )


def reconcile_receipt(
    receipt: NormalizedReceipt,
    service_charge_enabled: bool = True,
    tolerance: Optional[Decimal] = None
) -> ReconciliationResult:
    """Run reconcile() with a draft's own rates, rounding and total."""
    return reconcile(
        receipt.line_items,
        tax_rate_percent=receipt.tax_rate,
        tax_rate2_percent=receipt.service_charge_rate if service_charge_enabled else None,
        rounding_amount=receipt.rounding,
        declared_total=receipt.total_amount,
        tolerance=tolerance,
    )


@dataclass
class IntegrityIssue:
    """One data-integrity problem on a receipt or line item."""
    type: str  # MISSING_REQUIRED | NEGATIVE_AMOUNT | INVALID_DATE
    message: str
    field: Optional[str] = None
    item_id: Optional[str] = None
    actual: Optional[str] = None

    def to_warning(self) -> ReceiptWarning:
        return ReceiptWarning(code=WarningCode.INTEGRITY, field=self.field, message=self.message)


def validate_line_item_integrity(item: LineItem) -> List[IntegrityIssue]:
    issues = []
    if not item.name or not item.name.strip():
        issues.append(IntegrityIssue('MISSING_REQUIRED', 'Item name is required', 'name', item.id))
    if item.quantity <= 0:
        issues.append(IntegrityIssue(
            'NEGATIVE_AMOUNT', 'Item quantity must be positive', 'quantity', item.id, str(item.quantity)
        ))
    if item.unit_price < 0:
        issues.append(IntegrityIssue(
            'NEGATIVE_AMOUNT', 'Item unit price cannot be negative', 'unit_price', item.id,
            str(item.unit_price)
        ))
    return issues


def validate_receipt_integrity(receipt: NormalizedReceipt) -> List[IntegrityIssue]:
    """
    Collect integrity issues; never raises.

    Checks identity (committed receipts only), merchant, date format,
    negative totals and each line item.
    """
    issues: List[IntegrityIssue] = []

    if isinstance(receipt, Receipt):
        if not receipt.id:
            issues.append(IntegrityIssue('MISSING_REQUIRED', 'Receipt ID is required', 'id'))
        if not receipt.user_id:
            issues.append(IntegrityIssue('MISSING_REQUIRED', 'User ID is required', 'user_id'))

    if not receipt.merchant:
        issues.append(IntegrityIssue('MISSING_REQUIRED', 'Merchant name is required', 'merchant'))

    if not receipt.date:
        issues.append(IntegrityIssue('MISSING_REQUIRED', 'Date is required', 'date'))
    else:
        try:
            date.fromisoformat(receipt.date)
        except ValueError:
            issues.append(IntegrityIssue('INVALID_DATE', 'Invalid date format', 'date'))

    if receipt.total_amount < 0:
        issues.append(IntegrityIssue(
            'NEGATIVE_AMOUNT', 'Receipt amount cannot be negative', 'total_amount',
            actual=str(receipt.total_amount)
        ))

    for item in receipt.line_items:
        issues.extend(validate_line_item_integrity(item))

    return issues
