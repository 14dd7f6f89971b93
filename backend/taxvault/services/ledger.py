"""
Category cap ledger.

Always a full recomputation over the receipts passed in; there is no
cached or global state. The accumulated value is never clamped: a
breached cap reports the true total alongside the excess.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, computed_field

from taxvault.config import settings
from taxvault.models.lhdn import LHDN_CATEGORIES, LhdnTag, get_category
from taxvault.models.receipt import (
    LineItem,
    Receipt,
    ReceiptWarning,
    WarningCode,
)
from taxvault.utils.money import ZERO, format_money, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def _percent_used(accumulated: Decimal, limit: Optional[Decimal]) -> Decimal:
    if not limit:
        return ZERO
    return min(HUNDRED, accumulated / limit * HUNDRED)


class SubLimitEntry(BaseModel):
    name: str
    limit: Decimal
    accumulated: Decimal = ZERO

    @computed_field
    @property
    def remaining(self) -> Decimal:
        return max(ZERO, self.limit - self.accumulated)

    @computed_field
    @property
    def exceeded(self) -> bool:
        return self.accumulated > self.limit

    @computed_field
    @property
    def excess(self) -> Decimal:
        return max(ZERO, self.accumulated - self.limit)


class CategoryLedgerEntry(BaseModel):
    """
    Accumulated claims for one category in one year.

    remaining = max(0, limit - accumulated); exceeded = accumulated > limit.
    An unlimited category (limit None) never reports exceeded.
    """
    tag: LhdnTag
    limit: Optional[Decimal] = None
    accumulated: Decimal = ZERO
    item_count: int = 0
    sub_limits: List[SubLimitEntry] = Field(default_factory=list)

    @computed_field
    @property
    def remaining(self) -> Optional[Decimal]:
        if self.limit is None:
            return None
        return max(ZERO, self.limit - self.accumulated)

    @computed_field
    @property
    def exceeded(self) -> bool:
        return self.limit is not None and self.accumulated > self.limit

    @computed_field
    @property
    def excess(self) -> Decimal:
        if self.limit is None:
            return ZERO
        return max(ZERO, self.accumulated - self.limit)

    @computed_field
    @property
    def percent_used(self) -> Decimal:
        return _percent_used(self.accumulated, self.limit)

    def sub_limit(self, name: str) -> Optional[SubLimitEntry]:
        for entry in self.sub_limits:
            if entry.name == name:
                return entry
        return None


Ledger = Dict[LhdnTag, CategoryLedgerEntry]


def empty_ledger() -> Ledger:
    ledger = {}
    for tag, category in LHDN_CATEGORIES.items():
        ledger[tag] = CategoryLedgerEntry(
            tag=tag,
            limit=category.annual_limit,
            sub_limits=[SubLimitEntry(name=s.name, limit=s.limit) for s in category.sub_limits],
        )
    return ledger


def claimed_items(receipt: Receipt) -> Iterable[LineItem]:
    """Items that count toward the ledger: claimable receipt, claimable item with a tag."""
    if not receipt.claimable:
        return []
    return [item for item in receipt.line_items if item.claimable and item.tag is not None]


def compute_ledger(year: int, receipts: Iterable[Receipt]) -> Ledger:
    """
    Recompute every category's accumulated claim for the assessment year.

    Args:
        year: Assessment year, matched against the receipt date's year
        receipts: All receipts for one user; other years are skipped

    Returns:
        Dict keyed by every LhdnTag (zero entries included)
    """
    ledger = empty_ledger()

    for receipt in receipts:
        if receipt.year != int(year):
            continue
        for item in claimed_items(receipt):
            entry = ledger[item.tag]
            amount = item.amount
            entry.accumulated += amount
            entry.item_count += 1

            sub_limit = get_category(item.tag).sub_limit_for(item.name)
            if sub_limit is not None:
                entry.sub_limit(sub_limit.name).accumulated += amount

    for entry in ledger.values():
        if entry.exceeded:
            logger.warning("Category cap exceeded", extra={
                "year": year,
                "tag": entry.tag.value,
                "accumulated": str(entry.accumulated),
                "limit": str(entry.limit),
            })

    return ledger


def cap_warnings(ledger: Ledger) -> List[ReceiptWarning]:
    warnings = []
    for entry in ledger.values():
        if entry.exceeded:
            warnings.append(ReceiptWarning(
                code=WarningCode.CAP_EXCEEDED,
                field=entry.tag.value,
                message=(
                    f"{entry.tag.value} claims of {format_money(entry.accumulated)} exceed the "
                    f"{format_money(entry.limit)} limit by {format_money(entry.excess)}"
                ),
            ))
        for sub in entry.sub_limits:
            if sub.exceeded:
                warnings.append(ReceiptWarning(
                    code=WarningCode.SUB_LIMIT_EXCEEDED,
                    field=f"{entry.tag.value}.{sub.name}",
                    message=(
                        f"{sub.name.replace('_', ' ').capitalize()} claims of "
                        f"{format_money(sub.accumulated)} exceed the {format_money(sub.limit)} sub-limit"
                    ),
                ))
    return warnings


def would_exceed_lifestyle_cap(current_ytd, lifestyle_cap=None, new_amount=ZERO) -> bool:
    """Pre-commit check: strictly greater than the cap is a breach."""
    cap = settings.LIFESTYLE_CAP if lifestyle_cap is None else to_decimal(lifestyle_cap)
    return to_decimal(current_ytd) + to_decimal(new_amount) > cap


def get_remaining_lifestyle_cap(current_ytd, lifestyle_cap=None) -> Decimal:
    cap = settings.LIFESTYLE_CAP if lifestyle_cap is None else to_decimal(lifestyle_cap)
    return max(ZERO, cap - to_decimal(current_ytd))


def lifestyle_amount(receipt: Receipt) -> Decimal:
    """Amount a committed receipt adds to the profile's Lifestyle year-to-date."""
    return sum(
        (item.amount for item in claimed_items(receipt) if item.tag == LhdnTag.LIFESTYLE),
        ZERO,
    )


def claimable_total(items: Iterable[LineItem]) -> Decimal:
    return sum((item.amount for item in items if item.claimable), ZERO)


def non_claimable_total(items: Iterable[LineItem]) -> Decimal:
    return sum((item.amount for item in items if not item.claimable), ZERO)


SUMMARY_CATEGORIES = (
    LhdnTag.MEDICAL,
    LhdnTag.LIFESTYLE,
    LhdnTag.SPORTS,
    LhdnTag.EDUCATION,
    LhdnTag.CHILDCARE,
)


class ReliefSummaryRow(BaseModel):
    category: LhdnTag
    spent: Decimal
    limit: Optional[Decimal]
    remaining: Optional[Decimal]
    percent_used: Decimal


def relief_summary(ledger: Ledger) -> List[ReliefSummaryRow]:
    """Dashboard rows for the capped headline categories."""
    return [
        ReliefSummaryRow(
            category=tag,
            spent=ledger[tag].accumulated,
            limit=ledger[tag].limit,
            remaining=ledger[tag].remaining,
            percent_used=ledger[tag].percent_used,
        )
        for tag in SUMMARY_CATEGORIES
    ]
