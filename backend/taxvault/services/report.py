"""
Tax-relief report for one assessment year.

Totals come straight from the ledger; this module only attaches
receipt and line-item metadata and renders the result.
"""

import csv
import io
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from taxvault.models.lhdn import LhdnTag
from taxvault.models.receipt import Receipt
from taxvault.services.ledger import claimed_items, compute_ledger
from taxvault.utils.money import ZERO, format_money, quantize_money


class ReportEntry(BaseModel):
    receipt_id: str
    item_id: str
    merchant: str
    date: str
    item_name: str
    amount: Decimal


class ReportGroup(BaseModel):
    tag: LhdnTag
    limit: Optional[Decimal] = None
    entries: List[ReportEntry] = Field(default_factory=list)
    subtotal: Decimal = ZERO
    exceeded: bool = False
    excess: Decimal = ZERO


class TaxReliefReport(BaseModel):
    year: int
    generated_at: str
    currency: str = "MYR"
    groups: List[ReportGroup] = Field(default_factory=list)
    grand_total: Decimal = ZERO


def build_tax_relief_report(
    year: int,
    receipts: Iterable[Receipt],
    currency: str = "MYR",
    generated_at: Optional[datetime] = None
) -> TaxReliefReport:
    """
    Group claimed line items by category for the year.

    Only categories with at least one entry are included. Subtotals are
    the ledger's accumulated values, unclamped; grand_total sums them.
    """
    receipts = [r for r in receipts if r.year == int(year)]
    ledger = compute_ledger(year, receipts)

    entries_by_tag = {tag: [] for tag in ledger}
    for receipt in sorted(receipts, key=lambda r: r.date):
        for item in claimed_items(receipt):
            entries_by_tag[item.tag].append(ReportEntry(
                receipt_id=receipt.id,
                item_id=item.id,
                merchant=receipt.merchant,
                date=receipt.date,
                item_name=item.name,
                amount=item.amount,
            ))

    groups = []
    for tag, entry in ledger.items():
        if not entries_by_tag[tag]:
            continue
        groups.append(ReportGroup(
            tag=tag,
            limit=entry.limit,
            entries=entries_by_tag[tag],
            subtotal=entry.accumulated,
            exceeded=entry.exceeded,
            excess=entry.excess,
        ))

    generated_at = generated_at or datetime.now(timezone.utc)
    return TaxReliefReport(
        year=int(year),
        generated_at=generated_at.isoformat(),
        currency=currency,
        groups=groups,
        grand_total=sum((g.subtotal for g in groups), ZERO),
    )


def render_report_csv(report: TaxReliefReport) -> str:
    """One row per claimed item, a subtotal row per category and a grand total."""
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow(['Category', 'Limit', 'Date', 'Merchant', 'Item', 'Amount', 'Receipt ID'])

    for group in report.groups:
        limit = format_money(group.limit, report.currency) if group.limit is not None else 'No limit'
        for entry in group.entries:
            writer.writerow([
                group.tag.value,
                limit,
                entry.date,
                entry.merchant,
                entry.item_name,
                f"{quantize_money(entry.amount):.2f}",
                entry.receipt_id,
            ])
        writer.writerow([
            f"{group.tag.value} subtotal",
            limit,
            '',
            '',
            'EXCEEDS LIMIT' if group.exceeded else '',
            f"{quantize_money(group.subtotal):.2f}",
            '',
        ])

    writer.writerow(['Grand total', '', '', '', '', f"{quantize_money(report.grand_total):.2f}", ''])
    return output.getvalue()
