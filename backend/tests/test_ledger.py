"""
Test suite for the category cap ledger.

Tests cover:
- Which receipts and items count (year, receipt claimable, item claimable + tag)
- Monotonicity under adding/removing claims
- Cap boundary: exactly at the limit vs one sen over
- Sub-limits, Lifestyle pre-checks and dashboard summary
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from taxvault.models.lhdn import LhdnTag
from taxvault.models.receipt import LineItem, Receipt, WarningCode
from taxvault.services.ledger import (
    cap_warnings,
    claimable_total,
    compute_ledger,
    get_remaining_lifestyle_cap,
    lifestyle_amount,
    non_claimable_total,
    relief_summary,
    would_exceed_lifestyle_cap,
)
from decimal import Decimal


def claimed(item_id, name, price, tag, quantity=1):
    return LineItem(id=item_id, name=name, quantity=quantity, unit_price=Decimal(price),
                    claimable=True, tag=tag)


def receipt(receipt_id, date, line_items, claimable=True):
    return Receipt(id=receipt_id, user_id="u1", merchant="Shop", date=date,
                   line_items=line_items, claimable=claimable)


class TestComputeLedger:

    def test_accumulates_claimed_items_per_category(self):
        receipts = [
            receipt("r1", "2025-02-01", [
                claimed("a", "Laptop", "2000", "Lifestyle"),
                claimed("b", "Novel", "40", "Books", quantity=2),
                LineItem(id="c", name="Snack", unit_price=Decimal("5")),
            ]),
            receipt("r2", "2025-05-10", [claimed("a", "Gym membership", "150", "Sports")]),
        ]

        ledger = compute_ledger(2025, receipts)

        assert ledger[LhdnTag.LIFESTYLE].accumulated == Decimal("2000")
        assert ledger[LhdnTag.BOOKS].accumulated == Decimal("80")
        assert ledger[LhdnTag.SPORTS].accumulated == Decimal("150")
        assert ledger[LhdnTag.MEDICAL].accumulated == Decimal("0")
        assert ledger[LhdnTag.LIFESTYLE].remaining == Decimal("500")
        assert set(ledger) == set(LhdnTag)

    def test_other_years_and_unclaimable_receipts_are_skipped(self):
        receipts = [
            receipt("r1", "2024-12-31", [claimed("a", "Laptop", "999", "Lifestyle")]),
            receipt("r2", "2025-01-01", [claimed("a", "Laptop", "111", "Lifestyle")], claimable=False),
        ]

        assert compute_ledger(2025, receipts)[LhdnTag.LIFESTYLE].accumulated == Decimal("0")

    def test_recompute_is_idempotent(self):
        receipts = [receipt("r1", "2025-03-03", [claimed("a", "Dental", "300", "Medical")])]
        first = compute_ledger(2025, receipts)
        second = compute_ledger(2025, receipts)

        assert {t: e.model_dump() for t, e in first.items()} == {t: e.model_dump() for t, e in second.items()}

    def test_unlimited_category(self):
        ledger = compute_ledger(2025, [receipt("r1", "2025-01-01", [claimed("a", "Zakat", "5000", "Others")])])
        entry = ledger[LhdnTag.OTHERS]

        assert entry.remaining is None
        assert entry.exceeded is False


class TestMonotonicity:

    def test_adding_claim_increases_removing_decreases(self):
        base_items = [claimed("a", "Course", "100", "Education")]
        base = compute_ledger(2025, [receipt("r1", "2025-04-01", base_items)])[LhdnTag.EDUCATION]

        more = compute_ledger(2025, [receipt("r1", "2025-04-01", base_items + [
            claimed("b", "Exam fee", "50", "Education"),
        ])])[LhdnTag.EDUCATION]
        assert more.accumulated > base.accumulated

        fewer = compute_ledger(2025, [receipt("r1", "2025-04-01", [])])[LhdnTag.EDUCATION]
        assert fewer.accumulated <= base.accumulated


class TestCapBoundary:

    def test_exactly_at_limit_is_not_exceeded(self):
        entry = compute_ledger(2025, [
            receipt("r1", "2025-01-01", [claimed("a", "Racket", "1000.00", "Sports")]),
        ])[LhdnTag.SPORTS]

        assert entry.exceeded is False
        assert entry.remaining == Decimal("0")
        assert entry.percent_used == Decimal("100")

    def test_one_sen_over_is_exceeded_and_not_clamped(self):
        ledger = compute_ledger(2025, [
            receipt("r1", "2025-01-01", [claimed("a", "Racket", "1000.01", "Sports")]),
        ])
        entry = ledger[LhdnTag.SPORTS]

        assert entry.exceeded is True
        assert entry.accumulated == Decimal("1000.01")
        assert entry.excess == Decimal("0.01")
        assert entry.remaining == Decimal("0")

        warnings = cap_warnings(ledger)
        assert [w.code for w in warnings] == [WarningCode.CAP_EXCEEDED]
        assert warnings[0].field == "Sports"


class TestSubLimits:

    def test_vaccination_sub_limit_inside_medical(self):
        ledger = compute_ledger(2025, [
            receipt("r1", "2025-06-01", [
                claimed("a", "Vaccination (Flu)", "600", "Medical"),
                claimed("b", "HPV vaccine dose 2", "600", "Medical"),
                claimed("c", "Specialist treatment", "800", "Medical"),
            ]),
        ])
        medical = ledger[LhdnTag.MEDICAL]
        vaccination = medical.sub_limit("vaccination")

        assert medical.accumulated == Decimal("2000")
        assert medical.exceeded is False
        assert vaccination.accumulated == Decimal("1200")
        assert vaccination.exceeded is True

        codes = [w.code for w in cap_warnings(ledger)]
        assert codes == [WarningCode.SUB_LIMIT_EXCEEDED]


class TestLifestyleChecks:

    def test_would_exceed_is_strictly_greater(self):
        assert would_exceed_lifestyle_cap(Decimal("2000"), Decimal("2500"), Decimal("500")) is False
        assert would_exceed_lifestyle_cap(Decimal("2000"), Decimal("2500"), Decimal("500.01")) is True

    def test_default_cap_from_settings(self):
        assert would_exceed_lifestyle_cap("2400", new_amount="200") is True

    def test_remaining_never_negative(self):
        assert get_remaining_lifestyle_cap(Decimal("3000"), Decimal("2500")) == Decimal("0")
        assert get_remaining_lifestyle_cap(Decimal("1000"), Decimal("2500")) == Decimal("1500")

    def test_lifestyle_amount_of_receipt(self):
        r = receipt("r1", "2025-01-01", [
            claimed("a", "Phone", "1200", "Lifestyle"),
            claimed("b", "Book", "50", "Books"),
        ])
        assert lifestyle_amount(r) == Decimal("1200")


class TestTotalsAndSummary:

    def test_claimable_and_non_claimable_totals(self):
        line_items = [
            claimed("a", "Laptop", "100", "Lifestyle", quantity=2),
            LineItem(id="b", name="Bag", quantity=1, unit_price=Decimal("30")),
        ]
        assert claimable_total(line_items) == Decimal("200")
        assert non_claimable_total(line_items) == Decimal("30")

    def test_relief_summary_rows(self):
        ledger = compute_ledger(2025, [receipt("r1", "2025-01-01", [claimed("a", "Gym", "250", "Sports")])])
        rows = {row.category: row for row in relief_summary(ledger)}

        assert set(rows) == {LhdnTag.MEDICAL, LhdnTag.LIFESTYLE, LhdnTag.SPORTS,
                             LhdnTag.EDUCATION, LhdnTag.CHILDCARE}
        assert rows[LhdnTag.SPORTS].spent == Decimal("250")
        assert rows[LhdnTag.SPORTS].percent_used == Decimal("25")
