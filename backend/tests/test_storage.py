"""
Test suite for the Supabase receipt repository.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from taxvault.models.lhdn import LhdnTag
from taxvault.models.receipt import Claimable, LineItem, Receipt, VerificationStatus
from taxvault.services.storage import ReceiptRepository, receipt_to_row, row_to_receipt
from decimal import Decimal
from unittest.mock import Mock, patch


def sample_receipt(**overrides):
    data = dict(
        id="r1",
        user_id="u1",
        merchant="Popular Bookstore",
        date="2025-04-02",
        currency="MYR",
        total_amount=Decimal("42.40"),
        line_items=[
            LineItem(id="item-1", name="Dictionary", unit_price=Decimal("40"),
                     claim=Claimable(tag=LhdnTag.BOOKS)),
        ],
        claimable=True,
        verification_status=VerificationStatus.VERIFIED,
    )
    data.update(overrides)
    return Receipt(**data)


class TestRowMapping:

    def test_row_uses_strings_for_money_and_flat_claims(self):
        row = receipt_to_row(sample_receipt())

        assert row['total_amount'] == "42.40"
        assert row['date'] == "2025-04-02"
        assert row['line_items'][0]['unit_price'] == "40"
        assert row['line_items'][0]['claimable'] is True
        assert row['line_items'][0]['tag'] == "Books"
        assert 'claim' not in row['line_items'][0]

    def test_row_round_trip_keeps_claims(self):
        receipt = row_to_receipt(receipt_to_row(sample_receipt()))
        assert receipt.line_items[0].tag == LhdnTag.BOOKS
        assert receipt.verification_status == VerificationStatus.VERIFIED


class TestReceiptRepository:

    @patch('taxvault.services.storage.get_supabase_client')
    def test_list_for_year_filters_date_range(self, mock_supabase):
        mock_response = Mock()
        mock_response.data = [receipt_to_row(sample_receipt())]

        mock_client = Mock()
        query = mock_client.table.return_value.select.return_value.eq.return_value
        query.gte.return_value.lte.return_value.order.return_value.execute.return_value = mock_response
        mock_supabase.return_value = mock_client

        receipts = ReceiptRepository().list_for_year("u1", 2025)

        query.gte.assert_called_once_with('date', '2025-01-01')
        query.gte.return_value.lte.assert_called_once_with('date', '2025-12-31')
        assert receipts[0].merchant == "Popular Bookstore"

    @patch('taxvault.services.storage.get_supabase_client')
    def test_get_missing_receipt(self, mock_supabase):
        mock_response = Mock()
        mock_response.data = []
        mock_client = Mock()
        mock_client.table.return_value.select.return_value.eq.return_value.eq.return_value.execute.return_value = mock_response
        mock_supabase.return_value = mock_client

        assert ReceiptRepository().get("nope", "u1") is None

    def test_update_items_never_writes_verification_status(self):
        mock_client = Mock()
        receipt = sample_receipt()
        excluded = LineItem(id="item-1", name="Dictionary", unit_price=Decimal("40"))

        updated = ReceiptRepository(client=mock_client).update_items(receipt, [excluded])

        updates = mock_client.table.return_value.update.call_args[0][0]
        assert 'verification_status' not in updates
        assert updates['claimable'] is False
        assert updates['line_items'][0]['claimable'] is False
        assert updated.verification_status == VerificationStatus.VERIFIED
        assert updated.claimable is False

    def test_update_items_rederives_tags(self):
        mock_client = Mock()
        receipt = sample_receipt(tags=[LhdnTag.BOOKS])
        line_items = [
            LineItem(id="item-1", name="Dictionary", unit_price=Decimal("40")),
            LineItem(id="item-2", name="Flu vaccine", unit_price=Decimal("80"),
                     claim=Claimable(tag=LhdnTag.MEDICAL)),
        ]

        updated = ReceiptRepository(client=mock_client).update_items(receipt, line_items)

        updates = mock_client.table.return_value.update.call_args[0][0]
        assert updates["tags"] == ["Medical"]
        assert updated.tags == [LhdnTag.MEDICAL]
        assert updated.claimable is True

    def test_update_items_with_explicit_status(self):
        mock_client = Mock()
        receipt = sample_receipt()

        updated = ReceiptRepository(client=mock_client).update_items(
            receipt, receipt.line_items, verification_status="pending"
        )

        updates = mock_client.table.return_value.update.call_args[0][0]
        assert updates['verification_status'] == "pending"
        assert updated.verification_status == VerificationStatus.PENDING

    def test_save_returns_stored_row(self):
        mock_client = Mock()
        mock_response = Mock()
        mock_response.data = [receipt_to_row(sample_receipt(notes="stored"))]
        mock_client.table.return_value.insert.return_value.execute.return_value = mock_response

        saved = ReceiptRepository(client=mock_client).save(sample_receipt())

        mock_client.table.assert_called_with("receipts")
        assert saved.notes == "stored"
