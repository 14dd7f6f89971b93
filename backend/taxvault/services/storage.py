"""
Supabase persistence for committed receipts.

The row shape is the Receipt model in JSON mode: Decimals as strings,
dates as ISO strings, line items as a JSON array in the flat
claimable/tag/auto_assigned shape.
"""

import logging
from typing import Any, Dict, List, Optional

from supabase import Client

from taxvault.config import settings
from taxvault.models.receipt import LineItem, Receipt, VerificationStatus, claimed_tags
from taxvault.utils.supabase import get_supabase_client

logger = logging.getLogger(__name__)


def receipt_to_row(receipt: Receipt) -> Dict[str, Any]:
    return receipt.model_dump(mode='json')


def row_to_receipt(row: Dict[str, Any]) -> Receipt:
    return Receipt.model_validate(row)


class ReceiptRepository:
    """Service for reading and writing receipt rows."""

    def __init__(self, client: Optional[Client] = None, table: Optional[str] = None):
        self.supabase = client or get_supabase_client()
        self.table = table or settings.RECEIPTS_TABLE

    def save(self, receipt: Receipt) -> Receipt:
        """Insert a committed receipt and return it as stored."""
        response = self.supabase.table(self.table).insert(receipt_to_row(receipt)).execute()
        logger.info("Receipt saved", extra={"receipt_id": receipt.id, "user_id": receipt.user_id})
        if response.data:
            return row_to_receipt(response.data[0])
        return receipt

    def get(self, receipt_id: str, user_id: str) -> Optional[Receipt]:
        response = self.supabase.table(self.table).select('*').eq('id', receipt_id).eq(
            'user_id', user_id
        ).execute()

        if not response.data:
            return None
        return row_to_receipt(response.data[0])

    def list_for_year(self, user_id: str, year: int) -> List[Receipt]:
        """All receipts dated within the calendar year, oldest first."""
        response = self.supabase.table(self.table).select('*').eq('user_id', user_id).gte(
            'date', f"{year:04d}-01-01"
        ).lte(
            'date', f"{year:04d}-12-31"
        ).order('date', desc=False).execute()

        return [row_to_receipt(row) for row in response.data or []]

    def update_items(
        self,
        receipt: Receipt,
        items: List[LineItem],
        verification_status: Optional[str] = None
    ) -> Receipt:
        """
        Replace a receipt's line items; claimable and tags follow the items.

        verification_status is written only when passed explicitly, so
        editing items never resets a reviewed receipt.
        """
        claimable = any(item.claimable for item in items)
        tags = claimed_tags(items)
        updated = receipt.model_copy(update={'line_items': list(items), 'claimable': claimable, 'tags': tags})
        updates: Dict[str, Any] = {
            'line_items': [item.model_dump(mode='json') for item in items],
            'claimable': claimable,
            'tags': [tag.value for tag in tags],
        }
        if verification_status is not None:
            status = VerificationStatus(verification_status)
            updates['verification_status'] = status.value
            updated = updated.model_copy(update={'verification_status': status})

        self.supabase.table(self.table).update(updates).eq('id', receipt.id).eq(
            'user_id', receipt.user_id
        ).execute()

        return Receipt.model_validate(receipt_to_row(updated))
