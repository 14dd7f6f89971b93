"""
Receipts API router: reconciliation, scanning, commit and claim overrides.
"""

import logging
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from taxvault.models.lhdn import LhdnTag
from taxvault.models.receipt import LineItem, NormalizedReceipt, Receipt, claimed_tags
from taxvault.routers.extraction import ParseReceiptRequest
from taxvault.services.classifier import auto_tag_items, exclusion_notes, review_claims, validate_categorization
from taxvault.services.extraction import scan_receipt
from taxvault.services.ledger import cap_warnings, compute_ledger, lifestyle_amount
from taxvault.services.overrides import InvalidOverrideAttempt, OverrideTracker, remove_claim
from taxvault.services.reconciliation import reconcile, reconcile_receipt, validate_receipt_integrity
from taxvault.services.storage import ReceiptRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/receipts", tags=["receipts"])

# Pending claim confirmations, keyed by (receipt_id, item_id)
override_tracker = OverrideTracker()


class ReconcileRequest(BaseModel):
    items: List[LineItem]
    tax_rate: Optional[Decimal] = None
    tax_rate2: Optional[Decimal] = None
    service_charge_enabled: bool = True
    rounding: Optional[Decimal] = None
    declared_total: Decimal


class ReceiptDraft(NormalizedReceipt):
    """
    A reviewed draft the user is committing.

    Unclaimed items are auto-tagged on commit unless auto_tag is off or
    the item id is in reviewed_item_ids (the user already decided).
    Receipt-level tags are always derived from the claimed items.
    """
    user_id: str
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    service_charge_enabled: bool = True
    merchant_category: Optional[str] = None
    auto_tag: bool = True
    reviewed_item_ids: List[str] = []


DRAFT_ONLY_FIELDS = {'service_charge_enabled', 'merchant_category', 'auto_tag', 'reviewed_item_ids'}


class ClaimRequest(BaseModel):
    tag: LhdnTag


def _reconciliation_payload(result) -> dict:
    return {
        "items_total": str(result.items_total),
        "tax1": str(result.tax1),
        "tax2": str(result.tax2),
        "rounding": str(result.rounding),
        "computed_total": str(result.computed_total),
        "declared_total": str(result.declared_total),
        "difference": str(result.difference),
        "mismatch": result.mismatch,
    }


@router.post("/reconcile")
async def reconcile_draft(request: ReconcileRequest):
    """Re-run on every edit; a mismatch is reported, never rejected."""
    result = reconcile(
        request.items,
        tax_rate_percent=request.tax_rate,
        tax_rate2_percent=request.tax_rate2 if request.service_charge_enabled else None,
        rounding_amount=request.rounding,
        declared_total=request.declared_total,
    )
    warning = result.to_warning()
    return {
        **_reconciliation_payload(result),
        "warnings": [warning.model_dump(mode='json')] if warning else [],
    }


@router.post("/scan")
async def scan(request: ParseReceiptRequest):
    """
    Extract and normalize a receipt image into a reviewable draft.

    Unlike /parse-receipt this never fails on extraction errors: the
    draft falls back to a blank low-confidence receipt.
    """
    if not request.image:
        raise HTTPException(status_code=400, detail="Missing required field: image (Base64 encoded)")

    result = scan_receipt(request.image, request.mime_type)
    return {
        "receipt": result.receipt.model_dump(mode='json'),
        "warnings": [w.model_dump(mode='json') for w in result.warnings],
        "extraction_available": result.extraction_available,
    }


def _auto_tagged(draft: ReceiptDraft) -> List[LineItem]:
    if not draft.auto_tag:
        return list(draft.line_items)
    reviewed = set(draft.reviewed_item_ids)
    proposed = auto_tag_items(draft.line_items, draft.merchant_category)
    return [
        original if original.id in reviewed else tagged
        for original, tagged in zip(draft.line_items, proposed)
    ]


@router.post("")
async def commit_receipt(draft: ReceiptDraft):
    """
    Commit a reviewed draft.

    Integrity problems reject the draft (422). Reconciliation mismatches
    and cap breaches are returned as warnings and never block saving.
    """
    items = _auto_tagged(draft)
    receipt = Receipt.model_validate({
        **draft.model_dump(mode='json', exclude=DRAFT_ONLY_FIELDS),
        'id': str(uuid.uuid4()),
        'line_items': [item.model_dump(mode='json') for item in items],
        'tags': [tag.value for tag in claimed_tags(items)],
        'claimable': any(item.claimable for item in items),
        'upload_timestamp': datetime.now(timezone.utc).isoformat(),
    })

    issues = validate_receipt_integrity(receipt)
    if issues:
        raise HTTPException(
            status_code=422,
            detail=[{"type": i.type, "field": i.field, "item_id": i.item_id, "message": i.message}
                    for i in issues]
        )

    reconciliation = reconcile_receipt(receipt, service_charge_enabled=draft.service_charge_enabled)
    warnings = review_claims(receipt.line_items)
    mismatch = reconciliation.to_warning()
    if mismatch is not None:
        warnings.append(mismatch)

    try:
        repo = ReceiptRepository()
        saved = repo.save(receipt)
        if saved.year is not None:
            ledger = compute_ledger(saved.year, repo.list_for_year(saved.user_id, saved.year))
            warnings.extend(cap_warnings(ledger))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to save receipt: {str(e)}"
        )

    return {
        "receipt": saved.model_dump(mode='json'),
        "reconciliation": _reconciliation_payload(reconciliation),
        "lifestyle_amount": str(lifestyle_amount(saved)),
        "warnings": [w.model_dump(mode='json') for w in warnings],
        "exclusions": [asdict(note) for note in exclusion_notes(saved.line_items)],
    }


def _load_item(receipt_id: str, item_id: str, user_id: str) -> Tuple[ReceiptRepository, Receipt, LineItem]:
    try:
        repo = ReceiptRepository()
        receipt = repo.get(receipt_id, user_id)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch receipt: {str(e)}"
        )

    if receipt is None:
        raise HTTPException(status_code=404, detail="Receipt not found")

    item = receipt.find_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Line item not found")

    return repo, receipt, item


def _replace_item(repo: ReceiptRepository, receipt: Receipt, updated: LineItem) -> Receipt:
    items = [updated if item.id == updated.id else item for item in receipt.line_items]
    try:
        return repo.update_items(receipt, items)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to update receipt: {str(e)}"
        )


@router.post("/{receipt_id}/items/{item_id}/claim")
async def request_claim(
    receipt_id: str,
    item_id: str,
    request: ClaimRequest,
    user_id: str = Query(..., description="User ID")
):
    """
    Start claiming an item. Nothing is saved until /claim/confirm.

    Returns the confirmation prompt: item name, any typically-ineligible
    reason and, when the tag looks wrong, the category it probably
    belongs to.
    """
    _, _, item = _load_item(receipt_id, item_id, user_id)

    try:
        pending = override_tracker.request_claim(item, request.tag, key=(receipt_id, item_id))
    except InvalidOverrideAttempt as e:
        raise HTTPException(status_code=409, detail=str(e))

    categorization = validate_categorization(item.name, pending.tag)
    return {
        "status": "pending_confirmation",
        "item_id": pending.item_id,
        "item_name": pending.item_name,
        "tag": pending.tag.value,
        "typically_ineligible": pending.typically_ineligible,
        "reason": pending.reason,
        "suggested_action": pending.suggested_action,
        "categorization_valid": categorization.is_valid,
        "suggested_tag": categorization.correct_tag.value if categorization.correct_tag else None,
        "categorization_reason": categorization.reason,
    }


@router.post("/{receipt_id}/items/{item_id}/claim/confirm")
async def confirm_claim(receipt_id: str, item_id: str, user_id: str = Query(..., description="User ID")):
    repo, receipt, item = _load_item(receipt_id, item_id, user_id)

    try:
        confirmed = override_tracker.confirm(item, key=(receipt_id, item_id))
    except InvalidOverrideAttempt as e:
        raise HTTPException(status_code=409, detail=str(e))

    updated = _replace_item(repo, receipt, confirmed)
    return {"status": "confirmed", "item": confirmed.model_dump(mode='json'), "claimable": updated.claimable}


@router.post("/{receipt_id}/items/{item_id}/claim/cancel")
async def cancel_claim(receipt_id: str, item_id: str, user_id: str = Query(..., description="User ID")):
    _, _, item = _load_item(receipt_id, item_id, user_id)

    try:
        unchanged = override_tracker.cancel(item, key=(receipt_id, item_id))
    except InvalidOverrideAttempt as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {"status": "cancelled", "item": unchanged.model_dump(mode='json')}


@router.delete("/{receipt_id}/items/{item_id}/claim")
async def delete_claim(receipt_id: str, item_id: str, user_id: str = Query(..., description="User ID")):
    """Removing a claim is immediate; no confirmation step."""
    repo, receipt, item = _load_item(receipt_id, item_id, user_id)

    try:
        excluded = remove_claim(item)
    except InvalidOverrideAttempt as e:
        raise HTTPException(status_code=409, detail=str(e))

    updated = _replace_item(repo, receipt, excluded)
    return {"status": "removed", "item": excluded.model_dump(mode='json'), "claimable": updated.claimable}
