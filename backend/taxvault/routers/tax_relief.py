"""
Tax-relief API router: yearly ledger, report export and the Lifestyle pre-check.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from taxvault.config import settings
from taxvault.models.lhdn import LHDN_CATEGORIES, get_category_limit
from taxvault.models.receipt import Receipt
from taxvault.services.ledger import (
    cap_warnings,
    compute_ledger,
    get_remaining_lifestyle_cap,
    relief_summary,
    would_exceed_lifestyle_cap,
)
from taxvault.services.report import build_tax_relief_report, render_report_csv
from taxvault.services.storage import ReceiptRepository

router = APIRouter(prefix="/tax-relief", tags=["tax-relief"])


class LifestyleCheckRequest(BaseModel):
    current_ytd: Decimal = Decimal("0")
    new_amount: Decimal
    lifestyle_cap: Optional[Decimal] = None


def _receipts_for_year(user_id: str, year: int) -> List[Receipt]:
    try:
        return ReceiptRepository().list_for_year(user_id, year)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch receipts: {str(e)}"
        )


@router.get("/categories")
async def list_categories():
    """Category catalog with limits and eligibility text for display."""
    categories = []
    for tag, category in LHDN_CATEGORIES.items():
        limit = get_category_limit(tag)
        categories.append({
            "tag": tag.value,
            "limit": str(limit) if limit is not None else None,
            "sub_limits": [{"name": s.name, "limit": str(s.limit)} for s in category.sub_limits],
            "eligible": list(category.eligible),
            "not_eligible": list(category.not_eligible),
            "condition": category.condition,
        })
    return {"categories": categories}


@router.get("/{year}/ledger")
async def get_ledger(year: int, user_id: str = Query(..., description="User ID")):
    """
    Recompute the category cap ledger for the year.

    Accumulated values are never clamped; breached caps show up in
    `exceeded`/`excess` and in `warnings`.
    """
    ledger = compute_ledger(year, _receipts_for_year(user_id, year))
    return {
        "year": year,
        "categories": [entry.model_dump(mode='json') for entry in ledger.values()],
        "summary": [row.model_dump(mode='json') for row in relief_summary(ledger)],
        "warnings": [w.model_dump(mode='json') for w in cap_warnings(ledger)],
    }


@router.get("/{year}/report")
async def get_report(year: int, user_id: str = Query(..., description="User ID")):
    report = build_tax_relief_report(year, _receipts_for_year(user_id, year), currency=settings.DEFAULT_CURRENCY)
    return report.model_dump(mode='json')


@router.get("/{year}/report.csv")
async def export_report_csv(year: int, user_id: str = Query(..., description="User ID")):
    """
    Export the tax-relief report as a CSV download.

    Returns 404 when nothing was claimed in the year.
    """
    report = build_tax_relief_report(year, _receipts_for_year(user_id, year), currency=settings.DEFAULT_CURRENCY)
    if not report.groups:
        raise HTTPException(status_code=404, detail="No claimable items found for export")

    filename = f"tax_relief_{user_id}_{year}.csv"
    return StreamingResponse(
        iter([render_report_csv(report)]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename={filename}"
        }
    )


@router.post("/lifestyle-check")
async def lifestyle_check(request: LifestyleCheckRequest):
    """Warn before commit if a new expense would push Lifestyle past its cap."""
    cap = request.lifestyle_cap if request.lifestyle_cap is not None else settings.LIFESTYLE_CAP
    return {
        "would_exceed": would_exceed_lifestyle_cap(request.current_ytd, cap, request.new_amount),
        "remaining": str(get_remaining_lifestyle_cap(request.current_ytd, cap)),
        "remaining_after": str(get_remaining_lifestyle_cap(request.current_ytd + request.new_amount, cap)),
        "lifestyle_cap": str(cap),
    }
