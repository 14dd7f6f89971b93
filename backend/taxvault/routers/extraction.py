"""
Receipt extraction endpoint.

Mirrors the expense-parser function contract: POST only, permissive
CORS, {success, data, raw} on success and {success, error, details}
on failure.
"""

import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from taxvault.services.extraction import (
    DEFAULT_MIME_TYPE,
    DocumentAIClient,
    ExtractionUnavailable,
    entities_to_raw,
)
from taxvault.services.normalizer import summarize_entities

logger = logging.getLogger(__name__)

router = APIRouter(tags=["extraction"])

# Served to any origin; the app-wide CORS policy does not apply
PUBLIC_PATHS = ("/parse-receipt",)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class ParseReceiptRequest(BaseModel):
    image: Optional[str] = None
    mime_type: str = Field(default=DEFAULT_MIME_TYPE, alias="mimeType")

    class Config:
        populate_by_name = True


def _error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body = {"success": False, "error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body, headers=CORS_HEADERS)


def is_valid_base64(image: str) -> bool:
    try:
        base64.b64decode(image, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


@router.options("/parse-receipt")
async def parse_receipt_preflight():
    return Response(status_code=204, headers=CORS_HEADERS)


@router.api_route("/parse-receipt", methods=["GET", "PUT", "PATCH", "DELETE"])
async def parse_receipt_wrong_method():
    return _error(405, "Method not allowed. Use POST.")


@router.post("/parse-receipt")
async def parse_receipt(request: Request):
    """
    Run one base64 image through the expense parser.

    The body is read by hand so every malformed request gets the
    {success: false, error} shape with a 400, never a framework 422.

    Returns:
        {"success": true, "data": {...summary...}, "raw": {"text", "entities"}}
    """
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Invalid request body", "Expected a JSON object")
    if not isinstance(body, dict):
        return _error(400, "Invalid request body", "Expected a JSON object")

    image = body.get("image")
    mime_type = body.get("mimeType") or DEFAULT_MIME_TYPE
    if not image:
        return _error(400, "Missing required field: image (Base64 encoded)")
    if not isinstance(image, str) or not is_valid_base64(image):
        return _error(400, "Invalid image: not valid Base64")
    if not isinstance(mime_type, str):
        return _error(400, "Invalid mimeType: expected a string")

    try:
        extraction = DocumentAIClient().process(image, mime_type)
    except ExtractionUnavailable as e:
        logger.warning("Receipt extraction failed", exc_info=True)
        return _error(500, str(e), "Failed to process receipt")

    return JSONResponse(
        status_code=200,
        headers=CORS_HEADERS,
        content={
            "success": True,
            "data": jsonable_encoder(summarize_entities(extraction.entities)),
            "raw": {
                "text": extraction.text,
                "entities": entities_to_raw(extraction.entities),
            },
        },
    )

