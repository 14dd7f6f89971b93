"""
Client for the Document AI expense parser, plus the scan pipeline entry.

One request per scan, no retries. Any failure becomes
ExtractionUnavailable, which scan_receipt() turns into a low-confidence
fallback draft so the user is never blocked.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from taxvault.config import settings
from taxvault.models.entities import RawExtractedEntity
from taxvault.models.receipt import (
    FieldConfidence,
    NormalizedReceipt,
    ReceiptWarning,
    WarningCode,
)
from taxvault.services.normalizer import ReceiptNormalizer, low_confidence_warnings
from taxvault.services.reconciliation import reconcile_receipt

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


class ExtractionUnavailable(Exception):
    """The extraction service failed, timed out or is not configured."""
    pass


@dataclass
class ExtractionResult:
    """Raw service output: full OCR text and the flat entity list."""
    text: str
    entities: List[RawExtractedEntity]


class DocumentAIClient:
    """Thin REST client for a Document AI processor."""

    def __init__(
        self,
        project_id: Optional[str] = None,
        location: Optional[str] = None,
        processor_id: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.project_id = project_id or settings.DOCUMENT_AI_PROJECT_ID
        self.location = location or settings.DOCUMENT_AI_LOCATION
        self.processor_id = processor_id or settings.DOCUMENT_AI_PROCESSOR_ID
        self.token = token or settings.DOCUMENT_AI_TOKEN
        self.timeout = timeout or settings.DOCUMENT_AI_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.project_id and self.processor_id and self.token)

    @property
    def endpoint(self) -> str:
        return (
            f"https://{self.location}-documentai.googleapis.com/v1/"
            f"projects/{self.project_id}/locations/{self.location}/"
            f"processors/{self.processor_id}:process"
        )

    def process(self, image_b64: str, mime_type: str = DEFAULT_MIME_TYPE) -> ExtractionResult:
        """
        Send one base64 image to the processor.

        Raises:
            ExtractionUnavailable: on missing config, transport error,
                timeout, non-2xx status or an unreadable body
        """
        if not self.configured:
            raise ExtractionUnavailable("Document AI processor is not configured")

        payload = {
            "rawDocument": {
                "content": image_b64,
                "mimeType": mime_type or DEFAULT_MIME_TYPE,
            }
        }
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

        try:
            response = requests.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as e:
            raise ExtractionUnavailable(f"Document AI request failed: {e}") from e
        except ValueError as e:
            raise ExtractionUnavailable("Document AI returned a non-JSON body") from e

        document = body.get("document") or {}
        entities = []
        for raw in document.get("entities") or []:
            try:
                entities.append(RawExtractedEntity.model_validate(raw))
            except ValidationError:
                logger.debug("Skipping malformed entity", extra={"entity_type": raw.get("type")})

        return ExtractionResult(text=document.get("text") or "", entities=entities)


@dataclass
class ScanResult:
    receipt: NormalizedReceipt
    warnings: List[ReceiptWarning] = field(default_factory=list)
    extraction_available: bool = True
    raw_text: str = ""


def fallback_receipt(today: Optional[date] = None, confidence: Optional[float] = None) -> NormalizedReceipt:
    """
    Placeholder draft used when extraction is unavailable.

    Every field carries the fallback confidence so review hints fire on
    all of them. Pure; safe to call without network access.
    """
    if confidence is None:
        confidence = settings.FALLBACK_CONFIDENCE
    today = today or date.today()
    return NormalizedReceipt(
        merchant="",
        date=today.isoformat(),
        currency=settings.DEFAULT_CURRENCY,
        total_amount=0,
        line_items=[],
        confidence=FieldConfidence(
            merchant=confidence,
            date=confidence,
            total_amount=confidence,
            line_items=confidence,
            tax=confidence,
        ),
    )


def scan_receipt(
    image_b64: str,
    mime_type: str = DEFAULT_MIME_TYPE,
    client: Optional[DocumentAIClient] = None,
    today: Optional[date] = None
) -> ScanResult:
    """Extract, normalize and pre-check one receipt image."""
    client = client or DocumentAIClient()

    try:
        extraction = client.process(image_b64, mime_type)
    except ExtractionUnavailable as e:
        logger.warning("Extraction unavailable, using fallback draft", exc_info=True)
        receipt = fallback_receipt(today)
        warnings = [ReceiptWarning(
            code=WarningCode.EXTRACTION_UNAVAILABLE,
            message=f"Couldn't read the receipt automatically: {e}. Please fill in the details.",
        )]
        return ScanResult(receipt=receipt, warnings=warnings, extraction_available=False)

    receipt = ReceiptNormalizer().normalize(extraction.entities, today=today)

    warnings = low_confidence_warnings(receipt)
    mismatch = reconcile_receipt(receipt).to_warning()
    if mismatch is not None:
        warnings.append(mismatch)

    return ScanResult(receipt=receipt, warnings=warnings, raw_text=extraction.text)


def entities_to_raw(entities: List[RawExtractedEntity]) -> List[Dict[str, Any]]:
    """Echo entities back in the service's own camelCase shape."""
    return [
        entity.model_dump(by_alias=True, exclude={'children'}, exclude_none=True)
        for entity in entities
    ]
