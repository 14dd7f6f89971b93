"""
Receipt normalizer service for turning extraction entities into receipts.

Input is the flat entity list from the expense parser (any processor
version); output is a NormalizedReceipt with per-field confidence.
Every function here is total: malformed entities degrade to defaults
and lower confidence, never to an exception.
"""

import logging
import re
from datetime import date
from decimal import Decimal
from typing import Optional, Dict, Any, List, Iterable

from taxvault.config import settings
from taxvault.models.entities import (
    RawExtractedEntity,
    EntityKind,
    LineItemField,
)
from taxvault.models.receipt import (
    NormalizedReceipt,
    LineItem,
    FieldConfidence,
    ReceiptWarning,
    WarningCode,
)
from taxvault.services.categorization import categorize_item
from taxvault.utils.candidates import FieldCandidate, create_field_candidate
from taxvault.utils.dates import normalize_date, parse_date_text
from taxvault.utils.money import (
    normalize_money,
    entity_currency,
    parse_amount_text,
    infer_tax_rate,
    ZERO,
)
from taxvault.utils.scoring import (
    prefer_candidate,
    select_top_candidates,
    is_low_confidence,
)

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r'-?\d+')

# Entity kinds whose value is a Decimal amount
_MONEY_KINDS = (
    EntityKind.TOTAL_AMOUNT,
    EntityKind.SUBTOTAL,
    EntityKind.TAX_AMOUNT,
    EntityKind.SERVICE_CHARGE,
    EntityKind.ROUNDING,
)


def parse_quantity(text: Optional[str]) -> int:
    """Leading integer of a quantity string; 1 when absent or below 1."""
    match = _LEADING_INT.search(text or '')
    if not match:
        return 1
    quantity = int(match.group(0))
    return quantity if quantity >= 1 else 1


class ReceiptNormalizer:
    """Service for mapping extraction entities onto the receipt model."""

    SYNTHETIC_ITEM_NAME = "Receipt Total"
    ADDRESS_FALLBACK_CONFIDENCE = 0.5

    def __init__(self, fallback_confidence: Optional[float] = None):
        self.fallback_confidence = (
            settings.FALLBACK_CONFIDENCE if fallback_confidence is None else fallback_confidence
        )

    def normalize(
        self,
        entities: Iterable[RawExtractedEntity],
        today: Optional[date] = None,
        _debug: Optional[Dict[str, Any]] = None
    ) -> NormalizedReceipt:
        """
        Normalize one extraction call's entities.

        Args:
            entities: Entities in service order
            today: Clock for the date fallback (tests inject a fixed day)
            _debug: Optional dict receiving selection metadata

        Returns:
            NormalizedReceipt draft
        """
        today = today or date.today()
        if _debug is not None:
            _debug.setdefault('fallbacks', [])
            _debug.setdefault('discarded_line_items', [])
            _debug.setdefault('ignored_kinds', [])
            _debug.setdefault('candidates', {})

        best: Dict[EntityKind, FieldCandidate] = {}
        line_items: List[LineItem] = []
        line_item_confidence = 0.0

        for entity in entities:
            kind = entity.entity_kind

            if kind == EntityKind.LINE_ITEM:
                item = self._map_line_item(entity, item_id=f"item-{len(line_items) + 1}")
                if item is None:
                    logger.debug("Discarded line item without name or price", extra={
                        "text": entity.text
                    })
                    if _debug is not None:
                        _debug['discarded_line_items'].append(entity.text)
                    continue
                line_items.append(item)
                line_item_confidence = max(line_item_confidence, entity.confidence)
                continue

            if kind == EntityKind.UNKNOWN:
                # New processor schemas add kinds; ignoring keeps us forward-compatible
                if _debug is not None:
                    _debug['ignored_kinds'].append(entity.kind)
                continue

            candidate = self._to_candidate(kind, entity, today)
            best[kind] = prefer_candidate(best.get(kind), candidate)
            if _debug is not None:
                _debug['candidates'].setdefault(kind.value, []).append(candidate)

        receipt = self._assemble(best, line_items, line_item_confidence, today, _debug)

        if _debug is not None:
            _debug['review_candidates'] = {
                kind: [
                    {'value': str(c.value), 'confidence': score, 'kind': c.kind}
                    for c, score in select_top_candidates(candidates)
                ]
                for kind, candidates in _debug.pop('candidates').items()
                if len(candidates) > 1
            }

        return receipt

    def _to_candidate(
        self,
        kind: EntityKind,
        entity: RawExtractedEntity,
        today: date
    ) -> FieldCandidate:
        if kind in _MONEY_KINDS:
            return create_field_candidate(
                normalize_money(entity), entity, currency=entity_currency(entity)
            )
        if kind == EntityKind.RECEIPT_DATE:
            return create_field_candidate(normalize_date(entity, today=today), entity)
        if kind == EntityKind.CURRENCY:
            return create_field_candidate(entity.text.strip().upper() or None, entity)
        return create_field_candidate(entity.text.strip(), entity)

    def _assemble(
        self,
        best: Dict[EntityKind, FieldCandidate],
        line_items: List[LineItem],
        line_item_confidence: float,
        today: date,
        _debug: Optional[Dict[str, Any]]
    ) -> NormalizedReceipt:
        def value_of(kind: EntityKind):
            candidate = best.get(kind)
            return candidate.value if candidate else None

        def confidence_of(kind: EntityKind) -> float:
            candidate = best.get(kind)
            return candidate.confidence if candidate else 0.0

        confidence = FieldConfidence(
            merchant=confidence_of(EntityKind.MERCHANT_NAME),
            date=confidence_of(EntityKind.RECEIPT_DATE),
            total_amount=confidence_of(EntityKind.TOTAL_AMOUNT),
            line_items=line_item_confidence,
            tax=confidence_of(EntityKind.TAX_AMOUNT),
        )

        merchant = value_of(EntityKind.MERCHANT_NAME) or ""
        address = value_of(EntityKind.MERCHANT_ADDRESS) or None
        if not merchant and address:
            merchant = address.split('\n')[0].strip()
            confidence.merchant = min(
                self.ADDRESS_FALLBACK_CONFIDENCE, confidence_of(EntityKind.MERCHANT_ADDRESS)
            )
            self._note_fallback(_debug, 'merchant_from_address')

        currency = value_of(EntityKind.CURRENCY)
        total_candidate = best.get(EntityKind.TOTAL_AMOUNT)
        if not currency and total_candidate and total_candidate.currency:
            currency = total_candidate.currency
            self._note_fallback(_debug, 'currency_from_total')

        total_amount = value_of(EntityKind.TOTAL_AMOUNT) or ZERO
        subtotal = value_of(EntityKind.SUBTOTAL)
        tax_amount = value_of(EntityKind.TAX_AMOUNT)

        tax_rate = None
        if tax_amount:
            if subtotal:
                tax_rate = infer_tax_rate(subtotal + tax_amount, tax_amount)
            elif total_amount:
                tax_rate = infer_tax_rate(total_amount, tax_amount)

        if not line_items and total_amount > 0:
            line_items.append(LineItem(
                id="item-1",
                name=self.SYNTHETIC_ITEM_NAME,
                quantity=1,
                unit_price=total_amount,
            ))
            confidence.line_items = self.fallback_confidence
            self._note_fallback(_debug, 'synthetic_line_item')

        receipt_date = value_of(EntityKind.RECEIPT_DATE) or today.isoformat()

        if _debug is not None:
            _debug['confidence_per_field'] = confidence.model_dump()

        return NormalizedReceipt(
            merchant=merchant,
            merchant_address=address,
            date=receipt_date,
            currency=currency,
            total_amount=total_amount,
            subtotal=subtotal,
            tax_amount=tax_amount,
            tax_rate=tax_rate,
            service_charge_amount=value_of(EntityKind.SERVICE_CHARGE),
            rounding=value_of(EntityKind.ROUNDING),
            line_items=line_items,
            confidence=confidence,
        )

    def _map_line_item(self, entity: RawExtractedEntity, item_id: str) -> Optional[LineItem]:
        """
        Expand a line_item entity from its child sub-fields.

        Amount is only used when unit price is absent, divided by quantity.
        Items with no name or a non-positive unit price are noise.
        """
        name = ""
        quantity = 1
        unit_price: Optional[Decimal] = None
        amount: Optional[Decimal] = None

        for child in entity.children:
            sub_field = LineItemField.from_raw(child.kind)
            if sub_field == LineItemField.DESCRIPTION:
                name = child.text.strip() or name
            elif sub_field == LineItemField.QUANTITY:
                quantity = parse_quantity(child.text)
            elif sub_field == LineItemField.UNIT_PRICE:
                unit_price = normalize_money(child)
            elif sub_field == LineItemField.AMOUNT:
                amount = normalize_money(child)

        if not unit_price and amount:
            unit_price = amount / quantity

        if not name or unit_price is None or unit_price <= 0:
            return None

        return LineItem(
            id=item_id,
            name=name,
            quantity=quantity,
            unit_price=unit_price,
            product_tags=categorize_item(name),
        )

    @staticmethod
    def _note_fallback(_debug: Optional[Dict[str, Any]], name: str) -> None:
        logger.debug("Normalization fallback applied", extra={"fallback": name})
        if _debug is not None:
            _debug['fallbacks'].append(name)


def normalize(
    entities: Iterable[RawExtractedEntity],
    today: Optional[date] = None
) -> NormalizedReceipt:
    """Module-level shortcut for ReceiptNormalizer().normalize()."""
    return ReceiptNormalizer().normalize(entities, today=today)


def low_confidence_warnings(
    receipt: NormalizedReceipt,
    threshold: Optional[float] = None
) -> List[ReceiptWarning]:
    """One LowConfidenceField hint per tracked field below threshold."""
    warnings = []
    for field_name, score in receipt.confidence.model_dump().items():
        if is_low_confidence(score, threshold):
            warnings.append(ReceiptWarning(
                code=WarningCode.LOW_CONFIDENCE_FIELD,
                field=field_name,
                message=f"Please double-check {field_name.replace('_', ' ')} "
                        f"(confidence {score:.0%})",
            ))
    return warnings


def summarize_entities(entities: Iterable[RawExtractedEntity]) -> Dict[str, Any]:
    """
    Build the flat extraction summary returned by /parse-receipt.

    Keys: total_amount, supplier_name, receipt_date, currency, line_items,
    confidence_scores. Competing synonyms keep the most confident entity.
    """
    best: Dict[str, FieldCandidate] = {}
    line_items: List[Dict[str, Any]] = []

    for entity in entities:
        kind = entity.entity_kind
        if kind == EntityKind.TOTAL_AMOUNT:
            candidate = create_field_candidate(
                normalize_money(entity), entity, currency=entity_currency(entity)
            )
            best['total_amount'] = prefer_candidate(best.get('total_amount'), candidate)
        elif kind == EntityKind.MERCHANT_NAME:
            candidate = create_field_candidate(entity.text.strip(), entity)
            best['supplier_name'] = prefer_candidate(best.get('supplier_name'), candidate)
        elif kind == EntityKind.RECEIPT_DATE:
            if entity.date_parts is not None:
                value = normalize_date(entity)
            else:
                value = parse_date_text(entity.text) or entity.text.strip()
            candidate = create_field_candidate(value, entity)
            best['receipt_date'] = prefer_candidate(best.get('receipt_date'), candidate)
        elif kind == EntityKind.CURRENCY:
            candidate = create_field_candidate(entity.text.strip().upper(), entity)
            best['currency'] = prefer_candidate(best.get('currency'), candidate)
        elif kind == EntityKind.LINE_ITEM:
            summary = _summarize_line_item(entity)
            if summary:
                line_items.append(summary)

    currency = best['currency'].value if 'currency' in best else None
    if not currency and 'total_amount' in best:
        currency = best['total_amount'].currency

    return {
        'total_amount': best['total_amount'].value if 'total_amount' in best else None,
        'supplier_name': best['supplier_name'].value if 'supplier_name' in best else None,
        'receipt_date': best['receipt_date'].value if 'receipt_date' in best else None,
        'currency': currency,
        'line_items': line_items,
        'confidence_scores': {field: c.confidence for field, c in best.items()},
    }


def _summarize_line_item(entity: RawExtractedEntity) -> Optional[Dict[str, Any]]:
    summary: Dict[str, Any] = {
        'description': None,
        'quantity': None,
        'unit_price': None,
        'amount': None,
    }
    for child in entity.children:
        sub_field = LineItemField.from_raw(child.kind)
        if sub_field == LineItemField.DESCRIPTION:
            summary['description'] = child.text.strip() or None
        elif sub_field == LineItemField.QUANTITY:
            summary['quantity'] = parse_quantity(child.text)
        elif sub_field == LineItemField.UNIT_PRICE:
            summary['unit_price'], _ = parse_amount_text(child.text)
        elif sub_field == LineItemField.AMOUNT:
            summary['amount'], _ = parse_amount_text(child.text)

    if summary['description'] or summary['amount']:
        return summary
    return None
