"""
Pydantic models for raw extraction entities.

Mirrors the Document AI expense-parser entity shape (type, mentionText,
confidence, normalizedValue, properties) while exposing pythonic field
names. Entities are frozen: they are evidence, never edited.
"""

from enum import Enum
from typing import Optional, List, Union

from pydantic import BaseModel, Field, field_validator


class EntityKind(str, Enum):
    """Logical buckets an extraction entity can land in."""
    MERCHANT_NAME = "merchant_name"
    MERCHANT_ADDRESS = "merchant_address"
    RECEIPT_DATE = "receipt_date"
    TOTAL_AMOUNT = "total_amount"
    SUBTOTAL = "subtotal"
    TAX_AMOUNT = "tax_amount"
    SERVICE_CHARGE = "service_charge"
    ROUNDING = "rounding"
    CURRENCY = "currency"
    LINE_ITEM = "line_item"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, raw_kind: Optional[str]) -> "EntityKind":
        """Map an extraction-service type string (any schema) to a bucket."""
        if not raw_kind:
            return cls.UNKNOWN
        return _KIND_SYNONYMS.get(raw_kind.strip().lower(), cls.UNKNOWN)


# Synonyms observed across expense-parser processor versions
_KIND_SYNONYMS = {
    'supplier_name': EntityKind.MERCHANT_NAME,
    'vendor_name': EntityKind.MERCHANT_NAME,
    'merchant_name': EntityKind.MERCHANT_NAME,
    'receiver_name': EntityKind.MERCHANT_NAME,
    'supplier_address': EntityKind.MERCHANT_ADDRESS,
    'merchant_address': EntityKind.MERCHANT_ADDRESS,
    'receipt_date': EntityKind.RECEIPT_DATE,
    'transaction_date': EntityKind.RECEIPT_DATE,
    'purchase_date': EntityKind.RECEIPT_DATE,
    'invoice_date': EntityKind.RECEIPT_DATE,
    'total_amount': EntityKind.TOTAL_AMOUNT,
    'total': EntityKind.TOTAL_AMOUNT,
    'subtotal': EntityKind.SUBTOTAL,
    'net_amount': EntityKind.TOTAL_AMOUNT,
    'total_tax_amount': EntityKind.TAX_AMOUNT,
    'tax_amount': EntityKind.TAX_AMOUNT,
    'sst_amount': EntityKind.TAX_AMOUNT,
    'service_charge': EntityKind.SERVICE_CHARGE,
    'service_charge_amount': EntityKind.SERVICE_CHARGE,
    'rounding_amount': EntityKind.ROUNDING,
    'rounding': EntityKind.ROUNDING,
    'currency': EntityKind.CURRENCY,
    'line_item': EntityKind.LINE_ITEM,
}


class LineItemField(str, Enum):
    """Sub-field kinds found under a line_item entity."""
    DESCRIPTION = "description"
    QUANTITY = "quantity"
    UNIT_PRICE = "unit_price"
    AMOUNT = "amount"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, raw_kind: Optional[str]) -> "LineItemField":
        if not raw_kind:
            return cls.UNKNOWN
        name = raw_kind.strip().lower()
        if name.startswith('line_item/'):
            name = name[len('line_item/'):]
        if name in ('description', 'product_description', 'product_code'):
            return cls.DESCRIPTION
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


class MoneyValue(BaseModel):
    """Structured money: integer major units plus fractional nanos."""
    currency_code: Optional[str] = Field(default=None, alias="currencyCode")
    units: Union[str, int] = "0"
    nanos: int = 0

    class Config:
        frozen = True
        populate_by_name = True


class DateValue(BaseModel):
    """Calendar date parts; any part may be missing on partial reads."""
    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None

    class Config:
        frozen = True


class NormalizedValue(BaseModel):
    """
    Service-side normalization of an entity.

    At most one of money_value / date_value is populated; text is the
    plain-text arm and may accompany either.
    """
    text: Optional[str] = None
    money_value: Optional[MoneyValue] = Field(default=None, alias="moneyValue")
    date_value: Optional[DateValue] = Field(default=None, alias="dateValue")

    class Config:
        frozen = True
        populate_by_name = True


class RawExtractedEntity(BaseModel):
    """One field produced by the extraction service."""
    kind: str = Field(default="", alias="type")
    text: str = Field(default="", alias="mentionText")
    confidence: float = 0.0
    normalized_value: Optional[NormalizedValue] = Field(default=None, alias="normalizedValue")
    children: List["RawExtractedEntity"] = Field(default_factory=list, alias="properties")

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator('confidence', mode='before')
    @classmethod
    def _clamp_confidence(cls, value):
        # Services occasionally report NaN or >1 for synthetic fields
        try:
            value = float(value or 0.0)
        except (TypeError, ValueError):
            return 0.0
        if value != value:
            return 0.0
        return max(0.0, min(1.0, value))

    @field_validator('kind', 'text', mode='before')
    @classmethod
    def _none_text(cls, value):
        return value if value is not None else ""

    @property
    def entity_kind(self) -> EntityKind:
        return EntityKind.from_raw(self.kind)

    @property
    def money(self) -> Optional[MoneyValue]:
        return self.normalized_value.money_value if self.normalized_value else None

    @property
    def date_parts(self) -> Optional[DateValue]:
        return self.normalized_value.date_value if self.normalized_value else None


RawExtractedEntity.model_rebuild()
