"""
Pydantic models for receipts and line items.
"""

from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional, List, Union, Literal

from pydantic import BaseModel, Field, model_validator, model_serializer

from taxvault.models.lhdn import LhdnTag


class Excluded(BaseModel):
    """Item does not participate in tax relief."""
    state: Literal['excluded'] = 'excluded'

    class Config:
        frozen = True


class Claimable(BaseModel):
    """Item is claimed under one category; auto_assigned records who chose it."""
    state: Literal['claimable'] = 'claimable'
    tag: LhdnTag
    auto_assigned: bool = False

    class Config:
        frozen = True


ClaimStatus = Annotated[Union[Excluded, Claimable], Field(discriminator='state')]


class LineItem(BaseModel):
    """
    One purchasable line on a receipt.

    Claim state is a single field so a tag can never outlive its claim.
    The flat claimable/tag/auto_assigned shape is still accepted on input
    and produced on output for storage and UI consumers.
    """
    id: str
    name: str = ""
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    claim: ClaimStatus = Field(default_factory=Excluded)
    product_tags: List[str] = Field(default_factory=list)

    class Config:
        validate_assignment = True

    @model_validator(mode='before')
    @classmethod
    def _accept_flat_claim(cls, data):
        if not isinstance(data, dict) or 'claim' in data:
            return data
        data = dict(data)
        # Legacy client keys
        if 'qty' in data and 'quantity' not in data:
            data['quantity'] = data.pop('qty')
        if 'unit' in data and 'unit_price' not in data:
            data['unit_price'] = data.pop('unit')
        if 'productTags' in data and 'product_tags' not in data:
            data['product_tags'] = data.pop('productTags')

        claimable = data.pop('claimable', False)
        tag = data.pop('tag', None)
        auto_assigned = data.pop('auto_assigned', data.pop('autoAssigned', None))
        if claimable and tag:
            data['claim'] = {'state': 'claimable', 'tag': tag, 'auto_assigned': bool(auto_assigned)}
        else:
            data['claim'] = {'state': 'excluded'}
        return data

    @model_serializer(mode='wrap')
    def _flatten_claim(self, handler):
        data = handler(self)
        data.pop('claim', None)
        data['claimable'] = self.claimable
        data['tag'] = self.tag.value if self.tag else None
        data['auto_assigned'] = self.auto_assigned
        return data

    @property
    def claimable(self) -> bool:
        return isinstance(self.claim, Claimable)

    @property
    def tag(self) -> Optional[LhdnTag]:
        return self.claim.tag if isinstance(self.claim, Claimable) else None

    @property
    def auto_assigned(self) -> Optional[bool]:
        return self.claim.auto_assigned if isinstance(self.claim, Claimable) else None

    @property
    def amount(self) -> Decimal:
        """Always derived; never stored."""
        return self.quantity * self.unit_price


def claimed_tags(items: List[LineItem]) -> List[LhdnTag]:
    """Distinct tags of the claimed items, in first-claimed order."""
    return list(dict.fromkeys(item.tag for item in items if item.claimable))


class FieldConfidence(BaseModel):
    """Highest contributing entity confidence per tracked field."""
    merchant: float = Field(default=0.0, ge=0.0, le=1.0)
    date: float = Field(default=0.0, ge=0.0, le=1.0)
    total_amount: float = Field(default=0.0, ge=0.0, le=1.0)
    line_items: float = Field(default=0.0, ge=0.0, le=1.0)
    tax: float = Field(default=0.0, ge=0.0, le=1.0)

    class Config:
        validate_assignment = True


class NormalizedReceipt(BaseModel):
    """Canonical output of entity normalization; a mutable draft until saved."""
    merchant: str = ""
    merchant_address: Optional[str] = None
    date: str  # YYYY-MM-DD
    currency: Optional[str] = None
    total_amount: Decimal = Decimal("0")
    subtotal: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None  # percent, e.g. 6
    service_charge_amount: Optional[Decimal] = None
    service_charge_rate: Optional[Decimal] = None  # percent, e.g. 10
    rounding: Optional[Decimal] = None
    line_items: List[LineItem] = Field(default_factory=list)
    confidence: FieldConfidence = Field(default_factory=FieldConfidence)

    class Config:
        validate_assignment = True

    def find_item(self, item_id: str) -> Optional[LineItem]:
        for item in self.line_items:
            if item.id == item_id:
                return item
        return None


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class Receipt(NormalizedReceipt):
    """Committed, persisted receipt."""
    id: str
    user_id: str
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    tags: List[LhdnTag] = Field(default_factory=list)  # receipt-level, coarse
    claimable: bool = False
    verification_status: VerificationStatus = VerificationStatus.PENDING
    upload_timestamp: Optional[str] = None  # ISO 8601

    @property
    def year(self) -> Optional[int]:
        try:
            return int(self.date[:4])
        except (TypeError, ValueError):
            return None


class WarningCode(str, Enum):
    LOW_CONFIDENCE_FIELD = "low_confidence_field"
    RECONCILIATION_MISMATCH = "reconciliation_mismatch"
    CAP_EXCEEDED = "cap_exceeded"
    SUB_LIMIT_EXCEEDED = "sub_limit_exceeded"
    EXTRACTION_UNAVAILABLE = "extraction_unavailable"
    TYPICALLY_INELIGIBLE = "typically_ineligible"
    MISCATEGORIZED = "miscategorized"
    INTEGRITY = "integrity"


class ReceiptWarning(BaseModel):
    """Non-blocking review hint surfaced to the UI."""
    code: WarningCode
    message: str
    field: Optional[str] = None
