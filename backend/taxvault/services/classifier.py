"""
LHDN tax-relief classification.

Keyword heuristics only propose a tag; an explicit tag from the user
always wins. Nothing in here mutates a line item.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from taxvault.models.lhdn import LhdnTag
from taxvault.models.receipt import Claimable, LineItem, ReceiptWarning, WarningCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeywordRule:
    keywords: Tuple[str, ...]
    merchant_types: Tuple[str, ...] = ()
    exclude_keywords: Tuple[str, ...] = ()


# Checked in this order; first category whose keywords match wins
KEYWORD_DATABASE: Dict[LhdnTag, KeywordRule] = {
    LhdnTag.MEDICAL: KeywordRule(
        keywords=(
            'prescription', 'diagnostic', 'vaccine', 'vaccination', 'dental', 'checkup', 'check-up',
            'screening', 'consultation', 'treatment', 'medicine', 'pharmacy', 'medical', 'clinic',
            'hospital', 'doctor', 'blood test', 'x-ray', 'mri', 'ct scan', 'ultrasound', 'therapy',
            'physiotherapy', 'mental health', 'counseling', 'psychiatrist', 'psychologist',
            'health monitoring', 'glucose meter', 'blood pressure', 'thermometer', 'oximeter',
            'test kit', 'covid test', 'antigen', 'pcr', 'fertility', 'ivf',
        ),
        merchant_types=('Pharmacy & Health', 'Hospital', 'Clinic'),
        exclude_keywords=(
            'vitamin', 'supplement', 'multivitamin', 'fish oil', 'probiotics', 'omega',
            'collagen', 'skincare', 'shampoo', 'lotion', 'cream', 'makeup', 'cosmetic',
        ),
    ),
    LhdnTag.LIFESTYLE: KeywordRule(
        keywords=(
            'laptop', 'computer', 'pc', 'macbook', 'notebook', 'smartphone', 'phone', 'iphone',
            'samsung galaxy', 'tablet', 'ipad', 'internet', 'wifi', 'broadband', 'fibre', 'unifi',
            'maxis', 'celcom', 'digi', 'subscription', 'course', 'training', 'workshop',
            'seminar', 'udemy', 'coursera', 'self-development', 'online learning',
        ),
        merchant_types=('Electronics', 'Mobile & Gadgets', 'Computer & IT'),
        exclude_keywords=(
            'case', 'cover', 'charger', 'cable', 'adapter', 'screen protector',
            'keyboard', 'mouse', 'stand', 'gaming', 'playstation', 'xbox', 'nintendo',
            'tv', 'television', 'smart tv', 'speaker', 'headphone', 'earphone', 'airpod',
        ),
    ),
    LhdnTag.BOOKS: KeywordRule(
        keywords=(
            'book', 'novel', 'textbook', 'magazine', 'newspaper', 'ebook', 'kindle', 'reading',
            'journal', 'publication', 'education material', 'reference book', 'comic', 'manga',
            'encyclopedia', 'dictionary', 'atlas',
        ),
        merchant_types=('Bookstore',),
    ),
    LhdnTag.SPORTS: KeywordRule(
        keywords=(
            'gym', 'fitness', 'yoga', 'pilates', 'sports', 'badminton', 'swimming', 'running',
            'jogging', 'cycling', 'bicycle', 'tennis', 'squash', 'golf', 'football', 'futsal',
            'basketball', 'volleyball', 'martial arts', 'taekwondo', 'karate', 'muay thai',
            'racket', 'shuttlecock', 'dumbbell', 'treadmill',
        ),
        merchant_types=('Sports & Fitness',),
        exclude_keywords=(
            'jersey', 'shoes', 'sneaker', 'apparel', 'clothing', 'bag', 'bottle',
            'smartwatch', 'watch', 'garmin', 'fitbit',
        ),
    ),
    LhdnTag.EDUCATION: KeywordRule(
        keywords=(
            'tuition fee', 'course fee', 'university', 'college', 'degree', 'masters', 'phd',
            'diploma', 'certificate', 'professional', 'cpa', 'acca', 'cfa', 'certification',
            'exam fee', 'registration fee', 'semester', 'academic', 'faculty',
        ),
    ),
    LhdnTag.CHILDCARE: KeywordRule(
        keywords=(
            'taska', 'tadika', 'childcare', 'kindergarten', 'nursery', 'preschool', 'daycare',
            'child care', 'early childhood', 'playgroup',
        ),
    ),
}

SUPPLEMENT_KEYWORDS = ('vitamin', 'supplement', 'multivitamin', 'fish oil', 'probiotics', 'omega', 'collagen')
ACCESSORY_KEYWORDS = (
    'pencil', 'case', 'charger', 'adapter', 'cable', 'screen protector', 'keyboard', 'mouse', 'stand',
)
PERSONAL_CARE_KEYWORDS = ('skincare', 'shampoo', 'lotion', 'cream', 'makeup', 'cosmetic', 'perfume')

# Gadgets, books and courses never belong under Medical
NOT_MEDICAL_KEYWORDS = (
    'laptop', 'computer', 'phone', 'smartphone', 'tablet', 'ipad', 'macbook',
    'book', 'magazine', 'newspaper', 'ebook', 'course', 'training', 'internet', 'wifi', 'broadband',
)
MEDICAL_ONLY_KEYWORDS = (
    'vaccine', 'vaccination', 'checkup', 'check-up', 'treatment', 'surgery',
    'dental', 'clinic', 'hospital', 'doctor', 'prescription', 'physiotherapy', 'fertility',
)


def _contains_any(lower_name: str, keywords) -> bool:
    return any(kw in lower_name for kw in keywords)


@dataclass(frozen=True)
class ClassificationResult:
    tag: Optional[LhdnTag]
    auto_assigned: bool


@dataclass(frozen=True)
class AutoTagResult:
    tag: Optional[LhdnTag]
    claimable: bool
    confidence: str  # high | medium | low
    auto_assigned: bool


@dataclass(frozen=True)
class IneligibilityCheck:
    ineligible: bool
    reason: Optional[str] = None
    suggested_action: Optional[str] = None

    def to_warning(self, field: str = 'tag') -> Optional[ReceiptWarning]:
        if not self.ineligible:
            return None
        return ReceiptWarning(code=WarningCode.TYPICALLY_INELIGIBLE, field=field, message=self.reason)


@dataclass(frozen=True)
class CategorizationCheck:
    is_valid: bool
    correct_tag: Optional[LhdnTag] = None
    reason: Optional[str] = None

    def to_warning(self, field: str = 'tag') -> Optional[ReceiptWarning]:
        if self.is_valid:
            return None
        return ReceiptWarning(code=WarningCode.MISCATEGORIZED, field=field, message=self.reason)


@dataclass(frozen=True)
class ExclusionNote:
    """Why an unclaimed item is not in the relief total."""
    item_id: str
    item_name: str
    reason: str


def _is_explicitly_ineligible(lower_name: str) -> bool:
    return (
        _contains_any(lower_name, SUPPLEMENT_KEYWORDS)
        or _contains_any(lower_name, PERSONAL_CARE_KEYWORDS)
    )


def auto_tag(item_name: str, merchant_category: Optional[str] = None) -> AutoTagResult:
    """
    Propose a tax-relief tag from the item name and merchant category.

    Supplements and personal care are rejected outright. Otherwise the
    first category whose keywords match (and whose exclude keywords do
    not) is proposed; a pharmacy-type merchant alone yields a
    low-confidence Medical guess.
    """
    lower_name = (item_name or "").lower()

    if _is_explicitly_ineligible(lower_name):
        return AutoTagResult(tag=None, claimable=False, confidence='high', auto_assigned=True)

    for tag, rule in KEYWORD_DATABASE.items():
        if _contains_any(lower_name, rule.exclude_keywords):
            continue

        merchant_match = bool(merchant_category) and any(
            mt in merchant_category for mt in rule.merchant_types
        )

        if _contains_any(lower_name, rule.keywords):
            return AutoTagResult(
                tag=tag,
                claimable=True,
                confidence='high' if merchant_match else 'medium',
                auto_assigned=True,
            )

        if merchant_match and tag == LhdnTag.MEDICAL:
            return AutoTagResult(tag=tag, claimable=True, confidence='low', auto_assigned=True)

    return AutoTagResult(tag=None, claimable=False, confidence='low', auto_assigned=False)


def classify(item: LineItem, explicit_tag: Optional[LhdnTag] = None) -> ClassificationResult:
    """
    Decide the tag for an item.

    An explicit tag is used verbatim (auto_assigned=False). Without one,
    the keyword heuristic may propose a tag (auto_assigned=True); no
    match returns tag=None.
    """
    if explicit_tag is not None:
        return ClassificationResult(tag=LhdnTag(explicit_tag), auto_assigned=False)

    proposal = auto_tag(item.name)
    if proposal.tag is None:
        return ClassificationResult(tag=None, auto_assigned=False)
    return ClassificationResult(tag=proposal.tag, auto_assigned=True)


def is_typically_ineligible(item_name: str, tag: Optional[LhdnTag] = None) -> IneligibilityCheck:
    """
    Advisory check shown before the user confirms a claim.

    Supplements and personal care are flagged under any category;
    accessories only under Lifestyle.
    """
    lower_name = (item_name or "").lower()

    if _contains_any(lower_name, SUPPLEMENT_KEYWORDS):
        return IneligibilityCheck(
            ineligible=True,
            reason='LHDN guidelines usually exclude supplements and vitamins from medical relief.',
            suggested_action='Consider unchecking claimable status.',
        )

    if _contains_any(lower_name, PERSONAL_CARE_KEYWORDS):
        return IneligibilityCheck(
            ineligible=True,
            reason='Personal care items are not eligible for tax relief.',
            suggested_action='Consider unchecking claimable status.',
        )

    if tag is not None and LhdnTag(tag) == LhdnTag.LIFESTYLE and _contains_any(lower_name, ACCESSORY_KEYWORDS):
        return IneligibilityCheck(
            ineligible=True,
            reason='Accessories like cases and chargers are usually not claimable under Lifestyle.',
            suggested_action='Only primary devices (phone, tablet, laptop) qualify.',
        )

    return IneligibilityCheck(ineligible=False)


def exclusion_reason(item_name: str, tag: Optional[LhdnTag] = None, claimable: bool = False) -> Optional[str]:
    """Short label explaining why an item is not claimed, for the audit breakdown."""
    if claimable:
        return None

    lower_name = (item_name or "").lower()
    if _contains_any(lower_name, SUPPLEMENT_KEYWORDS):
        return 'Non-medical supplement'
    if _contains_any(lower_name, PERSONAL_CARE_KEYWORDS):
        return 'Personal care item'
    if _contains_any(lower_name, ACCESSORY_KEYWORDS):
        return 'Accessory only'
    if tag is None:
        return 'No tax category matched'
    return None


def validate_categorization(item_name: str, assigned_tag: LhdnTag) -> CategorizationCheck:
    lower_name = (item_name or "").lower()
    assigned_tag = LhdnTag(assigned_tag)

    if assigned_tag == LhdnTag.MEDICAL and _contains_any(lower_name, NOT_MEDICAL_KEYWORDS):
        return CategorizationCheck(
            is_valid=False,
            correct_tag=LhdnTag.LIFESTYLE,
            reason='Gadgets, books, and courses belong to Lifestyle (RM 2,500), not Medical relief.',
        )

    if assigned_tag == LhdnTag.LIFESTYLE and _contains_any(lower_name, MEDICAL_ONLY_KEYWORDS):
        return CategorizationCheck(
            is_valid=False,
            correct_tag=LhdnTag.MEDICAL,
            reason='Health treatments and checkups belong to Medical (RM 10,000), not Lifestyle.',
        )

    return CategorizationCheck(is_valid=True)


def auto_tag_items(items: List[LineItem], merchant_category: Optional[str] = None) -> List[LineItem]:
    """
    Import-time convenience: return copies of unclaimed items with a
    proposed claim applied. Items already claimed are left alone.
    """
    tagged = []
    for item in items:
        if item.claimable:
            tagged.append(item)
            continue
        proposal = auto_tag(item.name, merchant_category)
        if proposal.claimable and proposal.tag is not None:
            item = item.model_copy(update={'claim': Claimable(tag=proposal.tag, auto_assigned=True)})
            logger.debug("Auto-tagged line item", extra={
                "item_id": item.id, "tag": proposal.tag.value, "confidence": proposal.confidence,
            })
        tagged.append(item)
    return tagged


def review_claims(items: List[LineItem]) -> List[ReceiptWarning]:
    """
    Advisory warnings for claimed items: typically-ineligible purchases
    and tags that look like the wrong category. Never changes a claim.
    """
    warnings = []
    for item in items:
        if not item.claimable:
            continue
        field = f"line_items.{item.id}"
        for warning in (
            is_typically_ineligible(item.name, item.tag).to_warning(field),
            validate_categorization(item.name, item.tag).to_warning(field),
        ):
            if warning is not None:
                warnings.append(warning)
    return warnings


def exclusion_notes(items: List[LineItem]) -> List[ExclusionNote]:
    notes = []
    for item in items:
        reason = exclusion_reason(item.name, item.tag, item.claimable)
        if reason is not None:
            notes.append(ExclusionNote(item_id=item.id, item_name=item.name, reason=reason))
    return notes
