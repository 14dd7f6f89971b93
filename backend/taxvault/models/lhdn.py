"""
Static LHDN tax-relief catalog (Year of Assessment 2025).

Limits are configuration, not law: the ledger reports against whatever
is encoded here. Eligibility text is for display and audit messages only;
machine classification lives in services/classifier.py.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple


class LhdnTag(str, Enum):
    """Tax-relief category a line item can be claimed under."""
    MEDICAL = "Medical"
    LIFESTYLE = "Lifestyle"
    EDUCATION = "Education"
    SPORTS = "Sports"
    CHILDCARE = "Childcare"
    BOOKS = "Books"
    OTHERS = "Others"


@dataclass(frozen=True)
class SubLimit:
    """A named cap nested inside a category cap, matched on item-name keywords."""
    name: str
    limit: Decimal
    keywords: Tuple[str, ...]

    def matches(self, item_name: str) -> bool:
        lower_name = item_name.lower()
        return any(kw in lower_name for kw in self.keywords)


@dataclass(frozen=True)
class LhdnCategory:
    tag: LhdnTag
    annual_limit: Optional[Decimal]  # None = unlimited
    sub_limits: Tuple[SubLimit, ...] = ()
    eligible: Tuple[str, ...] = ()
    not_eligible: Tuple[str, ...] = ()
    condition: Optional[str] = None

    def sub_limit_for(self, item_name: str) -> Optional[SubLimit]:
        """First sub-limit whose keywords match the item name."""
        for sub_limit in self.sub_limits:
            if sub_limit.matches(item_name):
                return sub_limit
        return None


LHDN_CATEGORIES: Dict[LhdnTag, LhdnCategory] = {
    LhdnTag.MEDICAL: LhdnCategory(
        tag=LhdnTag.MEDICAL,
        annual_limit=Decimal("10000"),
        sub_limits=(
            SubLimit("vaccination", Decimal("1000"), ('vaccin',)),
            SubLimit("dental", Decimal("1000"), ('dental', 'dentist', 'scaling')),
            SubLimit("medical_examination", Decimal("1000"), (
                'check-up', 'checkup', 'medical examination', 'health screening',
                'screening', 'blood test', 'self-test', 'test kit',
            )),
            SubLimit("learning_disability", Decimal("6000"), (
                'learning disabilit', 'autism', 'adhd', 'dyslexia', 'early intervention',
            )),
        ),
        eligible=(
            'Serious illness treatment',
            'Fertility treatment',
            'Vaccination (RM1,000 sub-limit)',
            'Dental examination and treatment (RM1,000 sub-limit)',
            'Full medical check-up (RM1,000 sub-limit)',
            'Disease screening tests',
            'Mental health screening/consultation',
            'Self-health monitoring equipment',
            'Self-testing kits',
            'Learning disability diagnosis/rehabilitation, child 18 and below (RM6,000 sub-limit)',
        ),
        not_eligible=(
            'Vitamins and supplements',
            'General health products',
            'Personal care products',
            'Skincare',
            'Cosmetics',
        ),
        condition='Self, spouse or child',
    ),
    LhdnTag.LIFESTYLE: LhdnCategory(
        tag=LhdnTag.LIFESTYLE,
        annual_limit=Decimal("2500"),
        eligible=(
            'Books and reading materials',
            'Personal computer/laptop',
            'Smartphone',
            'Tablet',
            'Internet subscription',
            'Skills enhancement and self-development courses',
        ),
        not_eligible=(
            'Gaming consoles',
            'Smart TV',
            'Audio equipment',
            'Cameras',
            'Device accessories (cases, chargers, cables)',
        ),
    ),
    LhdnTag.BOOKS: LhdnCategory(
        tag=LhdnTag.BOOKS,
        annual_limit=Decimal("2500"),
        eligible=(
            'Books, journals and magazines',
            'Printed newspapers',
            'E-books',
        ),
    ),
    LhdnTag.SPORTS: LhdnCategory(
        tag=LhdnTag.SPORTS,
        annual_limit=Decimal("1000"),
        eligible=(
            'Sports equipment for sports activities',
            'Rental/entrance fees to sports facilities',
            'Sports competition registration fees',
            'Gym membership fees',
            'Sports training fees',
        ),
        not_eligible=(
            'Sports apparel/clothing',
            'Sports accessories (bags, bottles)',
            'Smartwatches',
        ),
    ),
    LhdnTag.EDUCATION: LhdnCategory(
        tag=LhdnTag.EDUCATION,
        annual_limit=Decimal("7000"),
        sub_limits=(
            SubLimit("skills_enhancement", Decimal("2000"), (
                'short course', 'skills', 'upskill', 'workshop', 'bootcamp',
            )),
        ),
        eligible=(
            'Tertiary education fees (other than Masters/PhD)',
            'Masters degree fees',
            'Doctor of Philosophy (PhD) fees',
            'Professional certifications',
            'Upskilling/self-enhancement courses (RM2,000 sub-limit)',
        ),
        not_eligible=(
            'Primary/secondary school fees',
            'Tuition fees (non-tertiary)',
        ),
    ),
    LhdnTag.CHILDCARE: LhdnCategory(
        tag=LhdnTag.CHILDCARE,
        annual_limit=Decimal("3000"),
        eligible=(
            'Registered childcare centre (TASKA) fees',
            'Kindergarten (TADIKA) fees',
        ),
        not_eligible=(
            'Babysitter fees (unregistered)',
            'Nanny fees',
        ),
        condition='Child aged 6 years and below',
    ),
    LhdnTag.OTHERS: LhdnCategory(
        tag=LhdnTag.OTHERS,
        annual_limit=None,
    ),
}


def get_category(tag: LhdnTag) -> LhdnCategory:
    return LHDN_CATEGORIES[LhdnTag(tag)]


def get_category_limit(tag: LhdnTag) -> Optional[Decimal]:
    return get_category(tag).annual_limit
