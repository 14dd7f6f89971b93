"""
Display-only product tags for line items (Seafood, Dairy, ...).

Unrelated to tax relief: nothing in the classifier or ledger reads these.
"""

import re
from typing import List, Tuple

# First matching rule wins
PRODUCT_TAG_RULES: Tuple[Tuple[re.Pattern, Tuple[str, ...]], ...] = (
    (re.compile(r'salmon|fish|prawn|crab|seafood'), ('Seafood', 'Fresh')),
    (re.compile(r'chicken|meat|beef|lamb|poultry'), ('Meat', 'Protein')),
    (re.compile(r'milk|cheese|yogurt|butter|dairy'), ('Dairy',)),
    (re.compile(r'vegetable|spinach|carrot|lettuce'), ('Produce', 'Vegetable')),
    (re.compile(r'apple|grape|orange|fruit'), ('Fruit',)),
    (re.compile(r'bread|cake|pastry|bakery|croissant'), ('Bakery',)),
    (re.compile(r'rice|noodle|pasta'), ('Pantry',)),
    (re.compile(r'coffee|tea|latte|macchiato|drink|beverage'), ('Beverage',)),
    (re.compile(r'soap|shampoo|detergent|clean'), ('Household',)),
)


def categorize_item(name: str) -> List[str]:
    """Keyword-based product tags for an item name; empty when nothing matches."""
    lower_name = (name or '').lower()
    for pattern, tags in PRODUCT_TAG_RULES:
        if pattern.search(lower_name):
            return list(tags)
    return []
