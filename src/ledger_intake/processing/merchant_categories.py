"""
Merchant -> ledger category mapping.

Used when a confirmation asks for the ``auto`` category. Specific patterns
are checked before the general map so that "amazon prime" lands in
entertainment rather than shopping.
"""

from typing import Optional

FALLBACK_CATEGORY = "other"

# Substring patterns checked first, in order
SPECIFIC_PATTERNS: list[tuple[str, str]] = [
    ("amazon prime", "entertainment"),
    ("prime video", "entertainment"),
    ("disney plus", "entertainment"),
    ("disney+", "entertainment"),
    ("hbo max", "entertainment"),
    ("paramount plus", "entertainment"),
    ("paramount+", "entertainment"),
    ("apple tv", "entertainment"),
    ("peacock", "entertainment"),
    ("hulu", "entertainment"),
    ("youtube premium", "entertainment"),
    ("whole foods", "food-dining"),
    ("trader joes", "food-dining"),
    ("trader joe", "food-dining"),
    ("planet fitness", "healthcare"),
    ("equinox", "healthcare"),
    ("orangetheory", "healthcare"),
    ("gympass", "healthcare"),
    ("anytime fitness", "healthcare"),
    ("at&t wireless", "utilities"),
    ("att wireless", "utilities"),
    ("at&t", "utilities"),
    ("att", "utilities"),
    ("austin energy", "utilities"),
    ("t-mobile", "utilities"),
    ("verizon", "utilities"),
    ("comcast", "utilities"),
    ("xfinity", "utilities"),
    ("spectrum", "utilities"),
    ("mtn", "utilities"),
    ("glo", "utilities"),
    ("airtel", "utilities"),
    ("9mobile", "utilities"),
]

_CATEGORY_MERCHANTS: dict[str, list[str]] = {
    "food-dining": [
        "whole foods", "trader joes", "kroger", "publix", "h-e-b", "heb", "costco",
        "aldi", "safeway", "chipotle", "chick-fil-a", "chickfila", "mcdonalds",
        "starbucks", "taco bell", "panda express", "wendys", "subway", "five guys",
        "in-n-out", "whataburger", "torchys", "uchi", "flemings", "jeffreys",
        "atlas coffee", "doordash", "grubhub", "uber eats", "ubereats", "instacart",
        "postmates", "chowdeck", "glovo", "jumia food", "shoprite", "spar", "bucees",
    ],
    "transportation": [
        "shell", "shell oil", "chevron", "exxon", "bp", "uber", "lyft", "bolt",
        "citgo", "marathon", "valero",
    ],
    "entertainment": [
        "netflix", "spotify", "apple music", "disney plus", "amazon prime", "hbo max",
        "hulu", "paramount plus", "apple tv", "peacock", "youtube", "amc theaters",
        "amc", "alamo drafthouse", "regal", "dstv", "gotv", "startimes",
    ],
    "utilities": [
        "austin energy", "att wireless", "at&t", "t-mobile", "verizon", "comcast",
        "xfinity", "spectrum", "texas gas", "mtn", "glo", "airtel", "9mobile",
    ],
    "shopping": [
        "amazon", "apple store", "apple", "best buy", "target", "walmart", "walgreens",
        "cvs pharmacy", "cvs", "home depot", "lowes", "ikea", "nordstrom", "macys",
        "jumia", "game stores",
    ],
    "healthcare": [
        "planet fitness", "equinox", "orangetheory", "gympass", "anytime fitness",
        "headspace", "calm", "strava",
    ],
}

MERCHANT_CATEGORY_MAP: dict[str, str] = {
    merchant: category
    for category, merchants in _CATEGORY_MERCHANTS.items()
    for merchant in merchants
}

# Short keys ("bp", "amc", "glo") only count as whole words
_MIN_SUBSTRING_LENGTH = 4


def _contains(haystack: str, needle: str) -> bool:
    if len(needle) < _MIN_SUBSTRING_LENGTH:
        return needle in haystack.split()
    return needle in haystack


def resolve_category(normalized_merchant: Optional[str]) -> str:
    """
    Category id for a normalized merchant, ``other`` when unknown.

    Order: specific patterns, exact map hit, then substring either way.
    """
    if not normalized_merchant:
        return FALLBACK_CATEGORY
    merchant = normalized_merchant.lower().strip()

    for pattern, category in SPECIFIC_PATTERNS:
        if _contains(merchant, pattern):
            return category

    if merchant in MERCHANT_CATEGORY_MAP:
        return MERCHANT_CATEGORY_MAP[merchant]

    for known, category in MERCHANT_CATEGORY_MAP.items():
        if _contains(merchant, known) or _contains(known, merchant):
            return category

    return FALLBACK_CATEGORY
