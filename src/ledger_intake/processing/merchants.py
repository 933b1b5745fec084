"""
Merchant name heuristics (SSOT).

Shared by the CSV parser (raw merchant extraction) and the normalizer
(canonical merchant keys). Changing an alias here changes deduplication
hashes for every future import.
"""

import re
from typing import Optional

# Canonical merchant -> spellings seen in bank descriptions.
# Order matters: the first canonical whose alias matches wins, so the more
# specific entries ("uber eats", "amazon prime") come before the general ones.
MERCHANT_ALIASES: dict[str, list[str]] = {
    # Streaming
    "netflix": ["netflix", "netflix.com", "netflix inc"],
    "spotify": ["spotify", "spotify ab", "spotify.com"],
    "apple music": ["apple music", "itunes", "apple.com/bill"],
    "youtube": ["youtube", "youtube premium", "google youtube"],
    "amazon prime": ["amazon prime", "prime video", "amzn prime"],
    "disney plus": ["disney plus", "disney+", "disneyplus", "disneyplus.com"],
    "hulu": ["hulu", "hulu llc"],
    "hbo max": ["hbo max", "hbo", "max.com"],
    "paramount plus": ["paramount+", "paramount plus"],
    "apple tv": ["apple tv", "apple tv+"],
    "peacock": ["peacock", "peacock tv"],
    # Regional pay TV
    "dstv": ["dstv", "multichoice", "dstv subscription"],
    "gotv": ["gotv", "gotv subscription"],
    "startimes": ["startimes", "star times"],
    # Telecom
    "mtn": ["mtn", "mtn nigeria", "mtn ng"],
    "glo": ["glo", "globacom", "glo ng"],
    "airtel": ["airtel", "airtel nigeria", "airtel ng"],
    "9mobile": ["9mobile", "etisalat", "9mobile ng"],
    # Food delivery
    "jumia": ["jumia", "jumia food", "jumia.com"],
    "uber eats": ["uber eats", "ubereats"],
    "glovo": ["glovo"],
    "chowdeck": ["chowdeck"],
    "doordash": ["doordash", "door dash"],
    "grubhub": ["grubhub", "grub hub"],
    "instacart": ["instacart"],
    "postmates": ["postmates"],
    # Ride-sharing
    "uber": ["uber", "uber bv", "uber trip"],
    "bolt": ["bolt", "bolt eu", "bolt ride"],
    "lyft": ["lyft", "lyft inc"],
    # Cloud / software
    "icloud": ["icloud", "apple icloud", "apple.com/bill icloud"],
    "google": ["google", "google play", "google.com"],
    "microsoft": ["microsoft", "ms365", "office 365"],
    "dropbox": ["dropbox"],
    "adobe": ["adobe", "adobe systems"],
    # Retail (US)
    "amazon": ["amazon", "amzn", "amazon.com", "amzn mktp"],
    "walmart": ["walmart", "wal-mart", "wal mart"],
    "target": ["target"],
    "costco": ["costco", "costco wholesale"],
    "whole foods": ["whole foods", "wholefds", "wholefoods"],
    "trader joes": ["trader joe", "trader joes"],
    "kroger": ["kroger"],
    "publix": ["publix"],
    # Fuel
    "shell": ["shell", "shell oil"],
    "chevron": ["chevron"],
    "exxon": ["exxon", "exxonmobil"],
    "bp": ["bp"],
    # Retail (international)
    "shoprite": ["shoprite", "shoprite nigeria"],
    "spar": ["spar", "spar nigeria"],
    "game stores": ["game stores", "game nigeria"],
    # Restaurants
    "starbucks": ["starbucks"],
    "chick-fil-a": ["chick-fil-a", "chick fil a", "chickfila"],
    "chipotle": ["chipotle"],
    "mcdonalds": ["mcdonalds", "mcdonald's", "mcd"],
}

# Aliases this short only match as whole words ("glo" must not match "global")
SHORT_ALIAS_MAX_LENGTH = 3

RECURRING_KEYWORDS = re.compile(
    r"netflix|spotify|apple|google|amazon prime|dstv|gotv|startimes|icloud|youtube"
    r"|microsoft|dropbox|subscription|recurring|monthly|annual",
    re.IGNORECASE,
)

# Nigerian bank description formats
_LOCAL_PATTERNS = [
    re.compile(r"POS\s+(?:PURCHASE|PAYMENT|TRANSACTION)\s*[-:]\s*(.+?)(?:\s+\d|$)", re.IGNORECASE),
    re.compile(r"TRANSFER\s+TO\s+(.+?)(?:\s+\d|$)", re.IGNORECASE),
    re.compile(r"WEB\s+(?:PURCHASE|PAYMENT)\s*[-:]\s*(.+?)(?:\s+\d|$)", re.IGNORECASE),
    re.compile(r"USSD\s*[-:]\s*(.+?)(?:\s+\d|$)", re.IGNORECASE),
]

# US / international card and ACH formats
_INTERNATIONAL_PATTERNS = [
    re.compile(
        r"(?:PURCHASE|PAYMENT|RECURRING)\s+(?:AUTHORIZED|AUTH)\s+(?:ON\s+\d{2}/\d{2}\s+)?"
        r"(.+?)(?:\s+CARD\s+\d|$)",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:DEBIT\s+)?CARD\s+PURCHASE\s*[-:]\s*(.+?)(?:\s+\d{5}|\s+[A-Z]{2}\s*$)", re.IGNORECASE
    ),
    re.compile(r"ACH\s+(?:DEBIT|CREDIT|PAYMENT)\s+(.+?)(?:\s+\d|$)", re.IGNORECASE),
    re.compile(r"DIRECT\s+DEP(?:OSIT)?\s+(.+?)(?:\s+PAYROLL|\s+SALARY|\s+PAY\s|$)", re.IGNORECASE),
    re.compile(r"CHECK\s+CARD\s+(?:PURCHASE\s+)?(.+?)(?:\s+\d{4,}|\s+[A-Z]{2}\s*$)", re.IGNORECASE),
    re.compile(
        r"(?:VENMO|ZELLE|CASHAPP|PAYPAL)\s+(?:PAYMENT|TRANSFER|SENT)?\s*(?:TO\s+)?(.+?)$",
        re.IGNORECASE,
    ),
]

_CORPORATE_SUFFIX = re.compile(r"\s*\b(?:ltd|limited|inc|corp|llc|plc|nigeria|ng)\s*$")
_PUNCTUATION = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")


def _clean(text: str) -> str:
    return _WHITESPACE.sub(" ", _PUNCTUATION.sub("", text.lower().strip())).strip()


def _compile_alias(alias: str) -> re.Pattern[str]:
    cleaned = _clean(alias)
    if len(cleaned) <= SHORT_ALIAS_MAX_LENGTH:
        return re.compile(rf"(?<![\w-]){re.escape(cleaned)}(?![\w-])")
    return re.compile(re.escape(cleaned))


# Aliases are matched against cleaned text, so they are cleaned the same way
_ALIAS_TABLE: list[tuple[str, list[re.Pattern[str]]]] = [
    (canonical, [_compile_alias(alias) for alias in aliases])
    for canonical, aliases in MERCHANT_ALIASES.items()
]


def match_alias(text: str) -> Optional[str]:
    """Canonical merchant whose alias appears in ``text``, if any."""
    cleaned = _clean(text)
    for canonical, patterns in _ALIAS_TABLE:
        if any(p.search(cleaned) for p in patterns):
            return canonical
    return None


def normalize_merchant(merchant: str) -> str:
    """
    Canonical merchant key.

    Lowercases, strips punctuation (hyphens kept), collapses whitespace,
    maps through the alias table and finally strips trailing corporate
    suffixes. ``normalize_merchant("Netflix Inc.") == "netflix"``.
    """
    normalized = _clean(merchant)

    canonical = match_alias(normalized)
    if canonical:
        return canonical

    stripped = _CORPORATE_SUFFIX.sub("", normalized).strip()
    while stripped and stripped != normalized:
        normalized = stripped
        stripped = _CORPORATE_SUFFIX.sub("", normalized).strip()
    return normalized


def _match_patterns(description: str) -> Optional[str]:
    for pattern in _LOCAL_PATTERNS:
        match = pattern.search(description)
        if match and match.group(1).strip():
            return match.group(1).strip()

    for pattern in _INTERNATIONAL_PATTERNS:
        match = pattern.search(description)
        if match and len(match.group(1).strip()) > 1:
            return match.group(1).strip()

    return None


def clean_description(description: str) -> str:
    """Strip transaction-type prefixes and trailing store numbers/locations."""
    cleaned = re.sub(
        r"^(?:POS|DEBIT|CREDIT|ACH|CHECK CARD|PURCHASE|PAYMENT)\s*", "", description, flags=re.I
    )
    cleaned = re.sub(r"\s+#?\d{4,}.*$", "", cleaned)
    cleaned = re.sub(r"\s+[A-Z]{2}\s*\d{5}.*$", "", cleaned, flags=re.I)
    cleaned = re.sub(r"\s+[A-Z]{2}\s*$", "", cleaned, flags=re.I)
    return cleaned.strip()


def extract_merchant(description: str) -> Optional[str]:
    """Raw merchant text from a bank description (as shown to the user)."""
    if not description:
        return None
    matched = _match_patterns(description)
    if matched:
        return matched
    cleaned = clean_description(description)
    return cleaned if len(cleaned) >= 3 else None


def extract_normalized_merchant(description: Optional[str]) -> Optional[str]:
    """Canonical merchant key derived from a description alone."""
    if not description:
        return None

    matched = _match_patterns(description)
    if matched:
        return normalize_merchant(matched)

    canonical = match_alias(description)
    if canonical:
        return canonical

    cleaned = clean_description(description)
    if len(cleaned) >= 3:
        return normalize_merchant(cleaned)
    return None


def looks_recurring(*texts: Optional[str]) -> bool:
    """Keyword check for subscription-like transactions."""
    combined = " ".join(t for t in texts if t)
    return bool(RECURRING_KEYWORDS.search(combined))
