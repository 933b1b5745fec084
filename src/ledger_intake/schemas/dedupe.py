"""
Deduplication hash generation (CRITICAL).

This module defines THE deterministic fingerprint for an imported transaction.
This is the ONLY way to generate deduplication hashes in the system.

Hash format:
    SHA256("{YYYY-MM-DD}|{abs(amount):.2f}|{normalized_merchant}")[:32]

The hash must be:
- Stable: Same inputs always produce same output
- Sign-blind: A debit and its mirrored credit on the same day collide
- Merchant-canonical: Callers pass the normalized merchant key, so casing
  and punctuation never reach the hash
"""

import hashlib
from datetime import date
from decimal import Decimal

# Length of the hex digest kept
HASH_LENGTH = 32


def _normalize_amount(amount: Decimal | str | float) -> str:
    """
    Normalize amount to consistent format for hashing.

    Args:
        amount: Amount in various formats

    Returns:
        Absolute amount string with 2 decimal places
    """
    if isinstance(amount, str):
        amount = Decimal(amount.replace(",", ""))
    elif isinstance(amount, float):
        amount = Decimal(str(amount))
    elif not isinstance(amount, Decimal):
        raise ValueError(f"amount must be Decimal, str, or float, got: {type(amount)}")

    return f"{abs(amount):.2f}"


def _normalize_date(value: date | str) -> str:
    if isinstance(value, date):
        return value.isoformat()
    value = value.strip()
    if len(value) < 10:
        raise ValueError(f"date must be in YYYY-MM-DD format, got: {value}")
    return value[:10]


def compute_deduplication_hash(
    txn_date: date | str,
    amount: Decimal | str | float,
    normalized_merchant: str | None,
) -> str:
    """
    Compute the deduplication hash for a transaction.

    Args:
        txn_date: Transaction day (date or YYYY-MM-DD)
        amount: Signed or unsigned amount
        normalized_merchant: Canonical merchant key, or None

    Returns:
        32-character lowercase hex string

    Examples:
        >>> compute_deduplication_hash("2025-01-10", "-5000", "netflix")
        '...'  # Same as compute_deduplication_hash("2025-01-10", "5000.00", "netflix")
    """
    canonical = (
        f"{_normalize_date(txn_date)}|{_normalize_amount(amount)}|{normalized_merchant or ''}"
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:HASH_LENGTH]
