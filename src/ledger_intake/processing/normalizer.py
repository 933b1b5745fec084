"""
Transaction normalizer.

Turns parser rows into ``NormalizedTransaction`` values:
- date validated and bounded (not older than 5 years, not more than a month ahead)
- sign re-asserted from the transaction type, zero amounts dropped
- merchant canonicalized (or extracted from the description)
- recurrence guessed from keywords
- deduplication hash computed

``normalize`` is pure for a fixed ``today``: the same input always yields
equal output.
"""

import calendar
import logging
import re
from collections.abc import Sequence
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from ..schemas.dedupe import compute_deduplication_hash
from ..schemas.transactions import NormalizedTransaction, RawTransaction, TransactionType
from .merchants import extract_normalized_merchant, looks_recurring, normalize_merchant

logger = logging.getLogger(__name__)

MAX_AGE_YEARS = 5
MAX_FUTURE_MONTHS = 1
DEFAULT_CONFIDENCE = 1.0

_CENTS = Decimal("0.01")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def _shift_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def parse_transaction_date(value: str, today: date) -> Optional[date]:
    """YYYY-MM-DD within [today - 5 years, today + 1 month], else None."""
    match = _ISO_DATE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        return None
    try:
        parsed = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None

    earliest = _shift_months(today, -12 * MAX_AGE_YEARS)
    latest = _shift_months(today, MAX_FUTURE_MONTHS)
    if parsed < earliest or parsed > latest:
        return None
    return parsed


def _signed_amount(txn: RawTransaction) -> Optional[Decimal]:
    try:
        amount = Decimal(str(txn.amount)).quantize(_CENTS)
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount == 0:
        return None
    if txn.type == TransactionType.DEBIT:
        return -abs(amount)
    if txn.type == TransactionType.CREDIT:
        return abs(amount)
    return amount


class Normalizer:
    """Canonicalizes parsed rows for deduplication and persistence."""

    def normalize(
        self,
        transactions: Sequence[RawTransaction],
        currency: str,
        today: Optional[date] = None,
    ) -> list[NormalizedTransaction]:
        """
        Normalize a batch of raw rows.

        Args:
            transactions: Rows from any parser.
            currency: Currency of the whole batch.
            today: Reference day for the date window (defaults to today).

        Returns:
            Normalized rows, invalid ones dropped, input order kept.
        """
        today = today or date.today()
        normalized: list[NormalizedTransaction] = []

        for txn in transactions:
            result = self.normalize_one(txn, currency, today)
            if result is not None:
                normalized.append(result)

        dropped = len(transactions) - len(normalized)
        if dropped:
            logger.info("Normalizer dropped %d of %d rows", dropped, len(transactions))
        return normalized

    def normalize_one(
        self, txn: RawTransaction, currency: str, today: date
    ) -> Optional[NormalizedTransaction]:
        txn_date = parse_transaction_date(txn.date, today)
        if txn_date is None:
            logger.debug("Skipping row with out-of-range or invalid date: %r", txn.date)
            return None

        amount = _signed_amount(txn)
        if amount is None:
            logger.debug("Skipping zero or invalid amount: %r", txn.amount)
            return None

        description = (txn.description or "").strip()
        merchant = (txn.merchant or "").strip() or None
        if merchant:
            normalized_merchant = normalize_merchant(merchant) or None
        else:
            normalized_merchant = extract_normalized_merchant(description)

        is_recurring = txn.is_recurring or looks_recurring(
            merchant, normalized_merchant, description
        )

        confidence = DEFAULT_CONFIDENCE if txn.confidence is None else txn.confidence
        confidence = max(0.0, min(1.0, float(confidence)))

        return NormalizedTransaction(
            date=txn_date,
            amount=amount,
            currency=currency,
            description=description,
            merchant=merchant,
            normalized_merchant=normalized_merchant,
            is_recurring_guess=is_recurring,
            confidence=confidence,
            dedup_hash=compute_deduplication_hash(txn_date, amount, normalized_merchant),
            reference=txn.reference,
        )
