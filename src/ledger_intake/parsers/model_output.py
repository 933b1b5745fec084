"""
Strict deserialization of model completions into ``ParseResult``.

The model is asked for a JSON object, but may wrap it in a markdown fence or
surround it with prose. We strip fences and take the first well-formed JSON
object. Anything after that is schema validation and fails closed: a response
without a ``transactions`` array is a parse failure no matter what else it
contains. Individual rows that fail validation are dropped, not repaired.
"""

import json
import logging
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..errors import ParseFailure
from ..schemas.transactions import ParseResult, RawTransaction, StatementPeriod, TransactionType

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")

# Regional codes collapse to USD; the ledger only carries NGN and USD
CURRENCY_MAP = {
    "NGN": "NGN",
    "NAIRA": "NGN",
    "₦": "NGN",
    "GHS": "USD",
    "CEDI": "USD",
    "KES": "USD",
    "SHILLING": "USD",
    "ZAR": "USD",
    "RAND": "USD",
    "EGP": "USD",
    "USD": "USD",
}


def normalize_currency(value: Any, default: str = "NGN") -> str:
    if not isinstance(value, str):
        return default
    return CURRENCY_MAP.get(value.strip().upper(), default)


def extract_json_object(content: str) -> Optional[dict]:
    """
    Return the first well-formed JSON object in ``content``.

    Tries the inside of a markdown fence first, then scans the raw text.
    Returns None when no object can be decoded.
    """
    if not content:
        return None

    candidates = []
    fenced = _FENCE.search(content)
    if fenced:
        candidates.append(fenced.group(1))
    candidates.append(content)

    decoder = json.JSONDecoder()
    for text in candidates:
        start = text.find("{")
        while start != -1:
            try:
                obj, _ = decoder.raw_decode(text, start)
            except json.JSONDecodeError:
                start = text.find("{", start + 1)
                continue
            if isinstance(obj, dict):
                return obj
            start = text.find("{", start + 1)
    return None


def is_valid_iso_date(value: Any) -> bool:
    """True for a real calendar date written as YYYY-MM-DD."""
    if not isinstance(value, str):
        return False
    match = _ISO_DATE.match(value)
    if not match:
        return False
    try:
        date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return False
    return True


def _to_amount(value: Any) -> Optional[Decimal]:
    # bool is an int subclass; "true" is not an amount
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount == 0:
        return None
    return amount


def _to_confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0.0, min(1.0, float(value)))


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_rows(
    rows: list[Any],
    confidence_floor: Optional[float] = None,
    default_confidence: Optional[float] = None,
) -> list[RawTransaction]:
    """
    Validate model rows and re-assert the sign convention.

    Rows with an invalid date or a missing/zero amount are skipped. When
    ``confidence_floor`` is set, rows under it are skipped too (rows without
    a confidence use ``default_confidence``).
    """
    valid: list[RawTransaction] = []

    for row in rows:
        if not isinstance(row, dict):
            logger.debug("Skipping non-object transaction row")
            continue

        if not is_valid_iso_date(row.get("date")):
            logger.debug("Skipping transaction with invalid date: %r", row.get("date"))
            continue

        amount = _to_amount(row.get("amount"))
        if amount is None:
            logger.debug("Skipping transaction with invalid amount: %r", row.get("amount"))
            continue

        confidence = _to_confidence(row.get("confidence"))
        if confidence is None:
            confidence = default_confidence
        if confidence_floor is not None and (confidence or 0.0) < confidence_floor:
            logger.debug("Skipping low-confidence transaction: %s", confidence)
            continue

        # Model sometimes gets the sign backwards; the type field wins
        declared = str(row.get("type") or "").lower()
        if declared == TransactionType.DEBIT.value:
            amount = -abs(amount)
        elif declared == TransactionType.CREDIT.value:
            amount = abs(amount)

        valid.append(
            RawTransaction(
                date=row["date"],
                amount=amount,
                description=_optional_text(row.get("description")) or "",
                type=TransactionType.DEBIT if amount < 0 else TransactionType.CREDIT,
                merchant=_optional_text(row.get("merchant")),
                is_recurring=row.get("isRecurring") is True,
                confidence=confidence,
                reference=_optional_text(row.get("reference")),
            )
        )

    return valid


def _statement_period(value: Any) -> Optional[StatementPeriod]:
    if not isinstance(value, dict):
        return None
    start, end = value.get("start"), value.get("end")
    if is_valid_iso_date(start) and is_valid_iso_date(end):
        return StatementPeriod(start=start, end=end)
    return None


def load_parse_result(
    content: str,
    error_cls: type[ParseFailure],
    *,
    bank_key: str = "bankName",
    default_currency: str = "NGN",
    confidence_floor: Optional[float] = None,
    default_confidence: Optional[float] = None,
) -> ParseResult:
    """
    Deserialize a completion into a ``ParseResult``.

    Args:
        content: Raw completion text.
        error_cls: ParseFailure subclass raised on schema violations.
        bank_key: Key carrying the bank/app name ("appName" for screenshots).
        default_currency: Currency used when the model reports none.
        confidence_floor: Drop rows under this confidence.
        default_confidence: Confidence assumed for rows without one.

    Raises:
        error_cls: No JSON object, or no ``transactions`` array.
    """
    data = extract_json_object(content)
    if data is None:
        logger.error("Model response is not JSON (%d chars)", len(content or ""))
        logger.debug("Unparseable model response: %s", (content or "")[:500])
        raise error_cls("AI returned invalid response format. Please try again.")

    rows = data.get("transactions")
    if not isinstance(rows, list):
        raise error_cls("AI response is missing the transactions array")

    errors = data.get("errors")
    return ParseResult(
        transactions=validate_rows(rows, confidence_floor, default_confidence),
        bank_name=_optional_text(data.get(bank_key)),
        account_number=_optional_text(data.get("accountNumber")),
        currency=normalize_currency(data.get("currency"), default_currency),
        statement_period=_statement_period(data.get("statementPeriod")),
        errors=[str(e) for e in errors] if isinstance(errors, list) else [],
    )
