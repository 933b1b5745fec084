"""
CSV bank statement parser.

Deterministic: no model calls. The column layout is detected by matching the
header row against known bank exports, falling back to a generic mapping.

Supported formats:
- Dates: D/M/Y and M/D/Y (month-first when ambiguous), D-M-Y, Y-M-D,
  "15 Jan 2025", "Jan 15, 2025", "15-Jan-2025"
- Amounts: 1,234.56, (1,234.56), 1234.56 DR, currency-prefixed
- Single signed amount column, or separate debit/credit columns
"""

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

import pandas as pd

from ..errors import CsvParseError
from ..processing.merchants import extract_merchant, looks_recurring
from ..schemas.transactions import ParseResult, RawTransaction, TransactionType

logger = logging.getLogger(__name__)


@dataclass
class ColumnMapping:
    """Header aliases for one bank's CSV export."""

    date: list[str]
    amount: list[str]
    description: list[str]
    debit: Optional[str] = None
    credit: Optional[str] = None
    reference: list[str] = field(default_factory=list)


# Tried in order; the first mapping whose required columns exist wins
BANK_FORMATS: dict[str, ColumnMapping] = {
    "gtbank": ColumnMapping(
        date=["Transaction Date", "Date", "VALUE DATE"],
        amount=["Amount", "AMOUNT"],
        debit="Debit",
        credit="Credit",
        description=["Description", "NARRATION", "Narration"],
        reference=["Reference", "REFERENCE"],
    ),
    "access": ColumnMapping(
        date=["Date", "Transaction Date", "Value Date"],
        amount=["Amount"],
        debit="Debit Amount",
        credit="Credit Amount",
        description=["Description", "Remarks", "Narration"],
        reference=["Reference Number", "Trans Ref"],
    ),
    "firstbank": ColumnMapping(
        date=["Date", "Trans Date"],
        amount=["Amount"],
        debit="DR",
        credit="CR",
        description=["Description", "Particulars"],
        reference=["Reference"],
    ),
    "zenith": ColumnMapping(
        date=["Post Date", "Trans Date", "Date"],
        amount=["Amount"],
        debit="Debit",
        credit="Credit",
        description=["Narration", "Description"],
        reference=["Reference"],
    ),
    "kuda": ColumnMapping(
        date=["Date", "Transaction Date"],
        amount=["Amount"],
        description=["Description", "Reference"],
    ),
    "generic": ColumnMapping(
        date=["date", "Transaction Date", "Trans Date", "Value Date", "Post Date"],
        amount=["amount", "Value"],
        debit="debit",
        credit="credit",
        description=["description", "Narration", "Remarks", "Particulars"],
        reference=["reference", "Trans Ref"],
    ),
}

# Uploader bank hint -> layout key (compared lowercase, spaces removed)
BANK_HINTS = {
    "gtbank": "gtbank",
    "guarantytrust": "gtbank",
    "access": "access",
    "accessbank": "access",
    "firstbank": "firstbank",
    "zenith": "zenith",
    "zenithbank": "zenith",
    "kuda": "kuda",
}

MONTHS = {
    "jan": 1, "january": 1, "feb": 2, "february": 2, "mar": 3, "march": 3,
    "apr": 4, "april": 4, "may": 5, "jun": 6, "june": 6, "jul": 7, "july": 7,
    "aug": 8, "august": 8, "sep": 9, "sept": 9, "september": 9, "oct": 10,
    "october": 10, "nov": 11, "november": 11, "dec": 12, "december": 12,
}

_NUMERIC_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2})[\s-]+([A-Za-z]{3,})[\s-]+(\d{4})$")
_MONTH_DAY_YEAR = re.compile(r"^([A-Za-z]{3,})\s+(\d{1,2}),?\s+(\d{4})$")
_ISO_DATETIME = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ]\d{1,2}:\d{2}")

_AMOUNT_SYMBOLS = re.compile(r"[₦$€£¥]|NGN", re.IGNORECASE)
_DR_CR = re.compile(r"\s*(?<![A-Za-z])(DR|CR)(?![A-Za-z])\s*", re.IGNORECASE)

# Checked in order against every cell; first hit wins
CURRENCY_HINTS = [
    (re.compile(r"₦|\bNGN\b|naira", re.IGNORECASE), "NGN"),
    (re.compile(r"GH₵|\bGHS\b|cedi", re.IGNORECASE), "USD"),
    (re.compile(r"KSh|\bKES\b|shilling", re.IGNORECASE), "USD"),
    (re.compile(r"\bR\s?\d|\bZAR\b|\brand\b"), "USD"),
    (re.compile(r"E£|\bEGP\b|\bpound", re.IGNORECASE), "USD"),
]

ENCODINGS = ["utf-8-sig", "cp1252", "latin1"]


def _has_column(headers: list[str], name: str) -> bool:
    return name.lower() in {h.lower() for h in headers}


def _column_value(row: dict[str, str], names: list[str]) -> Optional[str]:
    """First non-empty value among ``names`` (case-insensitive)."""
    lowered = {k.lower(): v for k, v in row.items()}
    for name in names:
        value = row.get(name)
        if value is None:
            value = lowered.get(name.lower())
        if value:
            return value
    return None


def validate_mapping(headers: list[str], mapping: ColumnMapping) -> bool:
    """Date, description, and amount (or both debit and credit) must exist."""
    has_date = any(_has_column(headers, c) for c in mapping.date)
    has_amount = any(_has_column(headers, c) for c in mapping.amount)
    has_debit_credit = bool(
        mapping.debit
        and mapping.credit
        and _has_column(headers, mapping.debit)
        and _has_column(headers, mapping.credit)
    )
    has_description = any(_has_column(headers, c) for c in mapping.description)
    return has_date and (has_amount or has_debit_credit) and has_description


def _safe_date(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_date(value: str) -> Optional[str]:
    """
    Parse a bank date cell to YYYY-MM-DD.

    Numeric D/M/Y vs M/D/Y is decided by which component exceeds 12; when
    neither does, month-first is assumed.
    """
    text = value.strip()

    match = _NUMERIC_DATE.match(text)
    if match:
        first, second, year = (int(g) for g in match.groups())
        if first > 12 and second <= 12:
            day, month = first, second
        else:
            month, day = first, second
        return _safe_date(year, month, day)

    match = _ISO_DATE.match(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return _safe_date(year, month, day)

    match = _DAY_MONTH_YEAR.match(text)
    if match:
        month = MONTHS.get(match.group(2).lower())
        if month:
            return _safe_date(int(match.group(3)), month, int(match.group(1)))

    match = _MONTH_DAY_YEAR.match(text)
    if match:
        month = MONTHS.get(match.group(1).lower())
        if month:
            return _safe_date(int(match.group(3)), month, int(match.group(2)))

    match = _ISO_DATETIME.match(text)
    if match:
        return parse_date(match.group(1))

    for fmt in ("%Y/%m/%d", "%d.%m.%Y", "%d-%b-%y"):
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue

    return None


def parse_amount(value: str) -> Decimal:
    """
    Parse an amount cell; unparseable cells give 0.

    Parentheses and a DR marker make the amount negative.
    """
    cleaned = _AMOUNT_SYMBOLS.sub("", value).replace(",", "").strip()

    negative = cleaned.startswith("(") and cleaned.endswith(")")
    if negative:
        cleaned = cleaned[1:-1]

    if re.search(r"(?<![A-Za-z])DR(?![A-Za-z])", cleaned, re.IGNORECASE):
        negative = True
    cleaned = _DR_CR.sub("", cleaned).strip()

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")
    if not amount.is_finite():
        return Decimal("0")

    return -abs(amount) if negative else amount


def detect_currency(rows: list[dict[str, str]], default: str = "NGN") -> str:
    text = " ".join(v for row in rows for v in row.values() if v)
    for pattern, currency in CURRENCY_HINTS:
        if pattern.search(text):
            return currency
    return default


def detect_bank_from_headers(headers: list[str]) -> Optional[str]:
    joined = " ".join(headers).lower()
    if "gtbank" in joined or "guaranty" in joined:
        return "GTBank"
    if "access" in joined:
        return "Access Bank"
    if "first bank" in joined or "firstbank" in joined:
        return "First Bank"
    if "zenith" in joined:
        return "Zenith Bank"
    return None


class CsvParser:
    """Parses bank CSV exports into a ``ParseResult``."""

    def __init__(self, default_currency: str = "NGN"):
        self.default_currency = default_currency

    def parse(self, content: Union[bytes, str], bank_name: Optional[str] = None) -> ParseResult:
        """
        Parse CSV content.

        Args:
            content: Raw file bytes or decoded text.
            bank_name: Optional bank hint; its layout is tried first.

        Raises:
            CsvParseError: Empty file or no recognizable column layout.
        """
        rows = self._read_rows(content)
        if not rows:
            raise CsvParseError("No data rows found in CSV")

        headers = list(rows[0].keys())
        mapping = self._detect_mapping(headers, bank_name)
        if mapping is None:
            raise CsvParseError(
                "Could not detect column mapping. Required columns: date, amount, description",
                {"headers": headers},
            )

        transactions = [txn for txn in (self._parse_row(row, mapping) for row in rows) if txn]
        logger.info("Parsed %d transactions from CSV (%d rows)", len(transactions), len(rows))

        return ParseResult(
            transactions=transactions,
            bank_name=bank_name or detect_bank_from_headers(headers),
            account_number=None,
            currency=detect_currency(rows, self.default_currency),
        )

    def _read_rows(self, content: Union[bytes, str]) -> list[dict[str, str]]:
        frame = None
        if isinstance(content, str):
            frame = self._read_frame(io.StringIO(content))
        else:
            for encoding in ENCODINGS:
                try:
                    frame = self._read_frame(io.BytesIO(content), encoding=encoding)
                    break
                except UnicodeDecodeError:
                    continue

        if frame is None:
            return []

        frame.columns = [str(c).strip() for c in frame.columns]
        return [
            {key: (value or "").strip() for key, value in record.items()}
            for record in frame.to_dict(orient="records")
        ]

    @staticmethod
    def _read_frame(buffer, encoding: Optional[str] = None) -> Optional[pd.DataFrame]:
        try:
            return pd.read_csv(
                buffer,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                encoding=encoding,
            )
        except pd.errors.EmptyDataError:
            return None
        except pd.errors.ParserError as e:
            raise CsvParseError(str(e)) from e

    def _detect_mapping(self, headers: list[str], bank_name: Optional[str]) -> Optional[ColumnMapping]:
        if bank_name:
            key = BANK_HINTS.get(re.sub(r"\s+", "", bank_name.lower()), "generic")
            if validate_mapping(headers, BANK_FORMATS[key]):
                logger.debug("Using %s column mapping", key)
                return BANK_FORMATS[key]

        for key, mapping in BANK_FORMATS.items():
            if validate_mapping(headers, mapping):
                logger.debug("Auto-detected %s column mapping", key)
                return mapping
        return None

    def _parse_row(self, row: dict[str, str], mapping: ColumnMapping) -> Optional[RawTransaction]:
        date_value = _column_value(row, mapping.date)
        txn_date = parse_date(date_value) if date_value else None
        if not txn_date:
            return None

        amount_value = _column_value(row, mapping.amount)
        if amount_value:
            amount = parse_amount(amount_value)
        elif mapping.debit and mapping.credit:
            debit_value = _column_value(row, [mapping.debit])
            credit_value = _column_value(row, [mapping.credit])
            debit = parse_amount(debit_value) if debit_value else Decimal("0")
            credit = parse_amount(credit_value) if credit_value else Decimal("0")
            if debit > 0:
                amount = -debit
            elif credit > 0:
                amount = credit
            else:
                return None
        else:
            return None

        if amount == 0:
            return None

        description = _column_value(row, mapping.description) or ""
        return RawTransaction(
            date=txn_date,
            amount=amount,
            description=description,
            type=TransactionType.DEBIT if amount < 0 else TransactionType.CREDIT,
            merchant=extract_merchant(description),
            is_recurring=looks_recurring(description),
            reference=_column_value(row, mapping.reference) if mapping.reference else None,
        )
