"""
Canonical in-flight transaction types (SSOT).

Every parser produces a ``ParseResult`` of ``RawTransaction`` rows.
The normalizer turns those into ``NormalizedTransaction`` values and the
deduplication engine wraps each one in a ``DeduplicationResult``.
No other module may invent another transaction shape.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class TransactionType(str, Enum):
    """Direction of money movement as reported by the source."""

    DEBIT = "debit"
    CREDIT = "credit"


class DuplicateType(str, Enum):
    """Which deduplication scope matched, in precedence order."""

    SAME_BATCH = "same_batch"
    PREVIOUS_IMPORT = "previous_import"
    EXISTING_EXPENSE = "existing_expense"


@dataclass
class StatementPeriod:
    """Statement coverage window (YYYY-MM-DD strings)."""

    start: str
    end: str


@dataclass
class RawTransaction:
    """One row as reported by a parser, before normalization."""

    date: str  # YYYY-MM-DD
    amount: Decimal  # Signed: negative = money out
    description: str
    type: TransactionType
    merchant: Optional[str] = None
    is_recurring: bool = False
    confidence: Optional[float] = None
    reference: Optional[str] = None


@dataclass
class ParseResult:
    """Common output of every format parser."""

    transactions: list[RawTransaction] = field(default_factory=list)
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    currency: str = "NGN"
    statement_period: Optional[StatementPeriod] = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON wire shape."""
        return {
            "transactions": [
                {
                    "date": txn.date,
                    "amount": float(txn.amount),
                    "description": txn.description,
                    "merchant": txn.merchant,
                    "isRecurring": txn.is_recurring,
                    "type": txn.type.value,
                    "confidence": txn.confidence,
                }
                for txn in self.transactions
            ],
            "bankName": self.bank_name,
            "accountNumber": self.account_number,
            "currency": self.currency,
            "statementPeriod": (
                {"start": self.statement_period.start, "end": self.statement_period.end}
                if self.statement_period
                else None
            ),
            "errors": self.errors or None,
        }


@dataclass(frozen=True)
class NormalizedTransaction:
    """Canonical transaction record ready for deduplication."""

    date: date
    amount: Decimal  # Signed, quantized to 2 places
    currency: str
    description: str
    merchant: Optional[str]
    normalized_merchant: Optional[str]
    is_recurring_guess: bool
    confidence: float
    dedup_hash: str
    reference: Optional[str] = None

    @property
    def is_debit(self) -> bool:
        return self.amount < 0


@dataclass
class DeduplicationResult:
    """Classification of one normalized transaction."""

    transaction: NormalizedTransaction
    is_duplicate: bool
    duplicate_type: Optional[DuplicateType] = None
    duplicate_of_id: Optional[str] = None
