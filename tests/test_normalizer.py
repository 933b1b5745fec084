"""Tests for the transaction normalizer."""

from datetime import date
from decimal import Decimal

import pytest

from ledger_intake.processing.normalizer import Normalizer, parse_transaction_date
from ledger_intake.schemas.dedupe import compute_deduplication_hash
from ledger_intake.schemas.transactions import RawTransaction, TransactionType

TODAY = date(2025, 6, 15)


def _raw(**overrides) -> RawTransaction:
    fields = {
        "date": "2025-06-10",
        "amount": Decimal("5000"),
        "description": "POS PURCHASE - NETFLIX",
        "type": TransactionType.DEBIT,
    }
    fields.update(overrides)
    return RawTransaction(**fields)


class TestParseTransactionDate:
    """Tests for the accepted date window."""

    def test_window_edges(self):
        assert parse_transaction_date("2020-06-15", TODAY) == date(2020, 6, 15)
        assert parse_transaction_date("2020-06-14", TODAY) is None
        assert parse_transaction_date("2025-07-15", TODAY) == date(2025, 7, 15)
        assert parse_transaction_date("2025-07-16", TODAY) is None

    def test_month_end_clamped(self):
        """A month ahead of Jan 31st is the last day of February."""
        today = date(2025, 1, 31)
        assert parse_transaction_date("2025-02-28", today) == date(2025, 2, 28)
        assert parse_transaction_date("2025-03-01", today) is None

    def test_rejects_other_formats(self):
        assert parse_transaction_date("15/06/2025", TODAY) is None
        assert parse_transaction_date("2025-02-30", TODAY) is None


class TestNormalizer:
    """Tests for batch normalization."""

    @pytest.fixture
    def normalizer(self) -> Normalizer:
        return Normalizer()

    def test_basic_row(self, normalizer):
        [txn] = normalizer.normalize([_raw()], "NGN", today=TODAY)

        assert txn.date == date(2025, 6, 10)
        assert txn.amount == Decimal("-5000.00")
        assert txn.currency == "NGN"
        assert txn.merchant is None
        assert txn.normalized_merchant == "netflix"
        assert txn.is_recurring_guess is True
        assert txn.confidence == 1.0
        assert txn.dedup_hash == compute_deduplication_hash("2025-06-10", "5000", "netflix")

    def test_type_decides_sign(self, normalizer):
        [credit] = normalizer.normalize(
            [_raw(amount=Decimal("-250000"), type=TransactionType.CREDIT, description="SALARY")],
            "NGN",
            today=TODAY,
        )
        assert credit.amount == Decimal("250000.00")
        assert credit.is_recurring_guess is False

    def test_invalid_rows_dropped_order_kept(self, normalizer):
        rows = [
            _raw(description="first"),
            _raw(amount=Decimal("0")),
            _raw(date="2019-01-01"),
            _raw(date="not a date"),
            _raw(description="last"),
        ]
        result = normalizer.normalize(rows, "NGN", today=TODAY)
        assert [t.description for t in result] == ["first", "last"]

    def test_amount_quantized(self, normalizer):
        [txn] = normalizer.normalize([_raw(amount=Decimal("1234.567"))], "NGN", today=TODAY)
        assert txn.amount == Decimal("-1234.57")

    def test_merchant_spelling_does_not_change_hash(self, normalizer):
        rows = [_raw(merchant="Netflix Inc."), _raw(merchant="NETFLIX"), _raw()]
        hashes = {t.dedup_hash for t in normalizer.normalize(rows, "NGN", today=TODAY)}
        assert len(hashes) == 1

    def test_merchant_kept_as_given(self, normalizer):
        [txn] = normalizer.normalize(
            [_raw(merchant="  Chicken Republic  ", description="food")], "NGN", today=TODAY
        )
        assert txn.merchant == "Chicken Republic"
        assert txn.normalized_merchant == "chicken republic"

    def test_confidence_clamped(self, normalizer):
        [low, high] = normalizer.normalize(
            [_raw(confidence=-0.2), _raw(confidence=1.4)], "NGN", today=TODAY
        )
        assert low.confidence == 0.0
        assert high.confidence == 1.0

    def test_deterministic(self, normalizer):
        rows = [_raw(), _raw(description="TRANSFER TO JOHN DOE", amount=Decimal("20000"))]
        assert normalizer.normalize(rows, "NGN", today=TODAY) == normalizer.normalize(
            rows, "NGN", today=TODAY
        )

    def test_empty(self, normalizer):
        assert normalizer.normalize([], "NGN", today=TODAY) == []
