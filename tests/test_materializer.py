"""Tests for the expense materializer."""

from datetime import date
from decimal import Decimal

import pytest

from ledger_intake.errors import ConfirmationError
from ledger_intake.events import EXPENSES_CREATED
from ledger_intake.processing.materializer import AUTO_CATEGORY, ExpenseMaterializer
from ledger_intake.schemas.dedupe import compute_deduplication_hash
from ledger_intake.schemas.transactions import (
    DeduplicationResult,
    DuplicateType,
    NormalizedTransaction,
)
from ledger_intake.state_store import ImportJobStatus, ImportSource, ParsedTransactionStatus


def _result(day, amount, merchant, recurring=False, duplicate=None):
    txn_date = date.fromisoformat(day)
    txn = NormalizedTransaction(
        date=txn_date,
        amount=Decimal(amount),
        currency="NGN",
        description=f"POS PURCHASE - {(merchant or 'card').upper()}",
        merchant=merchant,
        normalized_merchant=merchant,
        is_recurring_guess=recurring,
        confidence=0.9,
        dedup_hash=compute_deduplication_hash(txn_date, Decimal(amount), merchant),
    )
    return DeduplicationResult(
        transaction=txn, is_duplicate=duplicate is not None, duplicate_type=duplicate
    )


class TestExpenseMaterializer:
    """Tests for confirming parsed transactions into ledger entries."""

    @pytest.fixture
    def materializer(self, store, events) -> ExpenseMaterializer:
        return ExpenseMaterializer(store, events)

    @pytest.fixture
    def job(self, store):
        job = store.create_job("user-1", ImportSource.STATEMENT_CSV)
        records = store.complete_parsing(
            job.id,
            [
                _result("2025-01-13", "-5000.00", "netflix"),
                _result("2025-01-12", "-1200.00", "uber"),
                _result("2025-01-11", "-800.00", "mama cass"),
                _result("2025-01-10", "-700.00", "bolt", duplicate=DuplicateType.PREVIOUS_IMPORT),
            ],
        )
        return job, records

    def test_auto_category(self, materializer, store, job):
        job_record, records = job
        result = materializer.create_expenses(
            "user-1", job_record.id, [r.id for r in records[:3]], AUTO_CATEGORY
        )

        assert result.created == 3
        assert result.skipped == 0
        categories = {
            store.get_ledger_entry(ledger_id).merchant: store.get_ledger_entry(ledger_id).category_id
            for ledger_id in result.ledger_ids
        }
        assert categories == {
            "netflix": "entertainment",
            "uber": "transportation",
            "mama cass": "other",
        }

    def test_explicit_category(self, materializer, store, job):
        job_record, records = job
        result = materializer.create_expenses("user-1", job_record.id, [records[0].id], "utilities")
        assert store.get_ledger_entry(result.ledger_ids[0]).category_id == "utilities"

    def test_unknown_category(self, materializer, job):
        job_record, records = job
        with pytest.raises(ConfirmationError, match="not found"):
            materializer.create_expenses("user-1", job_record.id, [records[0].id], "gadgets")

    def test_duplicates_and_created_are_skipped(self, materializer, job):
        job_record, records = job
        materializer.create_expenses("user-1", job_record.id, [records[0].id], AUTO_CATEGORY)

        result = materializer.create_expenses(
            "user-1", job_record.id, [records[0].id, records[3].id, records[1].id], AUTO_CATEGORY
        )

        assert result.created == 1
        assert result.skipped == 2

    def test_nothing_left(self, materializer, job):
        job_record, records = job
        result = materializer.create_expenses("user-1", job_record.id, [records[3].id], AUTO_CATEGORY)
        assert result.to_dict() == {"created": 0, "skipped": 1, "ledger_ids": []}

    def test_foreign_ids_rejected(self, materializer, job):
        job_record, records = job
        with pytest.raises(ConfirmationError, match="No valid transactions"):
            materializer.create_expenses("user-2", job_record.id, [records[0].id], AUTO_CATEGORY)
        with pytest.raises(ConfirmationError):
            materializer.create_expenses("user-1", job_record.id, ["missing"], AUTO_CATEGORY)

    def test_job_completed_and_event(self, materializer, store, job, published):
        job_record, records = job
        result = materializer.create_expenses("user-1", job_record.id, [records[1].id], AUTO_CATEGORY)

        updated = store.get_job(job_record.id)
        assert updated.status == ImportJobStatus.COMPLETED
        assert updated.created == 1

        [event] = published
        assert event.name == EXPENSES_CREATED
        assert event.payload == {
            "user_id": "user-1",
            "ledger_ids": result.ledger_ids,
            "source": "import",
            "job_id": job_record.id,
        }

    def test_no_event_when_nothing_created(self, materializer, job, published):
        job_record, records = job
        materializer.create_expenses("user-1", job_record.id, [records[3].id], AUTO_CATEGORY)
        assert published == []

    def test_recurring_from_catalog_or_guess(self, materializer, store, job):
        job_record, records = job
        result = materializer.create_expenses(
            "user-1", job_record.id, [records[0].id, records[1].id], AUTO_CATEGORY
        )
        recurring = {
            store.get_ledger_entry(i).merchant: store.get_ledger_entry(i).is_recurring
            for i in result.ledger_ids
        }
        assert recurring == {"netflix": True, "uber": False}

    def test_single_expense_overrides(self, materializer, store, job):
        _, records = job
        ledger_id = materializer.create_single_expense(
            "user-1", records[2].id, "food-dining", merchant="Mama Cass Lekki", is_recurring=True
        )

        entry = store.get_ledger_entry(ledger_id)
        assert entry.merchant == "Mama Cass Lekki"
        assert entry.category_id == "food-dining"
        assert entry.is_recurring is True
        assert entry.amount == Decimal("-800.00")

    def test_single_expense_already_processed(self, materializer, job):
        _, records = job
        with pytest.raises(ConfirmationError, match="already processed"):
            materializer.create_single_expense("user-1", records[3].id, AUTO_CATEGORY)
        with pytest.raises(ConfirmationError):
            materializer.create_single_expense("user-2", records[0].id, AUTO_CATEGORY)

    def test_reject(self, materializer, store, job):
        job_record, records = job
        count = materializer.reject_transactions(
            "user-1", job_record.id, [records[1].id, records[1].id, records[3].id]
        )

        assert count == 1
        assert store.get_transaction(records[1].id, "user-1").status == ParsedTransactionStatus.REJECTED
        assert store.get_job(job_record.id).rejected == 1
