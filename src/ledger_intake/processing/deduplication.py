"""
Deduplication engine.

Checks, in precedence order, stopping at the first match:
1. same_batch: hash already seen earlier in this call
2. previous_import: hash persisted for this user by another job
3. existing_expense: ledger entry with the exact amount, a date within the
   variance window and (when both sides have one) the same merchant

Context is loaded once per call from the store and never cached across
jobs, so concurrent jobs share no mutable state.
"""

import logging
from collections.abc import Sequence
from datetime import date, timedelta
from typing import Optional

from ..schemas.transactions import DeduplicationResult, DuplicateType, NormalizedTransaction
from ..state_store.sqlite_store import LedgerEntryRecord, StateStore
from .merchants import normalize_merchant

logger = logging.getLogger(__name__)


class DeduplicationEngine:
    """Classifies normalized transactions as unique or duplicate."""

    def __init__(self, store: StateStore, variance_days: int = 1):
        self.store = store
        self.variance_days = variance_days

    def check_batch(
        self, user_id: str, job_id: str, transactions: Sequence[NormalizedTransaction]
    ) -> list[DeduplicationResult]:
        """
        Classify a batch, preserving input order.

        Args:
            user_id: Owner of the job.
            job_id: Job being processed (excluded from previous_import).
            transactions: Normalized batch.
        """
        if not transactions:
            return []

        previous_hashes = self.store.get_import_hashes(user_id, exclude_job_id=job_id)
        ledger_entries = self._load_ledger_window(user_id, transactions)

        seen: set[str] = set()
        results: list[DeduplicationResult] = []

        for txn in transactions:
            result = DeduplicationResult(transaction=txn, is_duplicate=False)

            if txn.dedup_hash in seen:
                result.is_duplicate = True
                result.duplicate_type = DuplicateType.SAME_BATCH
                logger.debug("Same-batch duplicate: %s", txn.dedup_hash)
            elif txn.dedup_hash in previous_hashes:
                result.is_duplicate = True
                result.duplicate_type = DuplicateType.PREVIOUS_IMPORT
                result.duplicate_of_id = previous_hashes[txn.dedup_hash]
                logger.debug("Previous-import duplicate: %s", txn.dedup_hash)
            else:
                match = self.find_ledger_match(txn, ledger_entries)
                if match is not None:
                    result.is_duplicate = True
                    result.duplicate_type = DuplicateType.EXISTING_EXPENSE
                    result.duplicate_of_id = match.id
                    logger.debug("Existing-expense duplicate: %s", match.id)

            seen.add(txn.dedup_hash)
            results.append(result)

        duplicates = sum(1 for r in results if r.is_duplicate)
        logger.info(
            "Deduplication: %d duplicates found in %d transactions", duplicates, len(results)
        )
        return results

    def _load_ledger_window(
        self, user_id: str, transactions: Sequence[NormalizedTransaction]
    ) -> list[LedgerEntryRecord]:
        variance = timedelta(days=self.variance_days)
        start = min(t.date for t in transactions) - variance
        end = max(t.date for t in transactions) + variance
        return self.store.get_ledger_entries_between(user_id, start.isoformat(), end.isoformat())

    def find_ledger_match(
        self, txn: NormalizedTransaction, entries: Sequence[LedgerEntryRecord]
    ) -> Optional[LedgerEntryRecord]:
        """First ledger entry matching amount, date window and merchant."""
        for entry in entries:
            if entry.amount != txn.amount:
                continue

            entry_date = _parse_day(entry.date)
            if entry_date is None or abs((entry_date - txn.date).days) > self.variance_days:
                continue

            if txn.normalized_merchant and entry.merchant:
                if normalize_merchant(entry.merchant) != txn.normalized_merchant:
                    continue

            return entry
        return None


def _parse_day(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None
