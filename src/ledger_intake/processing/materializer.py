"""
Expense materializer.

Converts reviewed parsed transactions into ledger entries. The ledger
insert, the transaction's move to CREATED and the job counter update are
one atomic write (``StateStore.materialize_transactions``).
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import ConfirmationError
from ..events import EXPENSES_CREATED, EventBus
from ..state_store.sqlite_store import (
    MATERIALIZABLE_STATUSES,
    LedgerEntryDraft,
    ParsedTransactionRecord,
    StateStore,
)
from .merchant_categories import FALLBACK_CATEGORY, resolve_category
from .subscriptions import SubscriptionCatalog

logger = logging.getLogger(__name__)

# Category sentinel: pick a category per transaction from its merchant
AUTO_CATEGORY = "auto"


@dataclass
class MaterializationResult:
    """Outcome of a confirmation."""

    created: int = 0
    skipped: int = 0
    ledger_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"created": self.created, "skipped": self.skipped, "ledger_ids": self.ledger_ids}


class ExpenseMaterializer:
    """Creates ledger entries from CONFIRMED/PENDING parsed transactions."""

    def __init__(
        self,
        store: StateStore,
        events: EventBus,
        catalog: Optional[SubscriptionCatalog] = None,
    ):
        self.store = store
        self.events = events
        self.catalog = catalog or SubscriptionCatalog()

    def _category_for(self, txn: ParsedTransactionRecord, category_id: str) -> str:
        if category_id != AUTO_CATEGORY:
            return category_id
        resolved = resolve_category(txn.normalized_merchant)
        return resolved if self.store.category_exists(resolved) else FALLBACK_CATEGORY

    def _validate_category(self, category_id: str) -> None:
        if category_id != AUTO_CATEGORY and not self.store.category_exists(category_id):
            raise ConfirmationError(
                f"Category with id '{category_id}' not found", {"category_id": category_id}
            )

    def is_recurring(self, txn: ParsedTransactionRecord) -> bool:
        """Known subscription merchant OR the normalizer's recurrence guess."""
        return self.catalog.is_known_subscription(txn.normalized_merchant) or txn.is_recurring_guess

    def _draft(
        self,
        txn: ParsedTransactionRecord,
        category_id: str,
        merchant: Optional[str] = None,
        is_recurring: Optional[bool] = None,
    ) -> LedgerEntryDraft:
        return LedgerEntryDraft(
            transaction_id=txn.id,
            category_id=self._category_for(txn, category_id),
            amount=txn.amount,
            currency=txn.currency,
            date=txn.date,
            description=txn.description,
            merchant=merchant or txn.merchant or txn.normalized_merchant,
            is_recurring=self.is_recurring(txn) if is_recurring is None else is_recurring,
        )

    def create_expenses(
        self,
        user_id: str,
        job_id: str,
        transaction_ids: Sequence[str],
        category_id: str,
    ) -> MaterializationResult:
        """
        Materialize the given transactions of one job.

        Transactions that are already CREATED, DUPLICATE or REJECTED are
        skipped and counted, never an error.

        Args:
            user_id: Owner of the job.
            job_id: Job the transactions belong to.
            transaction_ids: Transactions to materialize.
            category_id: Ledger category, or ``auto``.

        Raises:
            ConfirmationError: Unknown category, or none of the ids belong
                to this user's job.
        """
        self._validate_category(category_id)

        wanted = list(dict.fromkeys(transaction_ids))
        transactions = self.store.get_job_transactions(job_id, user_id, wanted)
        if not transactions:
            raise ConfirmationError(
                "No valid transactions found to confirm",
                {"job_id": job_id, "transaction_ids": wanted},
            )

        drafts = []
        skipped = 0
        for txn in transactions:
            if txn.status not in MATERIALIZABLE_STATUSES:
                skipped += 1
                continue
            drafts.append(self._draft(txn, category_id))

        if not drafts:
            logger.info("Nothing to materialize for job %s (%d skipped)", job_id, skipped)
            return MaterializationResult(created=0, skipped=skipped)

        entries, raced = self.store.materialize_transactions(user_id, job_id, drafts)
        result = MaterializationResult(
            created=len(entries),
            skipped=skipped + raced,
            ledger_ids=[entry.id for entry in entries],
        )

        logger.info(
            "Created %d ledger entries from job %s (%d skipped)",
            result.created,
            job_id,
            result.skipped,
        )

        if result.ledger_ids:
            self.events.publish(
                EXPENSES_CREATED,
                {
                    "user_id": user_id,
                    "ledger_ids": result.ledger_ids,
                    "source": "import",
                    "job_id": job_id,
                },
            )
        return result

    def create_single_expense(
        self,
        user_id: str,
        transaction_id: str,
        category_id: str,
        merchant: Optional[str] = None,
        is_recurring: Optional[bool] = None,
    ) -> str:
        """
        Materialize one transaction with optional overrides.

        Returns:
            The new ledger entry id.

        Raises:
            ConfirmationError: Transaction missing/already processed, or
                unknown category.
        """
        txn = self.store.get_transaction(transaction_id, user_id)
        if txn is None or txn.status not in MATERIALIZABLE_STATUSES:
            raise ConfirmationError(
                f"Transaction with id '{transaction_id}' not found or already processed",
                {"transaction_id": transaction_id},
            )
        self._validate_category(category_id)

        draft = self._draft(txn, category_id, merchant=merchant, is_recurring=is_recurring)
        entries, _ = self.store.materialize_transactions(user_id, txn.job_id, [draft])
        if not entries:
            raise ConfirmationError(
                f"Transaction with id '{transaction_id}' was processed concurrently",
                {"transaction_id": transaction_id},
            )

        entry = entries[0]
        logger.info("Created ledger entry %s from transaction %s", entry.id, transaction_id)
        self.events.publish(
            EXPENSES_CREATED,
            {
                "user_id": user_id,
                "ledger_ids": [entry.id],
                "source": "import",
                "job_id": txn.job_id,
            },
        )
        return entry.id

    def reject_transactions(
        self, user_id: str, job_id: str, transaction_ids: Sequence[str]
    ) -> int:
        """Move PENDING transactions to REJECTED. Returns how many moved."""
        count = self.store.reject_transactions(job_id, user_id, list(dict.fromkeys(transaction_ids)))
        logger.info("Rejected %d transactions from job %s", count, job_id)
        return count
