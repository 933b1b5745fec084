"""
SQLite-based state store implementation.

Tables:
- import_jobs: One row per ingestion attempt (file, screenshot batch, email)
- parsed_transactions: Candidate transactions extracted by a job
- ledger_entries: Materialized expenses/income
- expense_categories: Valid ledger categories
- import_email_addresses: Per-user inbound alert addresses (migration 002)
"""

import sqlite3
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import AlreadyProcessedError
from ..schemas.transactions import DeduplicationResult

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_iso(moment: datetime | None = None) -> str:
    """Format a UTC timestamp the way every table stores it."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def _new_id() -> str:
    return str(uuid.uuid4())


class ImportSource(str, Enum):
    """Where an import job's data came from."""

    STATEMENT_PDF = "STATEMENT_PDF"
    STATEMENT_CSV = "STATEMENT_CSV"
    SCREENSHOT = "SCREENSHOT"
    EMAIL_FORWARD = "EMAIL_FORWARD"


class ImportJobStatus(str, Enum):
    """Import job state machine.

    PROCESSING -> AWAITING_REVIEW | FAILED
    AWAITING_REVIEW -> COMPLETED
    """

    PROCESSING = "PROCESSING"
    AWAITING_REVIEW = "AWAITING_REVIEW"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ParsedTransactionStatus(str, Enum):
    """Parsed transaction state machine.

    PENDING -> CONFIRMED | REJECTED | DUPLICATE
    PENDING | CONFIRMED -> CREATED
    CREATED and DUPLICATE are terminal.
    """

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    DUPLICATE = "DUPLICATE"
    CREATED = "CREATED"


MATERIALIZABLE_STATUSES = (ParsedTransactionStatus.PENDING, ParsedTransactionStatus.CONFIRMED)


@dataclass
class ParsedTransactionRecord:
    """Record of a candidate transaction."""

    id: str
    job_id: str
    amount: Decimal
    currency: str
    date: str  # YYYY-MM-DD
    description: str
    merchant: str | None
    normalized_merchant: str | None
    is_recurring_guess: bool
    confidence: float
    dedup_hash: str
    status: ParsedTransactionStatus
    duplicate_type: str | None
    duplicate_of_id: str | None
    ledger_entry_id: str | None
    reference: str | None
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ParsedTransactionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            job_id=row["job_id"],
            amount=Decimal(row["amount"]),
            currency=row["currency"],
            date=row["date"],
            description=row["description"],
            merchant=row["merchant"],
            normalized_merchant=row["normalized_merchant"],
            is_recurring_guess=bool(row["is_recurring_guess"]),
            confidence=row["confidence"],
            dedup_hash=row["dedup_hash"],
            status=ParsedTransactionStatus(row["status"]),
            duplicate_type=row["duplicate_type"],
            duplicate_of_id=row["duplicate_of_id"],
            ledger_entry_id=row["ledger_entry_id"],
            reference=row["reference"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "date": self.date,
            "description": self.description,
            "merchant": self.merchant,
            "normalized_merchant": self.normalized_merchant,
            "is_recurring_guess": self.is_recurring_guess,
            "confidence": self.confidence,
            "status": self.status.value,
            "duplicate_type": self.duplicate_type,
            "duplicate_of_id": self.duplicate_of_id,
            "ledger_entry_id": self.ledger_entry_id,
        }


@dataclass
class ImportJobRecord:
    """Record of an import job."""

    id: str
    user_id: str
    source: ImportSource
    status: ImportJobStatus
    file_name: str | None
    file_size: int | None
    mime_type: str | None
    storage_path: str | None
    bank_name: str | None
    total_parsed: int
    created: int
    duplicates: int
    rejected: int
    error_message: str | None
    created_at: str
    updated_at: str
    completed_at: str | None
    transactions: list[ParsedTransactionRecord] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportJobRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            source=ImportSource(row["source"]),
            status=ImportJobStatus(row["status"]),
            file_name=row["file_name"],
            file_size=row["file_size"],
            mime_type=row["mime_type"],
            storage_path=row["storage_path"],
            bank_name=row["bank_name"],
            total_parsed=row["total_parsed"],
            created=row["created"],
            duplicates=row["duplicates"],
            rejected=row["rejected"],
            error_message=row["error_message"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "source": self.source.value,
            "status": self.status.value,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "bank_name": self.bank_name,
            "total_parsed": self.total_parsed,
            "created": self.created,
            "duplicates": self.duplicates,
            "rejected": self.rejected,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "transactions": [t.to_dict() for t in self.transactions],
        }


@dataclass
class LedgerEntryRecord:
    """Record of a materialized ledger entry."""

    id: str
    user_id: str
    category_id: str
    amount: Decimal
    currency: str
    date: str
    description: str
    merchant: str | None
    is_recurring: bool
    source: str
    import_job_id: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "LedgerEntryRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            category_id=row["category_id"],
            amount=Decimal(row["amount"]),
            currency=row["currency"],
            date=row["date"],
            description=row["description"],
            merchant=row["merchant"],
            is_recurring=bool(row["is_recurring"]),
            source=row["source"],
            import_job_id=row["import_job_id"],
            created_at=row["created_at"],
        )


@dataclass
class LedgerEntryDraft:
    """Ledger entry to be created from a parsed transaction."""

    transaction_id: str
    category_id: str
    amount: Decimal
    currency: str
    date: str
    description: str
    merchant: str | None
    is_recurring: bool


@dataclass
class ImportEmailRecord:
    """Inbound address that forwards bank alerts for a user."""

    id: str
    user_id: str
    address: str
    is_active: bool
    created_at: str
    last_used_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportEmailRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            address=row["address"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            last_used_at=row["last_used_at"],
        )


class StateStore:
    """
    SQLite-based state store for the import pipeline.

    Provides persistent tracking of:
    - Import jobs and their counters
    - Parsed transactions and their review state
    - Ledger entries created from imports
    - Categories and inbound email addresses

    Every public method opens its own connection, so the store can be shared
    by worker threads. Multi-row writes run inside one transaction.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS import_jobs (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    source TEXT NOT NULL,
                    status TEXT NOT NULL,
                    file_name TEXT,
                    file_size INTEGER,
                    mime_type TEXT,
                    storage_path TEXT,  -- NULL for screenshots and email
                    bank_name TEXT,
                    total_parsed INTEGER NOT NULL DEFAULT 0,
                    created INTEGER NOT NULL DEFAULT 0,
                    duplicates INTEGER NOT NULL DEFAULT 0,
                    rejected INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS parsed_transactions (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL,
                    amount TEXT NOT NULL,  -- Decimal string, signed
                    currency TEXT NOT NULL,
                    date TEXT NOT NULL,  -- YYYY-MM-DD
                    description TEXT NOT NULL,
                    merchant TEXT,
                    normalized_merchant TEXT,
                    is_recurring_guess INTEGER NOT NULL DEFAULT 0,
                    confidence REAL NOT NULL DEFAULT 1.0,
                    dedup_hash TEXT NOT NULL,
                    status TEXT NOT NULL,
                    duplicate_type TEXT,
                    duplicate_of_id TEXT,
                    ledger_entry_id TEXT,
                    reference TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (job_id) REFERENCES import_jobs(id) ON DELETE CASCADE
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_entries (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    category_id TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    date TEXT NOT NULL,
                    description TEXT NOT NULL,
                    merchant TEXT,
                    is_recurring INTEGER NOT NULL DEFAULT 0,
                    source TEXT NOT NULL DEFAULT 'manual',
                    import_job_id TEXT,  -- Survives job cleanup, no FK
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS expense_categories (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_import_jobs_user ON import_jobs(user_id, created_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_import_jobs_status ON import_jobs(status, updated_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_parsed_job ON parsed_transactions(job_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_parsed_hash ON parsed_transactions(dedup_hash)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_ledger_user_date ON ledger_entries(user_id, date)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Import job methods

    def create_job(
        self,
        user_id: str,
        source: ImportSource,
        file_name: str | None = None,
        file_size: int | None = None,
        mime_type: str | None = None,
        storage_path: str | None = None,
        bank_name: str | None = None,
    ) -> ImportJobRecord:
        """Create a job in PROCESSING state."""
        job_id = _new_id()
        now = utc_iso()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO import_jobs (
                    id, user_id, source, status, file_name, file_size, mime_type,
                    storage_path, bank_name, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    user_id,
                    source.value,
                    ImportJobStatus.PROCESSING.value,
                    file_name,
                    file_size,
                    mime_type,
                    storage_path,
                    bank_name,
                    now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM import_jobs WHERE id = ?", (job_id,)).fetchone()
            return ImportJobRecord.from_row(row)

    def get_job(
        self, job_id: str, user_id: str | None = None, with_transactions: bool = False
    ) -> ImportJobRecord | None:
        """Get a job, optionally scoped to its owner."""
        with self._transaction() as conn:
            if user_id is None:
                row = conn.execute("SELECT * FROM import_jobs WHERE id = ?", (job_id,)).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM import_jobs WHERE id = ? AND user_id = ?", (job_id, user_id)
                ).fetchone()
            if not row:
                return None
            job = ImportJobRecord.from_row(row)
            if with_transactions:
                rows = conn.execute(
                    """
                    SELECT * FROM parsed_transactions
                    WHERE job_id = ?
                    ORDER BY date DESC, created_at ASC
                    """,
                    (job_id,),
                ).fetchall()
                job.transactions = [ParsedTransactionRecord.from_row(r) for r in rows]
            return job

    def list_jobs(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[ImportJobRecord], int]:
        """List a user's jobs, newest first, with the total count."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM import_jobs
                WHERE user_id = ?
                ORDER BY created_at DESC
                LIMIT ? OFFSET ?
                """,
                (user_id, limit, offset),
            ).fetchall()
            total = conn.execute(
                "SELECT COUNT(*) as count FROM import_jobs WHERE user_id = ?", (user_id,)
            ).fetchone()
            return [ImportJobRecord.from_row(r) for r in rows], total["count"] if total else 0

    def complete_parsing(
        self,
        job_id: str,
        results: Sequence[DeduplicationResult],
        bank_name: str | None = None,
    ) -> list[ParsedTransactionRecord]:
        """
        Persist a job's transaction batch and move it to AWAITING_REVIEW.

        Both writes happen in one transaction. The job must still be PROCESSING;
        a job already failed by the stuck-job sweep is left untouched.

        Raises:
            AlreadyProcessedError: If the job left PROCESSING meanwhile
        """
        now = utc_iso()
        duplicates = sum(1 for r in results if r.is_duplicate)

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE import_jobs
                SET status = ?, total_parsed = ?, duplicates = ?,
                    bank_name = COALESCE(?, bank_name), updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    ImportJobStatus.AWAITING_REVIEW.value,
                    len(results),
                    duplicates,
                    bank_name,
                    now,
                    job_id,
                    ImportJobStatus.PROCESSING.value,
                ),
            )
            if cursor.rowcount == 0:
                raise AlreadyProcessedError(
                    f"Import job '{job_id}' is no longer processing", {"job_id": job_id}
                )

            for result in results:
                txn = result.transaction
                status = (
                    ParsedTransactionStatus.DUPLICATE
                    if result.is_duplicate
                    else ParsedTransactionStatus.PENDING
                )
                conn.execute(
                    """
                    INSERT INTO parsed_transactions (
                        id, job_id, amount, currency, date, description, merchant,
                        normalized_merchant, is_recurring_guess, confidence, dedup_hash,
                        status, duplicate_type, duplicate_of_id, reference,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        _new_id(),
                        job_id,
                        str(txn.amount),
                        txn.currency,
                        txn.date.isoformat(),
                        txn.description,
                        txn.merchant,
                        txn.normalized_merchant,
                        int(txn.is_recurring_guess),
                        txn.confidence,
                        txn.dedup_hash,
                        status.value,
                        result.duplicate_type.value if result.duplicate_type else None,
                        result.duplicate_of_id,
                        txn.reference,
                        now,
                        now,
                    ),
                )

            rows = conn.execute(
                "SELECT * FROM parsed_transactions WHERE job_id = ? ORDER BY date DESC, created_at ASC",
                (job_id,),
            ).fetchall()
            return [ParsedTransactionRecord.from_row(r) for r in rows]

    def fail_job(self, job_id: str, error_message: str) -> bool:
        """Move a PROCESSING job to FAILED. Returns False if it already left PROCESSING."""
        now = utc_iso()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE import_jobs
                SET status = ?, error_message = ?, updated_at = ?, completed_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    ImportJobStatus.FAILED.value,
                    error_message,
                    now,
                    now,
                    job_id,
                    ImportJobStatus.PROCESSING.value,
                ),
            )
            return cursor.rowcount > 0

    def fail_stuck_jobs(self, cutoff: str, error_message: str) -> list[str]:
        """Fail every PROCESSING job not updated since ``cutoff``. Returns their ids."""
        now = utc_iso()
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id FROM import_jobs WHERE status = ? AND updated_at < ?",
                (ImportJobStatus.PROCESSING.value, cutoff),
            ).fetchall()
            job_ids = [row["id"] for row in rows]
            for job_id in job_ids:
                conn.execute(
                    """
                    UPDATE import_jobs
                    SET status = ?, error_message = ?, updated_at = ?, completed_at = ?
                    WHERE id = ? AND status = ?
                    """,
                    (
                        ImportJobStatus.FAILED.value,
                        error_message,
                        now,
                        now,
                        job_id,
                        ImportJobStatus.PROCESSING.value,
                    ),
                )
            return job_ids

    def get_jobs_finished_before(self, cutoff: str) -> list[ImportJobRecord]:
        """COMPLETED or FAILED jobs whose last update is older than ``cutoff``."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM import_jobs
                WHERE status IN (?, ?) AND updated_at < ?
                ORDER BY updated_at ASC
                """,
                (ImportJobStatus.COMPLETED.value, ImportJobStatus.FAILED.value, cutoff),
            ).fetchall()
            return [ImportJobRecord.from_row(r) for r in rows]

    def delete_job(self, job_id: str) -> bool:
        """Delete a job and its parsed transactions."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM import_jobs WHERE id = ?", (job_id,))
            return cursor.rowcount > 0

    def touch_job(self, job_id: str) -> None:
        """Refresh a job's lease while it is still processing."""
        with self._transaction() as conn:
            conn.execute(
                "UPDATE import_jobs SET updated_at = ? WHERE id = ? AND status = ?",
                (utc_iso(), job_id, ImportJobStatus.PROCESSING.value),
            )

    # Parsed transaction methods

    def get_transaction(
        self, transaction_id: str, user_id: str
    ) -> ParsedTransactionRecord | None:
        """Get a transaction if its job belongs to ``user_id``."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT t.* FROM parsed_transactions t
                JOIN import_jobs j ON j.id = t.job_id
                WHERE t.id = ? AND j.user_id = ?
                """,
                (transaction_id, user_id),
            ).fetchone()
            return ParsedTransactionRecord.from_row(row) if row else None

    def get_job_transactions(
        self, job_id: str, user_id: str, transaction_ids: Sequence[str] | None = None
    ) -> list[ParsedTransactionRecord]:
        """Get a job's transactions (optionally a subset) scoped to the owner."""
        query = """
            SELECT t.* FROM parsed_transactions t
            JOIN import_jobs j ON j.id = t.job_id
            WHERE t.job_id = ? AND j.user_id = ?
        """
        params: list[Any] = [job_id, user_id]
        if transaction_ids is not None:
            if not transaction_ids:
                return []
            query += f" AND t.id IN ({', '.join('?' for _ in transaction_ids)})"
            params.extend(transaction_ids)
        query += " ORDER BY t.date DESC, t.created_at ASC"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [ParsedTransactionRecord.from_row(r) for r in rows]

    def update_transaction(
        self,
        transaction_id: str,
        status: ParsedTransactionStatus | None = None,
        merchant: str | None = None,
        normalized_merchant: str | None = None,
        is_recurring_guess: bool | None = None,
    ) -> ParsedTransactionRecord | None:
        """
        Apply a review edit.

        The write only lands if the row still has the status it was read
        with, so a concurrent confirm cannot be overwritten. Moving into or
        out of REJECTED adjusts the job's ``rejected`` counter.

        Raises:
            AlreadyProcessedError: Row is CREATED or DUPLICATE, or changed
                status while the edit was applied.
        """
        updates = ["updated_at = ?"]
        params: list[Any] = [utc_iso()]
        if status is not None:
            updates.append("status = ?")
            params.append(status.value)
        if merchant is not None:
            updates.append("merchant = ?")
            params.append(merchant)
            updates.append("normalized_merchant = ?")
            params.append(normalized_merchant)
        if is_recurring_guess is not None:
            updates.append("is_recurring_guess = ?")
            params.append(int(is_recurring_guess))

        with self._transaction() as conn:
            before = conn.execute(
                "SELECT * FROM parsed_transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
            if not before:
                return None
            current = ParsedTransactionStatus(before["status"])
            if current in (ParsedTransactionStatus.CREATED, ParsedTransactionStatus.DUPLICATE):
                raise AlreadyProcessedError(
                    f"Transaction '{transaction_id}' is {current.value} and cannot be changed",
                    {"transaction_id": transaction_id, "status": current.value},
                )

            cursor = conn.execute(
                f"UPDATE parsed_transactions SET {', '.join(updates)} WHERE id = ? AND status = ?",
                (*params, transaction_id, current.value),
            )
            if cursor.rowcount == 0:
                raise AlreadyProcessedError(
                    f"Transaction '{transaction_id}' changed status while being updated",
                    {"transaction_id": transaction_id, "status": current.value},
                )

            was_rejected = current == ParsedTransactionStatus.REJECTED
            if status is not None and (status == ParsedTransactionStatus.REJECTED) != was_rejected:
                conn.execute(
                    "UPDATE import_jobs SET rejected = rejected + ?, updated_at = ? WHERE id = ?",
                    (-1 if was_rejected else 1, utc_iso(), before["job_id"]),
                )
            row = conn.execute(
                "SELECT * FROM parsed_transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
            return ParsedTransactionRecord.from_row(row)

    def reject_transactions(self, job_id: str, user_id: str, transaction_ids: Sequence[str]) -> int:
        """Move PENDING transactions to REJECTED and bump the job counter."""
        if not transaction_ids:
            return 0
        placeholders = ", ".join("?" for _ in transaction_ids)
        now = utc_iso()
        with self._transaction() as conn:
            owner = conn.execute(
                "SELECT id FROM import_jobs WHERE id = ? AND user_id = ?", (job_id, user_id)
            ).fetchone()
            if not owner:
                return 0
            cursor = conn.execute(
                f"""
                UPDATE parsed_transactions
                SET status = ?, updated_at = ?
                WHERE job_id = ? AND status = ? AND id IN ({placeholders})
                """,
                (
                    ParsedTransactionStatus.REJECTED.value,
                    now,
                    job_id,
                    ParsedTransactionStatus.PENDING.value,
                    *transaction_ids,
                ),
            )
            count = cursor.rowcount
            if count:
                conn.execute(
                    "UPDATE import_jobs SET rejected = rejected + ?, updated_at = ? WHERE id = ?",
                    (count, now, job_id),
                )
            return count

    def get_import_hashes(self, user_id: str, exclude_job_id: str) -> dict[str, str]:
        """Map of dedup hash -> earliest transaction id from the user's other jobs."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT t.dedup_hash, t.id FROM parsed_transactions t
                JOIN import_jobs j ON j.id = t.job_id
                WHERE j.user_id = ? AND t.job_id != ?
                ORDER BY t.created_at ASC
                """,
                (user_id, exclude_job_id),
            ).fetchall()
            hashes: dict[str, str] = {}
            for row in rows:
                hashes.setdefault(row["dedup_hash"], row["id"])
            return hashes

    # Ledger methods

    def add_ledger_entry(
        self,
        user_id: str,
        amount: Decimal,
        date: str,
        description: str,
        category_id: str = "other",
        currency: str = "NGN",
        merchant: str | None = None,
        is_recurring: bool = False,
        source: str = "manual",
    ) -> LedgerEntryRecord:
        """Insert a ledger entry that did not come from an import."""
        entry_id = _new_id()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO ledger_entries (
                    id, user_id, category_id, amount, currency, date, description,
                    merchant, is_recurring, source, import_job_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?)
                """,
                (
                    entry_id,
                    user_id,
                    category_id,
                    str(amount),
                    currency,
                    date,
                    description,
                    merchant,
                    int(is_recurring),
                    source,
                    utc_iso(),
                ),
            )
            row = conn.execute("SELECT * FROM ledger_entries WHERE id = ?", (entry_id,)).fetchone()
            return LedgerEntryRecord.from_row(row)

    def get_ledger_entries_between(
        self, user_id: str, start: str, end: str
    ) -> list[LedgerEntryRecord]:
        """Ledger entries for a user with ``start <= date <= end`` (YYYY-MM-DD)."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM ledger_entries
                WHERE user_id = ? AND date >= ? AND date <= ?
                ORDER BY date ASC
                """,
                (user_id, start, end),
            ).fetchall()
            return [LedgerEntryRecord.from_row(r) for r in rows]

    def get_ledger_entry(self, entry_id: str) -> LedgerEntryRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM ledger_entries WHERE id = ?", (entry_id,)).fetchone()
            return LedgerEntryRecord.from_row(row) if row else None

    def materialize_transactions(
        self, user_id: str, job_id: str, drafts: Sequence[LedgerEntryDraft]
    ) -> tuple[list[LedgerEntryRecord], int]:
        """
        Create ledger entries and flip their transactions to CREATED atomically.

        A transaction that left PENDING/CONFIRMED since it was loaded is skipped.
        When at least one entry is created the job's ``created`` counter is
        incremented and the job is marked COMPLETED.

        Returns:
            Tuple of (created entries, skipped count)
        """
        now = utc_iso()
        created: list[LedgerEntryRecord] = []
        skipped = 0
        allowed = tuple(s.value for s in MATERIALIZABLE_STATUSES)

        with self._transaction() as conn:
            for draft in drafts:
                entry_id = _new_id()
                cursor = conn.execute(
                    """
                    UPDATE parsed_transactions
                    SET status = ?, ledger_entry_id = ?, updated_at = ?
                    WHERE id = ? AND job_id = ? AND status IN (?, ?)
                    """,
                    (
                        ParsedTransactionStatus.CREATED.value,
                        entry_id,
                        now,
                        draft.transaction_id,
                        job_id,
                        *allowed,
                    ),
                )
                if cursor.rowcount == 0:
                    skipped += 1
                    continue

                conn.execute(
                    """
                    INSERT INTO ledger_entries (
                        id, user_id, category_id, amount, currency, date, description,
                        merchant, is_recurring, source, import_job_id, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'import', ?, ?)
                    """,
                    (
                        entry_id,
                        user_id,
                        draft.category_id,
                        str(draft.amount),
                        draft.currency,
                        draft.date,
                        draft.description,
                        draft.merchant,
                        int(draft.is_recurring),
                        job_id,
                        now,
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM ledger_entries WHERE id = ?", (entry_id,)
                ).fetchone()
                created.append(LedgerEntryRecord.from_row(row))

            if created:
                conn.execute(
                    """
                    UPDATE import_jobs
                    SET created = created + ?, status = ?, updated_at = ?, completed_at = ?
                    WHERE id = ?
                    """,
                    (len(created), ImportJobStatus.COMPLETED.value, now, now, job_id),
                )

        return created, skipped

    # Category methods

    def category_exists(self, category_id: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM expense_categories WHERE id = ?", (category_id,)
            ).fetchone()
            return row is not None

    def add_category(self, category_id: str, name: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO expense_categories (id, name) VALUES (?, ?)",
                (category_id, name),
            )

    def list_categories(self) -> list[dict[str, str]]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT id, name FROM expense_categories ORDER BY id").fetchall()
            return [{"id": row["id"], "name": row["name"]} for row in rows]

    # Import email address methods

    def get_import_email_for_user(self, user_id: str) -> ImportEmailRecord | None:
        """Get the user's active inbound address."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM import_email_addresses
                WHERE user_id = ? AND is_active = 1
                ORDER BY created_at DESC LIMIT 1
                """,
                (user_id,),
            ).fetchone()
            return ImportEmailRecord.from_row(row) if row else None

    def get_import_email_by_address(self, address: str) -> ImportEmailRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM import_email_addresses WHERE address = ?", (address.lower(),)
            ).fetchone()
            return ImportEmailRecord.from_row(row) if row else None

    def create_import_email(self, user_id: str, address: str) -> ImportEmailRecord:
        """Deactivate the user's previous addresses and register a new one."""
        record_id = _new_id()
        with self._transaction() as conn:
            conn.execute(
                "UPDATE import_email_addresses SET is_active = 0 WHERE user_id = ?", (user_id,)
            )
            conn.execute(
                """
                INSERT INTO import_email_addresses (id, user_id, address, is_active, created_at)
                VALUES (?, ?, ?, 1, ?)
                """,
                (record_id, user_id, address.lower(), utc_iso()),
            )
            row = conn.execute(
                "SELECT * FROM import_email_addresses WHERE id = ?", (record_id,)
            ).fetchone()
            return ImportEmailRecord.from_row(row)

    def mark_import_email_used(self, address: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE import_email_addresses SET last_used_at = ? WHERE address = ?",
                (utc_iso(), address.lower()),
            )

    # Statistics

    def get_job_stats(self, since: str | None = None) -> dict[str, Any]:
        """Job counts by status and by source, optionally since a timestamp."""
        where = ""
        params: tuple[Any, ...] = ()
        if since:
            where = "WHERE created_at >= ?"
            params = (since,)

        with self._transaction() as conn:
            by_status = conn.execute(
                f"SELECT status, COUNT(*) as count FROM import_jobs {where} GROUP BY status",
                params,
            ).fetchall()
            by_source = conn.execute(
                f"SELECT source, COUNT(*) as count FROM import_jobs {where} GROUP BY source",
                params,
            ).fetchall()
            totals = conn.execute(
                f"""
                SELECT COUNT(*) as jobs,
                       COALESCE(SUM(total_parsed), 0) as parsed,
                       COALESCE(SUM(created), 0) as created,
                       COALESCE(SUM(duplicates), 0) as duplicates
                FROM import_jobs {where}
                """,
                params,
            ).fetchone()

            return {
                "jobs_total": totals["jobs"],
                "transactions_parsed": totals["parsed"],
                "expenses_created": totals["created"],
                "duplicates_found": totals["duplicates"],
                "by_status": {row["status"]: row["count"] for row in by_status},
                "by_source": {row["source"]: row["count"] for row in by_source},
            }
