"""
Import job orchestration.

Upload and webhook calls validate their input, persist the job in
PROCESSING and hand the heavy lifting to the dispatcher:

    parse -> normalize -> deduplicate -> complete_parsing

Any failure inside the detached task is recorded on the job (FAILED plus a
message) and never reaches the original caller, who already has the job id.
"""

import hashlib
import logging
import secrets
import time
from collections.abc import Sequence
from email.utils import parseaddr
from pathlib import PurePath
from typing import Any, Optional, Union

from ..config import Config
from ..errors import (
    AlreadyProcessedError,
    FileTooLargeError,
    ImportEmailNotFoundError,
    IntakeError,
    InvalidFileTypeError,
    JobNotFoundError,
    TransactionNotFoundError,
)
from ..events import EMAIL_ADDRESS_CREATED, EMAIL_AUTO_CONFIRMED, EventBus
from ..llm.client import CompletionClient, VisionImage
from ..parsers.email_parser import EmailContent
from ..parsers.router import ParserRouter
from ..processing.deduplication import DeduplicationEngine
from ..processing.materializer import AUTO_CATEGORY, ExpenseMaterializer, MaterializationResult
from ..processing.merchants import normalize_merchant
from ..processing.normalizer import Normalizer
from ..state_store.sqlite_store import (
    ImportEmailRecord,
    ImportJobRecord,
    ImportSource,
    ParsedTransactionRecord,
    ParsedTransactionStatus,
    StateStore,
)
from ..storage.base import FileStorage
from ..storage.local import LocalFileStorage
from .dispatcher import JobDispatcher

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
EMAIL_ADDRESS_PREFIX = "intake"

# Wording for "No transactions found in ..." per source
_SOURCE_LABELS = {
    ImportSource.STATEMENT_PDF: "file",
    ImportSource.STATEMENT_CSV: "file",
    ImportSource.SCREENSHOT: "screenshots",
    ImportSource.EMAIL_FORWARD: "email",
}

# Review edits may only move a transaction into these states
_REVIEW_STATUSES = (ParsedTransactionStatus.CONFIRMED, ParsedTransactionStatus.REJECTED)
_TERMINAL_STATUSES = (ParsedTransactionStatus.CREATED, ParsedTransactionStatus.DUPLICATE)


class ImportService:
    """
    Entry point for every import source.

    Exposed operations:
    - upload_statement / upload_screenshots / process_email_webhook
    - get_job / list_jobs
    - confirm_transactions / update_transaction / reject_transactions
    - get_import_email / regenerate_import_email
    """

    def __init__(
        self,
        config: Config,
        store: StateStore,
        storage: FileStorage,
        router: ParserRouter,
        normalizer: Normalizer,
        dedupe: DeduplicationEngine,
        materializer: ExpenseMaterializer,
        events: EventBus,
        dispatcher: JobDispatcher,
    ):
        self.config = config
        self.store = store
        self.storage = storage
        self.router = router
        self.normalizer = normalizer
        self.dedupe = dedupe
        self.materializer = materializer
        self.events = events
        self.dispatcher = dispatcher
        self._client: Optional[CompletionClient] = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        dispatcher: Optional[JobDispatcher] = None,
        client: Optional[CompletionClient] = None,
        events: Optional[EventBus] = None,
    ) -> "ImportService":
        """Wire the full pipeline from configuration."""
        store = StateStore(config.state_db_path)
        storage = LocalFileStorage(config.storage.upload_dir)
        owned_client = client is None
        client = client or CompletionClient(config.llm)
        events = events or EventBus()

        service = cls(
            config=config,
            store=store,
            storage=storage,
            router=ParserRouter.from_config(config, client),
            normalizer=Normalizer(),
            dedupe=DeduplicationEngine(store, variance_days=config.imports.dedupe_variance_days),
            materializer=ExpenseMaterializer(store, events),
            events=events,
            dispatcher=dispatcher or JobDispatcher(max_workers=config.imports.worker_threads),
        )
        if owned_client:
            service._client = client
        return service

    def close(self) -> None:
        """Wait for queued jobs, then release the pool and the HTTP client."""
        self.dispatcher.shutdown(wait_for_tasks=True)
        if self._client is not None:
            self._client.close()

    # Uploads

    def upload_statement(
        self,
        user_id: str,
        data: bytes,
        file_name: str,
        mime_type: str,
        bank_name: Optional[str] = None,
    ) -> ImportJobRecord:
        """
        Accept a PDF or CSV statement and queue it for parsing.

        Args:
            user_id: Owner of the new job.
            data: Raw file bytes.
            file_name: Original file name.
            mime_type: Declared content type.
            bank_name: Optional bank hint for column mapping and prompts.

        Returns:
            The job, still PROCESSING.

        Raises:
            FileTooLargeError: File exceeds the statement size limit.
            InvalidFileTypeError: Content type is not a statement type.
            StorageError: The file could not be stored.
        """
        limits = self.config.imports
        if len(data) > limits.max_statement_bytes:
            raise FileTooLargeError(len(data), limits.max_statement_bytes, file_name)
        if mime_type not in limits.statement_mime_types:
            raise InvalidFileTypeError(mime_type, limits.statement_mime_types)

        source = statement_source(mime_type, file_name)
        stored = self.storage.store(user_id, data, file_name, mime_type)
        job = self.store.create_job(
            user_id,
            source,
            file_name=file_name,
            file_size=len(data),
            mime_type=mime_type,
            storage_path=stored.path,
            bank_name=bank_name,
        )
        logger.info("Queued %s job %s for user %s (%s)", source.value, job.id, user_id, file_name)

        self.dispatcher.submit(self._process_job, job.id, user_id, source, None, bank_name)
        return job

    def upload_screenshots(self, user_id: str, images: Sequence[VisionImage]) -> ImportJobRecord:
        """
        Accept banking-app screenshots and queue them for the vision parser.

        Raises:
            InvalidFileTypeError: Too many images, or an image type is not allowed.
            FileTooLargeError: An image exceeds the screenshot size limit.
        """
        limits = self.config.imports
        if not images or len(images) > limits.max_screenshots:
            raise InvalidFileTypeError(
                f"{len(images)} files", [f"1 to {limits.max_screenshots} images per upload"]
            )

        total_size = 0
        for index, image in enumerate(images, start=1):
            if image.mime_type not in limits.screenshot_mime_types:
                raise InvalidFileTypeError(image.mime_type, limits.screenshot_mime_types)
            if len(image.data) > limits.max_screenshot_bytes:
                raise FileTooLargeError(
                    len(image.data), limits.max_screenshot_bytes, f"screenshot {index}"
                )
            total_size += len(image.data)

        job = self.store.create_job(
            user_id,
            ImportSource.SCREENSHOT,
            file_name=f"{len(images)} screenshots",
            file_size=total_size,
        )
        logger.info("Queued screenshot job %s for user %s (%d images)", job.id, user_id, len(images))

        self.dispatcher.submit(
            self._process_job, job.id, user_id, ImportSource.SCREENSHOT, list(images), None
        )
        return job

    def process_email_webhook(
        self, payload: Union[EmailContent, dict[str, Any]]
    ) -> ImportJobRecord:
        """
        Accept a forwarded email delivered to one of the inbound addresses.

        Raises:
            ImportEmailNotFoundError: No recipient is an active inbound address.
        """
        email = payload if isinstance(payload, EmailContent) else EmailContent.from_dict(payload)

        inbound = self._find_inbound_address(email.to)
        self.store.mark_import_email_used(inbound.address)

        job = self.store.create_job(
            inbound.user_id,
            ImportSource.EMAIL_FORWARD,
            file_name=email.subject or "Forwarded email",
        )
        logger.info("Queued email job %s for user %s", job.id, inbound.user_id)

        self.dispatcher.submit(
            self._process_job, job.id, inbound.user_id, ImportSource.EMAIL_FORWARD, email, None
        )
        return job

    def _find_inbound_address(self, recipients: Sequence[str]) -> ImportEmailRecord:
        for recipient in recipients:
            _, address = parseaddr(recipient)
            if not address:
                continue
            record = self.store.get_import_email_by_address(address)
            if record and record.is_active:
                return record
        address = ", ".join(recipients) or "<none>"
        logger.warning("Email received for unknown or inactive address: %s", address)
        raise ImportEmailNotFoundError(address)

    # Detached processing

    def _process_job(
        self,
        job_id: str,
        user_id: str,
        source: ImportSource,
        payload: Any = None,
        bank_name: Optional[str] = None,
    ) -> None:
        """Run one job to AWAITING_REVIEW or FAILED. Never raises."""
        logger.info("Processing job %s (%s)", job_id, source.value)
        try:
            if payload is None:
                payload = self._read_stored_file(job_id)

            result = self.router.parse(source, payload, bank_name)
            self.store.touch_job(job_id)

            if not result.transactions:
                message = f"No transactions found in {_SOURCE_LABELS[source]}"
                if result.errors:
                    message = f"{message}: {'; '.join(result.errors)}"
                self._fail(job_id, message)
                return

            normalized = self.normalizer.normalize(result.transactions, result.currency)
            if not normalized:
                self._fail(job_id, f"No valid transactions found in {_SOURCE_LABELS[source]}")
                return

            checked = self.dedupe.check_batch(user_id, job_id, normalized)
            self.store.complete_parsing(job_id, checked, bank_name=result.bank_name or bank_name)
            duplicates = sum(1 for r in checked if r.is_duplicate)
            logger.info(
                "Job %s: %d transactions stored, %d duplicates", job_id, len(checked), duplicates
            )
        except AlreadyProcessedError:
            logger.warning("Job %s left PROCESSING before its results were stored", job_id)
            return
        except IntakeError as e:
            logger.error("Job %s failed: %s", job_id, e.message)
            self._fail(job_id, e.message)
            return
        except Exception as e:
            logger.exception("Job %s crashed", job_id)
            self._fail(job_id, str(e) or type(e).__name__)
            return

        if source == ImportSource.EMAIL_FORWARD:
            self._try_auto_confirm_email(job_id, user_id, payload.from_address)

    def _read_stored_file(self, job_id: str) -> bytes:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not job.storage_path:
            raise IntakeError("Import job has no stored file", {"job_id": job_id})
        return self.storage.read(job.storage_path)

    def _fail(self, job_id: str, message: str) -> None:
        if self.store.fail_job(job_id, message):
            logger.info("Job %s marked FAILED: %s", job_id, message)
        else:
            logger.warning("Job %s was no longer processing; failure not recorded", job_id)

    def _try_auto_confirm_email(
        self, job_id: str, user_id: str, from_address: str
    ) -> Optional[str]:
        """
        Materialize a lone high-confidence email debit under ``auto``.

        Fires only when exactly one transaction is PENDING with a negative
        amount and its confidence reaches the threshold. Failures are logged
        and leave the job in AWAITING_REVIEW.

        Returns:
            The ledger entry id when an entry was created.
        """
        try:
            job = self.store.get_job(job_id, user_id, with_transactions=True)
            if job is None or job.source != ImportSource.EMAIL_FORWARD:
                return None

            debits = [
                txn
                for txn in job.transactions
                if txn.status == ParsedTransactionStatus.PENDING and txn.amount < 0
            ]
            if len(debits) != 1:
                return None

            txn = debits[0]
            confidence = txn.confidence or 0.0
            if confidence < self.config.imports.auto_confirm_threshold:
                return None

            logger.info(
                "Auto-confirming email import: job %s, txn %s (confidence: %.2f)",
                job_id,
                txn.id,
                confidence,
            )
            result = self.materializer.create_expenses(user_id, job_id, [txn.id], AUTO_CATEGORY)
            if not result.ledger_ids:
                return None

            entry = self.store.get_ledger_entry(result.ledger_ids[0])
            if entry is None:
                return None

            self.events.publish(
                EMAIL_AUTO_CONFIRMED,
                {
                    "user_id": user_id,
                    "job_id": job_id,
                    "ledger_id": entry.id,
                    "amount": str(entry.amount),
                    "currency": entry.currency,
                    "merchant": entry.merchant,
                    "category_id": entry.category_id,
                    "date": entry.date,
                    "description": entry.description,
                    "from_address": from_address,
                },
            )
            return entry.id
        except Exception as e:
            logger.warning("Auto-confirm failed for job %s: %s", job_id, e, exc_info=True)
            return None

    # Jobs

    def get_job(self, user_id: str, job_id: str) -> ImportJobRecord:
        """Get a job with its transactions. Raises JobNotFoundError."""
        job = self.store.get_job(job_id, user_id, with_transactions=True)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[ImportJobRecord], int]:
        return self.store.list_jobs(user_id, limit=limit, offset=offset)

    # Review actions

    def confirm_transactions(
        self,
        user_id: str,
        job_id: str,
        transaction_ids: Sequence[str],
        category_id: str,
    ) -> MaterializationResult:
        if self.store.get_job(job_id, user_id) is None:
            raise JobNotFoundError(job_id)
        return self.materializer.create_expenses(user_id, job_id, transaction_ids, category_id)

    def reject_transactions(
        self, user_id: str, job_id: str, transaction_ids: Sequence[str]
    ) -> int:
        if self.store.get_job(job_id, user_id) is None:
            raise JobNotFoundError(job_id)
        return self.materializer.reject_transactions(user_id, job_id, transaction_ids)

    def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        status: Optional[ParsedTransactionStatus] = None,
        merchant: Optional[str] = None,
        is_recurring: Optional[bool] = None,
    ) -> ParsedTransactionRecord:
        """
        Apply a review edit to one transaction.

        A merchant edit re-derives the normalized merchant. CREATED and
        DUPLICATE transactions are read-only.

        Raises:
            TransactionNotFoundError: Not found or not owned by the user.
            AlreadyProcessedError: Transaction is CREATED or DUPLICATE.
            ValueError: ``status`` is not CONFIRMED or REJECTED.
        """
        if status is not None and status not in _REVIEW_STATUSES:
            raise ValueError(f"Status must be CONFIRMED or REJECTED, got {status.value}")

        txn = self.store.get_transaction(transaction_id, user_id)
        if txn is None:
            raise TransactionNotFoundError(transaction_id)
        if txn.status in _TERMINAL_STATUSES:
            raise AlreadyProcessedError(
                f"Transaction '{transaction_id}' is {txn.status.value} and cannot be changed",
                {"transaction_id": transaction_id, "status": txn.status.value},
            )

        normalized = None
        if merchant is not None:
            merchant = merchant.strip()
            normalized = normalize_merchant(merchant)

        updated = self.store.update_transaction(
            transaction_id,
            status=status,
            merchant=merchant,
            normalized_merchant=normalized,
            is_recurring_guess=is_recurring,
        )
        if updated is None:
            raise TransactionNotFoundError(transaction_id)
        return updated

    # Inbound email addresses

    def get_import_email(self, user_id: str) -> ImportEmailRecord:
        """Get the user's inbound address, creating one on first use."""
        record = self.store.get_import_email_for_user(user_id)
        if record is None:
            record = self._create_import_email(user_id)
        return record

    def regenerate_import_email(self, user_id: str) -> ImportEmailRecord:
        """Replace the user's inbound address; the old one stops accepting mail."""
        return self._create_import_email(user_id)

    def _create_import_email(self, user_id: str) -> ImportEmailRecord:
        seed = f"{user_id}-{time.time_ns()}-{secrets.token_hex(8)}"
        digest = hashlib.sha256(seed.encode()).hexdigest()[:8]
        address = f"{EMAIL_ADDRESS_PREFIX}-{digest}@{self.config.imports.import_email_domain}"

        record = self.store.create_import_email(user_id, address)
        logger.info("Created import email %s for user %s", record.address, user_id)
        self.events.publish(EMAIL_ADDRESS_CREATED, {"user_id": user_id, "address": record.address})
        return record


def statement_source(mime_type: str, file_name: str = "") -> ImportSource:
    """PDF by content type or extension, CSV otherwise."""
    if mime_type == PDF_MIME_TYPE or PurePath(file_name).suffix.lower() == ".pdf":
        return ImportSource.STATEMENT_PDF
    return ImportSource.STATEMENT_CSV
