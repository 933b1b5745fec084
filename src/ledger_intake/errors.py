"""
Exception hierarchy for the import pipeline.

Upload validation errors (size, type) are raised synchronously to the caller.
Everything raised inside a processing task is caught by the orchestrator and
recorded on the job as FAILED with ``str(error)`` as the message.
"""

from typing import Any


class IntakeError(Exception):
    """Base exception for all import pipeline errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class FileTooLargeError(IntakeError):
    """Uploaded file exceeds the configured size limit."""

    def __init__(self, size: int, max_size: int, file_name: str | None = None):
        self.size = size
        self.max_size = max_size
        super().__init__(
            f"File size ({size / 1024 / 1024:.2f}MB) exceeds maximum "
            f"({max_size / 1024 / 1024:.0f}MB)",
            {"size": size, "max_size": max_size, "file_name": file_name},
        )


class InvalidFileTypeError(IntakeError):
    """Uploaded file has a MIME type the pipeline does not accept."""

    def __init__(self, mime_type: str, allowed: list[str]):
        self.mime_type = mime_type
        self.allowed = allowed
        super().__init__(
            f"Invalid file type '{mime_type}'. Allowed: {', '.join(allowed)}",
            {"mime_type": mime_type, "allowed": allowed},
        )


class ParseFailure(IntakeError):
    """A source could not be turned into transactions."""

    pass


class PdfParseError(ParseFailure):
    """PDF text extraction or model structuring failed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(f"PDF parsing failed: {message}", details)


class CsvParseError(ParseFailure):
    """CSV layout could not be detected or read."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(f"CSV parsing failed: {message}", details)


class VisionError(ParseFailure):
    """Screenshot parsing failed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(f"Screenshot parsing failed: {message}", details)


class EmailParseError(ParseFailure):
    """Forwarded email could not be parsed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(f"Email parsing failed: {message}", details)


class StorageError(IntakeError):
    """File storage read/write failed."""

    pass


class JobNotFoundError(IntakeError):
    """Import job does not exist or belongs to another user."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Import job '{job_id}' not found", {"job_id": job_id})


class TransactionNotFoundError(IntakeError):
    """Parsed transaction does not exist or belongs to another user."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(
            f"Transaction '{transaction_id}' not found", {"transaction_id": transaction_id}
        )


class AlreadyProcessedError(IntakeError):
    """A job or transaction is already in a terminal state."""

    pass


class ConfirmationError(IntakeError):
    """Transactions could not be confirmed into the ledger."""

    pass


class ImportEmailNotFoundError(IntakeError):
    """Inbound email address is not registered or inactive."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"No active import address '{address}'", {"address": address})


# Completion service errors


class CompletionError(IntakeError):
    """Base exception for completion service failures."""

    pass


class CompletionUnavailableError(CompletionError):
    """Completion service is disabled or unreachable."""

    pass


class CircuitOpenError(CompletionUnavailableError):
    """Circuit breaker is open; calls fail fast until the reset timeout."""

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(
            f"Completion service circuit is open, retry in {retry_after:.0f}s",
            {"retry_after": retry_after},
        )


class CompletionRequestError(CompletionError):
    """Completion service returned an HTTP error."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(
            f"Completion API error {status_code}: {message}",
            {"status_code": status_code},
        )


class CompletionRateLimitError(CompletionRequestError):
    """Completion service kept answering 429 after all retries."""

    def __init__(self, message: str = "rate limited", response_body: str | None = None):
        super().__init__(429, message, response_body)
