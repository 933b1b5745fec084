"""
Forwarded bank alert email parser.

Sources inside one email, each parsed independently:
- the body (text, or HTML stripped to text), sent to the model only when it
  looks like a bank alert
- CSV attachments (deterministic CSV parser)
- PDF attachments (PDF parser)

A failing source is logged and skipped, and its error is carried in the
result's ``errors``; the others still count.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import CompletionError, EmailParseError, IntakeError
from ..llm.client import CompletionClient
from ..llm.prompts import EmailAlertPrompt
from ..schemas.transactions import ParseResult, RawTransaction
from .csv_parser import CsvParser
from .model_output import load_parse_result
from .pdf_parser import PdfParser

logger = logging.getLogger(__name__)

ALERT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"debit\s*alert",
        r"credit\s*alert",
        r"transaction\s*alert",
        r"account\s*notification",
        r"payment\s*notification",
        r"transfer\s*notification",
        r"withdrawal",
        r"deposit",
        r"NGN\s*[\d,]+",
        r"₦\s*[\d,]+",
        r"\d+\.\d{2}\s*(?:debited|credited)",
    )
]

BANK_PATTERNS = {
    "GTBank": re.compile(r"gtbank|guaranty\s*trust", re.IGNORECASE),
    "Access Bank": re.compile(r"access\s*bank|accessbank", re.IGNORECASE),
    "First Bank": re.compile(r"first\s*bank|firstbank", re.IGNORECASE),
    "Zenith Bank": re.compile(r"zenith", re.IGNORECASE),
    "UBA": re.compile(r"\buba\b|united\s*bank\s*for\s*africa", re.IGNORECASE),
    "Kuda": re.compile(r"kuda", re.IGNORECASE),
    "Opay": re.compile(r"opay", re.IGNORECASE),
    "Moniepoint": re.compile(r"moniepoint", re.IGNORECASE),
}


@dataclass
class EmailAttachment:
    """One attachment as delivered by the inbound webhook (base64 content)."""

    filename: str
    content_type: str
    content: str

    def decode(self) -> bytes:
        try:
            return base64.b64decode(self.content, validate=False)
        except (binascii.Error, ValueError) as e:
            raise EmailParseError(f"Attachment {self.filename} is not valid base64") from e


@dataclass
class EmailContent:
    """Inbound email payload."""

    from_address: str
    to: list[str]
    subject: str = ""
    text: Optional[str] = None
    html: Optional[str] = None
    attachments: list[EmailAttachment] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmailContent":
        """Build from the webhook JSON shape (``from``, ``to``, ``subject``...)."""
        to = data.get("to") or []
        if isinstance(to, str):
            to = [to]
        return cls(
            from_address=data.get("from", ""),
            to=list(to),
            subject=data.get("subject", "") or "",
            text=data.get("text"),
            html=data.get("html"),
            attachments=[
                EmailAttachment(
                    filename=a.get("filename", ""),
                    content_type=a.get("content_type", ""),
                    content=a.get("content", ""),
                )
                for a in data.get("attachments") or []
            ],
        )


def strip_html(html: str) -> str:
    text = re.sub(r"<style[^>]*>[\s\S]*?</style>", "", html, flags=re.IGNORECASE)
    text = re.sub(r"<script[^>]*>[\s\S]*?</script>", "", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def looks_like_bank_alert(subject: str, body: str) -> bool:
    text = f"{subject} {body}"
    return any(pattern.search(text) for pattern in ALERT_PATTERNS)


def detect_bank(email: EmailContent) -> Optional[str]:
    text = f"{email.from_address} {email.subject} {email.text or ''}"
    for bank, pattern in BANK_PATTERNS.items():
        if pattern.search(text):
            return bank
    return None


class EmailParser:
    """Parses forwarded alert emails and their statement attachments."""

    def __init__(
        self,
        client: CompletionClient,
        csv_parser: CsvParser,
        pdf_parser: PdfParser,
        max_tokens: int = 8192,
        default_currency: str = "NGN",
    ):
        self.client = client
        self.csv_parser = csv_parser
        self.pdf_parser = pdf_parser
        self.max_tokens = max_tokens
        self.default_currency = default_currency
        self.prompt = EmailAlertPrompt()

    def parse(self, email: EmailContent) -> ParseResult:
        """
        Parse every source in the email and merge the results.

        A source that fails is skipped; its error is kept in ``errors``.
        """
        results: list[ParseResult] = []
        failures: list[str] = []

        body = email.text or (strip_html(email.html) if email.html else "")
        if body:
            try:
                body_result = self.parse_body(email.subject, body)
                if body_result.transactions:
                    results.append(body_result)
            except IntakeError as e:
                logger.warning("Email body parsing failed: %s", e)
                failures.append(e.message)

        for attachment in email.attachments:
            try:
                attachment_result = self.parse_attachment(attachment)
                if attachment_result and attachment_result.transactions:
                    results.append(attachment_result)
            except IntakeError as e:
                logger.warning("Attachment parsing failed (%s): %s", attachment.filename, e)
                failures.append(f"{attachment.filename}: {e.message}")

        merged = self._merge(results)
        merged.errors.extend(failures)
        if not merged.bank_name:
            merged.bank_name = detect_bank(email)
        logger.info(
            "Parsed %d transactions from email (%d sources)", len(merged.transactions), len(results)
        )
        return merged

    def parse_body(self, subject: str, body: str) -> ParseResult:
        """
        Ask the model to read an alert body.

        Bodies that do not look like bank alerts give an empty result
        without a model call.
        """
        if not looks_like_bank_alert(subject, body):
            logger.debug("Email body does not look like a bank alert")
            return ParseResult(currency=self.default_currency)

        if not self.client.is_enabled:
            raise EmailParseError("AI service not available")

        try:
            response = self.client.generate(
                [{"role": "user", "content": self.prompt.format_user_message(subject, body)}],
                max_tokens=self.max_tokens,
                system_prompt=self.prompt.system_prompt,
            )
        except CompletionError as e:
            raise EmailParseError(f"AI parsing failed: {e}") from e

        return load_parse_result(
            response.content, EmailParseError, default_currency=self.default_currency
        )

    def parse_attachment(self, attachment: EmailAttachment) -> Optional[ParseResult]:
        mime_type = (attachment.content_type or "").lower()
        filename = (attachment.filename or "").lower()

        if "csv" in mime_type or filename.endswith(".csv"):
            return self.csv_parser.parse(attachment.decode())
        if "pdf" in mime_type or filename.endswith(".pdf"):
            return self.pdf_parser.parse(attachment.decode())

        logger.debug("Skipping unsupported attachment: %s", attachment.filename)
        return None

    def _merge(self, results: list[ParseResult]) -> ParseResult:
        transactions: list[RawTransaction] = []
        bank_name = None
        account_number = None
        currency = self.default_currency
        errors: list[str] = []

        for result in results:
            transactions.extend(result.transactions)
            bank_name = bank_name or result.bank_name
            account_number = account_number or result.account_number
            if result.currency != self.default_currency:
                currency = result.currency
            errors.extend(result.errors)

        return ParseResult(
            transactions=transactions,
            bank_name=bank_name,
            account_number=account_number,
            currency=currency,
            errors=errors,
        )
