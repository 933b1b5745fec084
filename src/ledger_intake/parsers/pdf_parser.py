"""
PDF bank statement parser.

Two steps:
1. pdfplumber extracts the text layer page by page (capped page count)
2. The completion service structures that text into ``ParseResult`` JSON

Scanned/image-only PDFs have no text layer and fail at step 1.
"""

import io
import logging
from typing import Optional

import pdfplumber

from ..errors import CompletionError, PdfParseError
from ..llm.client import CompletionClient
from ..llm.prompts import StatementPrompt
from ..schemas.transactions import ParseResult
from .model_output import load_parse_result

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n...[truncated]"


class PdfParser:
    """Text-layer extraction plus model-assisted structuring."""

    def __init__(
        self,
        client: CompletionClient,
        max_pages: int = 50,
        max_chars: int = 50_000,
        min_chars: int = 50,
        max_tokens: int = 8192,
        default_currency: str = "NGN",
    ):
        self.client = client
        self.max_pages = max_pages
        self.max_chars = max_chars
        self.min_chars = min_chars
        self.max_tokens = max_tokens
        self.default_currency = default_currency
        self.prompt = StatementPrompt()

    def extract_text(self, data: bytes) -> str:
        """Join the text of the first ``max_pages`` pages."""
        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                pages = pdf.pages[: self.max_pages]
                if len(pdf.pages) > self.max_pages:
                    logger.info(
                        "PDF has %d pages, only the first %d are read",
                        len(pdf.pages),
                        self.max_pages,
                    )
                return "\n\n".join(page.extract_text() or "" for page in pages)
        except Exception as e:
            raise PdfParseError(f"Failed to extract text from PDF: {e}") from e

    def parse(self, data: bytes, bank_name: Optional[str] = None) -> ParseResult:
        """
        Parse a statement PDF.

        Raises:
            PdfParseError: No usable text, model unavailable, or malformed
                model output.
        """
        text = self.extract_text(data)
        if len(text.strip()) < self.min_chars:
            raise PdfParseError(
                "PDF appears to be empty or contains no extractable text. "
                "The file may be scanned/image-based."
            )
        logger.debug("Extracted %d characters from PDF", len(text))

        if not self.client.is_enabled:
            raise PdfParseError("AI service is not available. Please try again later.")

        if len(text) > self.max_chars:
            text = text[: self.max_chars] + TRUNCATION_MARKER

        try:
            response = self.client.generate(
                [{"role": "user", "content": self.prompt.format_user_message(text, bank_name)}],
                max_tokens=self.max_tokens,
                system_prompt=self.prompt.system_prompt,
            )
        except CompletionError as e:
            raise PdfParseError(f"AI parsing failed: {e}") from e

        result = load_parse_result(
            response.content, PdfParseError, default_currency=self.default_currency
        )
        if not result.bank_name:
            result.bank_name = bank_name

        logger.info("Model parsed %d transactions from PDF", len(result.transactions))
        return result
