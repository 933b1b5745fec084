"""
Parser router - picks the parser for a job's source.
"""

import logging
from typing import Any, Optional

from ..config import Config
from ..llm.client import CompletionClient
from ..schemas.transactions import ParseResult
from ..state_store.sqlite_store import ImportSource
from .csv_parser import CsvParser
from .email_parser import EmailParser
from .pdf_parser import PdfParser
from .vision_parser import VisionParser

logger = logging.getLogger(__name__)


class ParserRouter:
    """
    Closed set of parsers keyed by ``ImportSource``.

    Payload by source:
    - STATEMENT_CSV / STATEMENT_PDF: file bytes
    - SCREENSHOT: sequence of ``VisionImage``
    - EMAIL_FORWARD: ``EmailContent``
    """

    def __init__(
        self,
        csv_parser: CsvParser,
        pdf_parser: PdfParser,
        vision_parser: VisionParser,
        email_parser: EmailParser,
    ):
        self.csv = csv_parser
        self.pdf = pdf_parser
        self.vision = vision_parser
        self.email = email_parser

    @classmethod
    def from_config(cls, config: Config, client: CompletionClient) -> "ParserRouter":
        """Wire every parser from config around one shared completion client."""
        currency = config.imports.default_currency
        csv_parser = CsvParser(default_currency=currency)
        pdf_parser = PdfParser(
            client,
            max_pages=config.imports.pdf_max_pages,
            max_chars=config.imports.pdf_max_chars,
            min_chars=config.imports.pdf_min_chars,
            max_tokens=config.llm.parsing_max_tokens,
            default_currency=currency,
        )
        vision_parser = VisionParser(
            client,
            confidence_floor=config.imports.vision_confidence_floor,
            max_tokens=config.llm.vision_max_tokens,
            default_currency=currency,
        )
        email_parser = EmailParser(
            client,
            csv_parser,
            pdf_parser,
            max_tokens=config.llm.parsing_max_tokens,
            default_currency=currency,
        )
        return cls(csv_parser, pdf_parser, vision_parser, email_parser)

    def parse(self, source: ImportSource, payload: Any, bank_name: Optional[str] = None) -> ParseResult:
        logger.debug("Routing %s payload to parser", source.value)
        if source == ImportSource.STATEMENT_CSV:
            return self.csv.parse(payload, bank_name)
        if source == ImportSource.STATEMENT_PDF:
            return self.pdf.parse(payload, bank_name)
        if source == ImportSource.SCREENSHOT:
            return self.vision.parse(payload)
        if source == ImportSource.EMAIL_FORWARD:
            return self.email.parse(payload)
        raise ValueError(f"Unknown import source: {source}")
