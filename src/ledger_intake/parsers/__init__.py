"""
Format parsers: CSV, PDF, screenshot and alert email.

Every parser returns a ``ParseResult``; ``ParserRouter`` selects one by
import source.
"""

from .csv_parser import CsvParser, parse_amount, parse_date
from .email_parser import EmailAttachment, EmailContent, EmailParser
from .model_output import extract_json_object, load_parse_result
from .pdf_parser import PdfParser
from .router import ParserRouter
from .vision_parser import VisionParser

__all__ = [
    "CsvParser",
    "EmailAttachment",
    "EmailContent",
    "EmailParser",
    "ParserRouter",
    "PdfParser",
    "VisionParser",
    "extract_json_object",
    "load_parse_result",
    "parse_amount",
    "parse_date",
]
