"""
Canonical schemas for the import pipeline.
"""

from .dedupe import HASH_LENGTH, compute_deduplication_hash
from .transactions import (
    DeduplicationResult,
    DuplicateType,
    NormalizedTransaction,
    ParseResult,
    RawTransaction,
    StatementPeriod,
    TransactionType,
)

__all__ = [
    "HASH_LENGTH",
    "compute_deduplication_hash",
    "DeduplicationResult",
    "DuplicateType",
    "NormalizedTransaction",
    "ParseResult",
    "RawTransaction",
    "StatementPeriod",
    "TransactionType",
]
