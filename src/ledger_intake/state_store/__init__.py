"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Import jobs and their counters
- Parsed transactions under review
- Ledger entries materialized from imports
- Categories and inbound email addresses
"""

from .sqlite_store import (
    ImportEmailRecord,
    ImportJobRecord,
    ImportJobStatus,
    ImportSource,
    LedgerEntryDraft,
    LedgerEntryRecord,
    ParsedTransactionRecord,
    ParsedTransactionStatus,
    StateStore,
    utc_iso,
)

__all__ = [
    "ImportEmailRecord",
    "ImportJobRecord",
    "ImportJobStatus",
    "ImportSource",
    "LedgerEntryDraft",
    "LedgerEntryRecord",
    "ParsedTransactionRecord",
    "ParsedTransactionStatus",
    "StateStore",
    "utc_iso",
]
