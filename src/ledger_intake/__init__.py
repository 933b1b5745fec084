"""
Ledger Intake - Statement, screenshot and alert-email ingestion.

Turns PDF/CSV bank statements, mobile banking screenshots and forwarded
bank alert emails into normalized, deduplicated transaction candidates
that are confirmed into the ledger by a user or by the auto-confirm policy.
"""

__version__ = "0.1.0"
