"""
Migration 002: Add per-user inbound import email addresses.

Forwarded bank alerts are routed to a user by the address they were sent to.
Regenerating an address deactivates the previous one instead of deleting it,
so late deliveries to the old address are recognized and rejected.
"""

import sqlite3

VERSION = 2
NAME = "import_email_addresses"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the import_email_addresses table."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS import_email_addresses (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            address TEXT NOT NULL UNIQUE,  -- Stored lowercase
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            last_used_at TEXT
        )
    """)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_import_email_user ON import_email_addresses(user_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the import_email_addresses table."""
    conn.execute("DROP INDEX IF EXISTS idx_import_email_user")
    conn.execute("DROP TABLE IF EXISTS import_email_addresses")
