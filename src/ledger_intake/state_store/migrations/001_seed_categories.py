"""
Migration 001: Seed the default expense categories.

Category ids match the ids returned by the merchant category map, so that
confirmations made with the "auto" category always resolve to a real row.
"""

import sqlite3

VERSION = 1
NAME = "seed_categories"

DEFAULT_CATEGORIES = [
    ("food-dining", "Food & Dining"),
    ("transportation", "Transportation"),
    ("entertainment", "Entertainment"),
    ("utilities", "Utilities"),
    ("shopping", "Shopping"),
    ("healthcare", "Health & Fitness"),
    ("education", "Education"),
    ("housing", "Housing"),
    ("income", "Income"),
    ("other", "Other"),
]


def upgrade(conn: sqlite3.Connection) -> None:
    """Insert default categories (idempotent)."""
    conn.executemany(
        "INSERT OR IGNORE INTO expense_categories (id, name) VALUES (?, ?)",
        DEFAULT_CATEGORIES,
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove the default categories."""
    conn.executemany(
        "DELETE FROM expense_categories WHERE id = ?",
        [(category_id,) for category_id, _ in DEFAULT_CATEGORIES],
    )
