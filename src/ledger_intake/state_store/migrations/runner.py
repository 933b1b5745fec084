"""
Migration runner for versioned database schema changes.

Migrations live next to this file as ``{version}_{name}.py``
(e.g. 001_seed_categories.py) and define:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None
- downgrade(conn: Connection) -> None  # Optional
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATION_GLOB = "[0-9][0-9][0-9]_*.py"


@dataclass
class Migration:
    """A single versioned schema change."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None


def get_all_migrations() -> list[Migration]:
    """
    Import every migration module in this package, sorted by version.

    A module that fails to import or lacks VERSION/NAME/upgrade is a
    packaging bug and propagates.
    """
    migrations = []
    for py_file in sorted(Path(__file__).parent.glob(MIGRATION_GLOB)):
        module = importlib.import_module(f"{__package__}.{py_file.stem}")
        migrations.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )

    versions = [m.version for m in migrations]
    if len(versions) != len(set(versions)):
        raise RuntimeError(f"Duplicate migration versions: {versions}")
    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """
    Applies pending migrations in version order.

    Applied versions are recorded in a ``migrations`` table together with
    the UTC time they were applied.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        return {row[0] for row in self.conn.execute("SELECT version FROM migrations")}

    def get_current_version(self) -> int:
        result = self.conn.execute("SELECT MAX(version) FROM migrations").fetchone()[0]
        return result if result is not None else 0

    def _apply(self, migration: Migration) -> None:
        from ..sqlite_store import utc_iso

        logger.info("Applying migration %03d: %s", migration.version, migration.name)
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, utc_iso()),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Migration %03d (%s) failed", migration.version, migration.name)
            raise

    def _revert(self, migration: Migration) -> None:
        if migration.downgrade is None:
            raise NotImplementedError(
                f"Migration {migration.version} ({migration.name}) does not support rollback"
            )

        logger.info("Rolling back migration %03d: %s", migration.version, migration.name)
        try:
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Rollback of migration %03d failed", migration.version)
            raise

    def run_pending(self) -> list[int]:
        """Apply all migrations not yet recorded. Returns the applied versions."""
        applied = self.get_applied_versions()
        pending = [m for m in get_all_migrations() if m.version not in applied]

        for migration in pending:
            self._apply(migration)

        if pending:
            logger.info("Applied %d migrations", len(pending))
        else:
            logger.debug("No pending migrations")
        return [m.version for m in pending]

    def rollback_to(self, target_version: int) -> list[int]:
        """Revert applied migrations newer than ``target_version``, newest first."""
        applied = self.get_applied_versions()
        to_revert = [
            m
            for m in reversed(get_all_migrations())
            if m.version > target_version and m.version in applied
        ]
        for migration in to_revert:
            self._revert(migration)
        return [m.version for m in to_revert]
