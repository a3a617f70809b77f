"""
Migration runner - tracks and applies schema versions

Responsibilities:
1. Create the schema_migrations table if missing
2. Discover migration classes under versions/
3. Apply pending migrations in version order, one transaction each
4. Roll back to an earlier version using each migration's down()
"""

import importlib
import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Set, Type

from worklens.core.logger import get_logger

from .base import BaseMigration

logger = get_logger(__name__)


class MigrationRunner:
    """
    Database migration runner with version tracking

    Usage:
        runner = MigrationRunner(db_path)
        runner.run_migrations()
    """

    SCHEMA_MIGRATIONS_TABLE = """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            description TEXT NOT NULL,
            applied_at TEXT NOT NULL
        )
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute(self.SCHEMA_MIGRATIONS_TABLE)
        conn.commit()
        return conn

    @staticmethod
    def _get_applied_versions(cursor: sqlite3.Cursor) -> Set[str]:
        cursor.execute("SELECT version FROM schema_migrations")
        return {row[0] for row in cursor.fetchall()}

    def _discover_migrations(self) -> List[Type[BaseMigration]]:
        """
        Import every module in versions/ and collect its migration class

        Returns:
            Migration classes sorted by version
        """
        migrations_dir = Path(__file__).parent / "versions"
        if not migrations_dir.exists():
            logger.warning(f"Migrations directory not found: {migrations_dir}")
            return []

        discovered: List[Type[BaseMigration]] = []
        for migration_file in sorted(migrations_dir.glob("*.py")):
            if migration_file.name.startswith("_"):
                continue

            module = importlib.import_module(
                f"worklens.migrations.versions.{migration_file.stem}"
            )
            for attr in vars(module).values():
                if (
                    isinstance(attr, type)
                    and issubclass(attr, BaseMigration)
                    and attr is not BaseMigration
                ):
                    discovered.append(attr)
                    logger.debug(f"Discovered migration: {attr.version} - {attr.description}")

        versions = [m.version for m in discovered]
        if len(versions) != len(set(versions)):
            raise RuntimeError(f"Duplicate migration versions: {sorted(versions)}")

        discovered.sort(key=lambda m: m.version)
        return discovered

    def run_migrations(self) -> int:
        """
        Apply all pending migrations

        Returns:
            Number of migrations executed
        """
        with closing(self._connect()) as conn:
            cursor = conn.cursor()
            applied = self._get_applied_versions(cursor)
            pending = [m for m in self._discover_migrations() if m.version not in applied]

            if not pending:
                logger.debug("✓ All migrations up to date")
                return 0

            logger.info(f"Found {len(pending)} pending migration(s)")

            for migration_class in pending:
                migration = migration_class()
                logger.info(f"Running migration {migration.version}: {migration.description}")
                try:
                    migration.up(cursor)
                    cursor.execute(
                        """
                        INSERT INTO schema_migrations (version, description, applied_at)
                        VALUES (?, ?, ?)
                        """,
                        (migration.version, migration.description, datetime.now().isoformat()),
                    )
                    conn.commit()
                except Exception as e:
                    logger.error(f"✗ Migration {migration.version} failed: {e}", exc_info=True)
                    conn.rollback()
                    raise

            logger.info(f"✓ Successfully executed {len(pending)} migration(s)")
            return len(pending)

    def rollback_to(self, target_version: str) -> int:
        """
        Revert every applied migration newer than target_version

        Args:
            target_version: Version to keep; "0000" reverts everything

        Returns:
            Number of migrations reverted
        """
        with closing(self._connect()) as conn:
            cursor = conn.cursor()
            applied = self._get_applied_versions(cursor)
            to_revert = [
                m
                for m in reversed(self._discover_migrations())
                if m.version in applied and m.version > target_version
            ]

            for migration_class in to_revert:
                migration = migration_class()
                logger.info(f"Reverting migration {migration.version}: {migration.description}")
                try:
                    migration.down(cursor)
                    cursor.execute(
                        "DELETE FROM schema_migrations WHERE version = ?",
                        (migration.version,),
                    )
                    conn.commit()
                except Exception as e:
                    logger.error(f"✗ Revert of {migration.version} failed: {e}", exc_info=True)
                    conn.rollback()
                    raise

            return len(to_revert)

    def get_migration_status(self) -> Dict[str, Any]:
        """Applied and pending migrations, for diagnostics"""
        with closing(self._connect()) as conn:
            cursor = conn.execute(
                "SELECT version, description, applied_at FROM schema_migrations ORDER BY version"
            )
            applied = [dict(row) for row in cursor.fetchall()]

        applied_versions = {m["version"] for m in applied}
        pending = [
            {"version": m.version, "description": m.description}
            for m in self._discover_migrations()
            if m.version not in applied_versions
        ]
        return {
            "applied_count": len(applied),
            "pending_count": len(pending),
            "applied": applied,
            "pending": pending,
        }
