"""
Migration 0002: Dead-letter log

Background jobs and event batches that exhaust their retries are recorded
here instead of being dropped
"""

import sqlite3

from worklens.migrations.base import BaseMigration


class Migration(BaseMigration):
    version = "0002"
    description = "Add dead_letters table for exhausted background work"

    def up(self, cursor: sqlite3.Cursor) -> None:
        from worklens.core.sqls import schema

        cursor.execute(schema.CREATE_DEAD_LETTERS_TABLE)
        cursor.execute(schema.CREATE_DEAD_LETTERS_CREATED_INDEX)

    def down(self, cursor: sqlite3.Cursor) -> None:
        cursor.execute("DROP INDEX IF EXISTS idx_dead_letters_created")
        cursor.execute("DROP TABLE IF EXISTS dead_letters")
