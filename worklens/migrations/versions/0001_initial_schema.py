"""
Migration 0001: Initial database schema

Creates the work hierarchy tables (task clusters, subtasks, major tasks),
user goals and the embedding cache
"""

import sqlite3

from worklens.migrations.base import BaseMigration


class Migration(BaseMigration):
    version = "0001"
    description = "Work hierarchy, goals and embedding cache tables"

    def up(self, cursor: sqlite3.Cursor) -> None:
        """Create all initial tables and indexes"""
        from worklens.core.sqls import schema

        for table_sql in schema.ALL_TABLES:
            cursor.execute(table_sql)

        for index_sql in schema.ALL_INDEXES:
            cursor.execute(index_sql)

    def down(self, cursor: sqlite3.Cursor) -> None:
        for table in ("unit_embeddings", "major_tasks", "subtasks", "task_clusters", "user_goals"):
            cursor.execute(f"DROP TABLE IF EXISTS {table}")
