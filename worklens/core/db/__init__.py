"""
Database module - Repository pattern implementation

This module provides:
1. One Repository class per table of the work hierarchy
2. DatabaseManager aggregating all repositories
3. Global get_db() and reset_db() helpers
"""

from pathlib import Path
from typing import Dict, Optional

from worklens.core.logger import get_logger

from .base import BaseRepository
from .dead_letters import DeadLettersRepository
from .embeddings import EmbeddingsRepository
from .major_tasks import MajorTasksRepository
from .subtasks import SubtasksRepository
from .task_clusters import TaskClustersRepository
from .user_goals import UserGoalsRepository

logger = get_logger(__name__)


class DatabaseManager:
    """
    Single entry point to every repository

    Example:
        db = get_db()
        clusters = await db.task_clusters.get_for_user("alice")
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialize_database()

        self.task_clusters = TaskClustersRepository(self.db_path)
        self.subtasks = SubtasksRepository(self.db_path)
        self.major_tasks = MajorTasksRepository(self.db_path)
        self.user_goals = UserGoalsRepository(self.db_path)
        self.embeddings = EmbeddingsRepository(self.db_path)
        self.dead_letters = DeadLettersRepository(self.db_path)

        logger.debug(f"✓ DatabaseManager initialized with path: {self.db_path}")

    def _initialize_database(self) -> None:
        """Run pending schema migrations"""
        from worklens.migrations import MigrationRunner

        try:
            executed_count = MigrationRunner(self.db_path).run_migrations()
            if executed_count > 0:
                logger.info(f"✓ Database schema initialized: {executed_count} migration(s) executed")
            else:
                logger.debug("✓ Database schema up to date")
        except Exception as e:
            logger.error(f"Failed to initialize database schema: {e}", exc_info=True)
            raise

    def get_table_counts(self) -> Dict[str, int]:
        """Row counts of the hierarchy tables, for diagnostics"""
        counts: Dict[str, int] = {}
        with self.task_clusters._get_conn() as conn:
            for table in (
                "task_clusters",
                "subtasks",
                "major_tasks",
                "user_goals",
                "unit_embeddings",
                "dead_letters",
            ):
                row = conn.execute(f"SELECT COUNT(*) AS count FROM {table}").fetchone()
                counts[table] = row["count"] if row else 0
        return counts


_db_manager: Optional[DatabaseManager] = None


def get_db() -> DatabaseManager:
    """
    Get the global DatabaseManager

    The database path is read from config (database.path) and defaults to
    <data dir>/worklens.db when empty.
    """
    global _db_manager

    if _db_manager is None:
        from worklens.config.loader import get_config
        from worklens.core.paths import get_db_path

        configured_path = get_config().get("database.path", "") or ""
        if configured_path.strip():
            db_path = Path(configured_path).expanduser()
        else:
            db_path = get_db_path()

        _db_manager = DatabaseManager(db_path)
        logger.debug(f"✓ Global DatabaseManager initialized: {db_path}")

    return _db_manager


def reset_db() -> None:
    """Drop the global DatabaseManager (used by tests)"""
    global _db_manager
    _db_manager = None


__all__ = [
    "BaseRepository",
    "TaskClustersRepository",
    "SubtasksRepository",
    "MajorTasksRepository",
    "UserGoalsRepository",
    "EmbeddingsRepository",
    "DeadLettersRepository",
    "DatabaseManager",
    "get_db",
    "reset_db",
]
