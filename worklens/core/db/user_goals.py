"""
UserGoals Repository - time targets tracked against linked task clusters
"""

import sqlite3
from pathlib import Path
from typing import List, Optional

from worklens.core.logger import get_logger
from worklens.core.models import GoalStatus, UserGoal, now_iso

from .base import BaseRepository

logger = get_logger(__name__)

_COLUMNS = "id, user_id, name, target_minutes, status, created_at, updated_at"


class UserGoalsRepository(BaseRepository):
    """Repository for the user_goals table"""

    def __init__(self, db_path: Path):
        super().__init__(db_path)

    @staticmethod
    def _row_to_model(row: sqlite3.Row) -> UserGoal:
        return UserGoal(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            target_minutes=row["target_minutes"],
            status=GoalStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def create(self, user_id: str, name: str, target_minutes: int) -> UserGoal:
        now = now_iso()
        try:
            with self._get_conn() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO user_goals (user_id, name, target_minutes, status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (user_id, name, target_minutes, GoalStatus.PENDING.value, now, now),
                )
                conn.commit()
                goal_id = cursor.lastrowid

            logger.debug(f"Created goal {goal_id} for {user_id}: {name} ({target_minutes} min)")
            return UserGoal(
                id=goal_id,
                user_id=user_id,
                name=name,
                target_minutes=target_minutes,
                created_at=now,
                updated_at=now,
            )
        except Exception as e:
            logger.error(f"Failed to create goal for {user_id}: {e}", exc_info=True)
            raise

    async def get_by_id(self, goal_id: int) -> Optional[UserGoal]:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM user_goals WHERE id = ?", (goal_id,)
            ).fetchone()
        return self._row_to_model(row) if row else None

    async def get_for_user(
        self, user_id: str, include_completed: bool = True
    ) -> List[UserGoal]:
        query = f"SELECT {_COLUMNS} FROM user_goals WHERE user_id = ?"
        params: list = [user_id]
        if not include_completed:
            query += " AND status != ?"
            params.append(GoalStatus.COMPLETED.value)
        query += " ORDER BY created_at ASC, id ASC"

        with self._get_conn() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_model(row) for row in rows]

    async def update_status(self, goal_id: int, status: GoalStatus) -> None:
        try:
            with self._get_conn() as conn:
                conn.execute(
                    "UPDATE user_goals SET status = ?, updated_at = ? WHERE id = ?",
                    (GoalStatus(status).value, now_iso(), goal_id),
                )
                conn.commit()
            logger.debug(f"Goal {goal_id} status -> {GoalStatus(status).value}")
        except Exception as e:
            logger.error(f"Failed to update goal {goal_id}: {e}", exc_info=True)
            raise
