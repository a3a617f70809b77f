"""
Subtasks Repository - work streams grouping task clusters
"""

import sqlite3
from pathlib import Path
from typing import List, Optional, Set

from worklens.core.logger import get_logger
from worklens.core.models import Subtask, now_iso

from .base import BaseRepository

logger = get_logger(__name__)

_COLUMNS = "id, user_id, name, summary, member_task_ids, update_count, created_at, updated_at"


class SubtasksRepository(BaseRepository):
    """Repository for the subtasks table"""

    def __init__(self, db_path: Path):
        super().__init__(db_path)

    def _row_to_model(self, row: sqlite3.Row) -> Subtask:
        return Subtask(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            summary=row["summary"] or "",
            member_task_ids=[int(x) for x in self._load_list(row["member_task_ids"])],
            update_count=row["update_count"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def create(
        self, user_id: str, name: str, summary: str, member_task_ids: List[int]
    ) -> Subtask:
        now = now_iso()
        try:
            with self._get_conn() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO subtasks (
                        user_id, name, summary, member_task_ids, update_count,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, 0, ?, ?)
                    """,
                    (user_id, name, summary, self._dump_list(member_task_ids), now, now),
                )
                conn.commit()
                subtask_id = cursor.lastrowid

            logger.debug(f"Created subtask {subtask_id} for {user_id}: {name} ({len(member_task_ids)} tasks)")
            return Subtask(
                id=subtask_id,
                user_id=user_id,
                name=name,
                summary=summary,
                member_task_ids=list(member_task_ids),
                created_at=now,
                updated_at=now,
            )
        except Exception as e:
            logger.error(f"Failed to create subtask for {user_id}: {e}", exc_info=True)
            raise

    async def get_by_id(self, subtask_id: int) -> Optional[Subtask]:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM subtasks WHERE id = ?", (subtask_id,)
            ).fetchone()
        return self._row_to_model(row) if row else None

    async def get_by_ids(self, subtask_ids: List[int]) -> List[Subtask]:
        """Fetch subtasks in the order of subtask_ids, skipping unknown ids"""
        if not subtask_ids:
            return []

        placeholders = ",".join("?" for _ in subtask_ids)
        with self._get_conn() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM subtasks WHERE id IN ({placeholders})",
                tuple(subtask_ids),
            ).fetchall()

        by_id = {row["id"]: self._row_to_model(row) for row in rows}
        return [by_id[sid] for sid in subtask_ids if sid in by_id]

    async def get_for_user(
        self, user_id: str, since: Optional[str] = None
    ) -> List[Subtask]:
        query = f"SELECT {_COLUMNS} FROM subtasks WHERE user_id = ?"
        params: list = [user_id]
        if since:
            query += " AND created_at >= ?"
            params.append(since)
        query += " ORDER BY created_at ASC, id ASC"

        with self._get_conn() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_model(row) for row in rows]

    async def update(
        self,
        subtask_id: int,
        name: Optional[str] = None,
        summary: Optional[str] = None,
        member_task_ids: Optional[List[int]] = None,
        update_count: Optional[int] = None,
    ) -> Optional[Subtask]:
        """
        Update the given fields of a subtask

        Returns:
            The updated Subtask, or None if it does not exist
        """
        sets = []
        params: list = []
        if name is not None:
            sets.append("name = ?")
            params.append(name)
        if summary is not None:
            sets.append("summary = ?")
            params.append(summary)
        if member_task_ids is not None:
            sets.append("member_task_ids = ?")
            params.append(self._dump_list(member_task_ids))
        if update_count is not None:
            sets.append("update_count = ?")
            params.append(update_count)

        if not sets:
            return await self.get_by_id(subtask_id)

        sets.append("updated_at = ?")
        params.append(now_iso())
        params.append(subtask_id)

        try:
            with self._get_conn() as conn:
                conn.execute(
                    f"UPDATE subtasks SET {', '.join(sets)} WHERE id = ?", tuple(params)
                )
                conn.commit()
        except Exception as e:
            logger.error(f"Failed to update subtask {subtask_id}: {e}", exc_info=True)
            raise

        return await self.get_by_id(subtask_id)

    async def reset_update_count(self, subtask_id: int) -> None:
        try:
            with self._get_conn() as conn:
                conn.execute(
                    "UPDATE subtasks SET update_count = 0 WHERE id = ?", (subtask_id,)
                )
                conn.commit()
        except Exception as e:
            logger.error(f"Failed to reset update count of subtask {subtask_id}: {e}", exc_info=True)
            raise

    async def delete(self, subtask_id: int) -> None:
        try:
            with self._get_conn() as conn:
                conn.execute("DELETE FROM subtasks WHERE id = ?", (subtask_id,))
                conn.commit()
            logger.debug(f"Deleted subtask {subtask_id}")
        except Exception as e:
            logger.error(f"Failed to delete subtask {subtask_id}: {e}", exc_info=True)
            raise

    async def get_grouped_task_ids(self, user_id: str) -> Set[int]:
        """Ids of every task cluster already assigned to one of the user's subtasks"""
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT member_task_ids FROM subtasks WHERE user_id = ?", (user_id,)
            ).fetchall()

        grouped: Set[int] = set()
        for row in rows:
            grouped.update(int(x) for x in self._load_list(row["member_task_ids"]))
        return grouped
