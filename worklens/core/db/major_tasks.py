"""
MajorTasks Repository - projects grouping subtasks

Merged major tasks are archived (title prefixed, archived = 1) rather than
deleted, so history stays queryable.
"""

import sqlite3
from pathlib import Path
from typing import List, Optional, Set

from worklens.core.logger import get_logger
from worklens.core.models import MajorTask, now_iso

from .base import BaseRepository

logger = get_logger(__name__)

_COLUMNS = "id, user_id, title, summary_bullets, member_subtask_ids, archived, created_at, updated_at"


class MajorTasksRepository(BaseRepository):
    """Repository for the major_tasks table"""

    def __init__(self, db_path: Path):
        super().__init__(db_path)

    def _row_to_model(self, row: sqlite3.Row) -> MajorTask:
        return MajorTask(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            summary_bullets=self._load_list(row["summary_bullets"]),
            member_subtask_ids=[int(x) for x in self._load_list(row["member_subtask_ids"])],
            archived=bool(row["archived"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def create(
        self,
        user_id: str,
        title: str,
        summary_bullets: List[str],
        member_subtask_ids: List[int],
    ) -> MajorTask:
        now = now_iso()
        try:
            with self._get_conn() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO major_tasks (
                        user_id, title, summary_bullets, member_subtask_ids,
                        archived, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, 0, ?, ?)
                    """,
                    (
                        user_id,
                        title,
                        self._dump_list(summary_bullets),
                        self._dump_list(member_subtask_ids),
                        now,
                        now,
                    ),
                )
                conn.commit()
                major_task_id = cursor.lastrowid

            logger.debug(f"Created major task {major_task_id} for {user_id}: {title}")
            return MajorTask(
                id=major_task_id,
                user_id=user_id,
                title=title,
                summary_bullets=list(summary_bullets),
                member_subtask_ids=list(member_subtask_ids),
                created_at=now,
                updated_at=now,
            )
        except Exception as e:
            logger.error(f"Failed to create major task for {user_id}: {e}", exc_info=True)
            raise

    async def get_by_id(self, major_task_id: int) -> Optional[MajorTask]:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM major_tasks WHERE id = ?", (major_task_id,)
            ).fetchone()
        return self._row_to_model(row) if row else None

    async def get_for_user(
        self, user_id: str, since: Optional[str] = None, include_archived: bool = False
    ) -> List[MajorTask]:
        query = f"SELECT {_COLUMNS} FROM major_tasks WHERE user_id = ?"
        params: list = [user_id]
        if not include_archived:
            query += " AND archived = 0"
        if since:
            query += " AND created_at >= ?"
            params.append(since)
        query += " ORDER BY created_at ASC, id ASC"

        with self._get_conn() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_model(row) for row in rows]

    async def update(
        self,
        major_task_id: int,
        title: Optional[str] = None,
        summary_bullets: Optional[List[str]] = None,
        member_subtask_ids: Optional[List[int]] = None,
    ) -> Optional[MajorTask]:
        sets = []
        params: list = []
        if title is not None:
            sets.append("title = ?")
            params.append(title)
        if summary_bullets is not None:
            sets.append("summary_bullets = ?")
            params.append(self._dump_list(summary_bullets))
        if member_subtask_ids is not None:
            sets.append("member_subtask_ids = ?")
            params.append(self._dump_list(member_subtask_ids))

        if not sets:
            return await self.get_by_id(major_task_id)

        sets.append("updated_at = ?")
        params.append(now_iso())
        params.append(major_task_id)

        try:
            with self._get_conn() as conn:
                conn.execute(
                    f"UPDATE major_tasks SET {', '.join(sets)} WHERE id = ?", tuple(params)
                )
                conn.commit()
        except Exception as e:
            logger.error(f"Failed to update major task {major_task_id}: {e}", exc_info=True)
            raise

        return await self.get_by_id(major_task_id)

    async def archive(self, major_task_id: int, prefix: str) -> None:
        """Mark a major task archived and prefix its title (idempotent on the prefix)"""
        try:
            with self._get_conn() as conn:
                conn.execute(
                    """
                    UPDATE major_tasks
                    SET archived = 1,
                        title = CASE WHEN substr(title, 1, ?) = ? THEN title ELSE ? || title END,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (len(prefix), prefix, prefix, now_iso(), major_task_id),
                )
                conn.commit()
            logger.debug(f"Archived major task {major_task_id}")
        except Exception as e:
            logger.error(f"Failed to archive major task {major_task_id}: {e}", exc_info=True)
            raise

    async def replace_member_subtasks(
        self, user_id: str, old_ids: List[int], new_id: int, parent_id: Optional[int]
    ) -> int:
        """
        Drop old_ids from every live major task and put new_id in parent_id only

        A subtask belongs to at most one major task, so major tasks other than
        parent_id lose the old ids without gaining new_id. new_id takes the
        position of the first old id in parent_id.

        Returns:
            Number of major tasks rewritten
        """
        old = set(old_ids)
        changed = 0
        for major in await self.get_for_user(user_id):
            if not old.intersection(major.member_subtask_ids):
                continue

            members: List[int] = []
            for sid in major.member_subtask_ids:
                if sid not in old:
                    target = sid
                elif major.id == parent_id:
                    target = new_id
                else:
                    continue
                if target not in members:
                    members.append(target)

            await self.update(major.id, member_subtask_ids=members)
            changed += 1

        if changed:
            logger.debug(
                f"Remapped subtasks {sorted(old)} -> {new_id} (parent {parent_id}), "
                f"{changed} major task(s) rewritten"
            )
        return changed

    async def get_assigned_subtask_ids(self, user_id: str) -> Set[int]:
        """Subtask ids referenced by any live major task of the user"""
        assigned: Set[int] = set()
        for major in await self.get_for_user(user_id):
            assigned.update(major.member_subtask_ids)
        return assigned

    async def find_parent(self, user_id: str, subtask_id: int) -> Optional[MajorTask]:
        """Live major task containing subtask_id, if any"""
        for major in await self.get_for_user(user_id):
            if subtask_id in major.member_subtask_ids:
                return major
        return None
