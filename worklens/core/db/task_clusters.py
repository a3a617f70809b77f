"""
TaskClusters Repository - classified event batches
"""

import sqlite3
from pathlib import Path
from typing import List, Optional

from worklens.core.logger import get_logger
from worklens.core.models import TaskCluster, now_iso

from .base import BaseRepository

logger = get_logger(__name__)

_COLUMNS = """
    id, user_id, title, description, start_time, end_time, duration_minutes,
    status, source_apps, keywords, productivity, confidence, linked_goal_id, created_at
"""


class TaskClustersRepository(BaseRepository):
    """Repository for the task_clusters table"""

    def __init__(self, db_path: Path):
        super().__init__(db_path)

    def _row_to_model(self, row: sqlite3.Row) -> TaskCluster:
        return TaskCluster(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            description=row["description"] or "",
            start_time=row["start_time"],
            end_time=row["end_time"],
            duration_minutes=row["duration_minutes"],
            status=row["status"],
            source_apps=self._load_list(row["source_apps"]),
            keywords=self._load_list(row["keywords"]),
            productivity=row["productivity"],
            confidence=row["confidence"],
            linked_goal_id=row["linked_goal_id"],
            created_at=row["created_at"],
        )

    async def create(
        self,
        user_id: str,
        title: str,
        description: str,
        start_time: str,
        end_time: str,
        duration_minutes: int,
        source_apps: List[str],
        keywords: Optional[List[str]] = None,
        productivity: Optional[str] = None,
        confidence: Optional[float] = None,
        linked_goal_id: Optional[int] = None,
    ) -> TaskCluster:
        """
        Insert a new task cluster

        Args:
            user_id: Owner
            title: Oracle label
            description: Oracle summary
            start_time: Timestamp of the oldest event in the batch
            end_time: Timestamp of the newest event in the batch
            duration_minutes: Estimated minutes spent (at least 1)
            source_apps: Distinct apps seen in the batch
            keywords: Oracle keywords
            productivity: low / medium / high
            confidence: Oracle confidence in [0, 1]
            linked_goal_id: Goal the user was tracking when the batch was captured

        Returns:
            The stored TaskCluster
        """
        created_at = now_iso()
        try:
            with self._get_conn() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO task_clusters (
                        user_id, title, description, start_time, end_time,
                        duration_minutes, status, source_apps, keywords,
                        productivity, confidence, linked_goal_id, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, 'completed', ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        title,
                        description,
                        start_time,
                        end_time,
                        duration_minutes,
                        self._dump_list(source_apps),
                        self._dump_list(keywords or []),
                        productivity,
                        confidence,
                        linked_goal_id,
                        created_at,
                    ),
                )
                conn.commit()
                cluster_id = cursor.lastrowid

            logger.debug(f"Created task cluster {cluster_id} for {user_id}: {title}")
            return TaskCluster(
                id=cluster_id,
                user_id=user_id,
                title=title,
                description=description,
                start_time=start_time,
                end_time=end_time,
                duration_minutes=duration_minutes,
                source_apps=list(source_apps),
                keywords=list(keywords or []),
                productivity=productivity,
                confidence=confidence,
                linked_goal_id=linked_goal_id,
                created_at=created_at,
            )
        except Exception as e:
            logger.error(f"Failed to create task cluster for {user_id}: {e}", exc_info=True)
            raise

    async def get_by_id(self, cluster_id: int) -> Optional[TaskCluster]:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM task_clusters WHERE id = ?", (cluster_id,)
            ).fetchone()
        return self._row_to_model(row) if row else None

    async def get_by_ids(self, cluster_ids: List[int]) -> List[TaskCluster]:
        """Fetch clusters in the order of cluster_ids, skipping unknown ids"""
        if not cluster_ids:
            return []

        placeholders = ",".join("?" for _ in cluster_ids)
        with self._get_conn() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM task_clusters WHERE id IN ({placeholders})",
                tuple(cluster_ids),
            ).fetchall()

        by_id = {row["id"]: self._row_to_model(row) for row in rows}
        return [by_id[cid] for cid in cluster_ids if cid in by_id]

    async def get_for_user(
        self, user_id: str, since: Optional[str] = None
    ) -> List[TaskCluster]:
        """
        Clusters for a user, oldest first

        Args:
            user_id: Owner
            since: Optional ISO timestamp; only clusters created at or after it
        """
        query = f"SELECT {_COLUMNS} FROM task_clusters WHERE user_id = ?"
        params: list = [user_id]
        if since:
            query += " AND created_at >= ?"
            params.append(since)
        query += " ORDER BY created_at ASC, id ASC"

        with self._get_conn() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_model(row) for row in rows]

    async def get_linked_to_goal(self, goal_id: int) -> List[TaskCluster]:
        """Completed clusters captured while the user was tracking goal_id"""
        with self._get_conn() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM task_clusters
                WHERE linked_goal_id = ? AND status = 'completed'
                ORDER BY created_at ASC, id ASC
                """,
                (goal_id,),
            ).fetchall()
        return [self._row_to_model(row) for row in rows]
