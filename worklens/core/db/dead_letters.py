"""
DeadLetters Repository - work that exhausted its retries
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from worklens.core.logger import get_logger
from worklens.core.models import now_iso

from .base import BaseRepository

logger = get_logger(__name__)


class DeadLettersRepository(BaseRepository):
    """Append-only log of failed background jobs and dropped event batches"""

    def __init__(self, db_path: Path):
        super().__init__(db_path)

    async def add(
        self,
        job_name: str,
        error: str,
        attempts: int,
        user_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> int:
        try:
            with self._get_conn() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO dead_letters (job_name, user_id, error, attempts, payload, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job_name,
                        user_id,
                        error,
                        attempts,
                        json.dumps(payload, ensure_ascii=False, default=str) if payload else None,
                        now_iso(),
                    ),
                )
                conn.commit()
                letter_id = cursor.lastrowid

            logger.warning(f"Dead-lettered {job_name} for {user_id} after {attempts} attempt(s): {error}")
            return letter_id
        except Exception as e:
            logger.error(f"Failed to write dead letter for {job_name}: {e}", exc_info=True)
            raise

    async def get_recent(
        self, limit: int = 50, user_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        query = "SELECT id, job_name, user_id, error, attempts, payload, created_at FROM dead_letters"
        params: list = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with self._get_conn() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()

        return [
            {
                "id": row["id"],
                "job_name": row["job_name"],
                "user_id": row["user_id"],
                "error": row["error"],
                "attempts": row["attempts"],
                "payload": json.loads(row["payload"]) if row["payload"] else {},
                "created_at": row["created_at"],
            }
            for row in rows
        ]
