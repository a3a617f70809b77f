"""
Embeddings Repository - SQLite-backed vector index

Vectors are cached per (user, kind, source id) as JSON arrays and searched
with a brute-force numpy cosine scan. The cache is derived data: membership
always comes from the hierarchy tables, never from here.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from worklens.core.logger import get_logger
from worklens.core.models import EmbeddingRecord, UnitKind, now_iso

from .base import BaseRepository

logger = get_logger(__name__)


def cosine_similarity_matrix(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one vector against each row of matrix; zero rows score 0"""
    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * query_norm
    dots = matrix @ query
    return np.divide(dots, denom, out=np.zeros_like(dots, dtype=float), where=denom > 0)


class EmbeddingsRepository(BaseRepository):
    """Vector index over the unit_embeddings table"""

    def __init__(self, db_path: Path):
        super().__init__(db_path)

    async def upsert(
        self,
        owner_id: str,
        kind: UnitKind,
        source_id: int,
        vector: Sequence[float],
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Insert or replace the cached vector for one unit"""
        kind_value = UnitKind(kind).value
        try:
            with self._get_conn() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO unit_embeddings (
                        user_id, kind, source_id, vector, content, metadata, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        owner_id,
                        kind_value,
                        int(source_id),
                        json.dumps([float(x) for x in vector]),
                        content,
                        json.dumps(metadata or {}, ensure_ascii=False, default=str),
                        now_iso(),
                    ),
                )
                conn.commit()
            logger.debug(f"Upserted {kind_value} embedding {source_id} for {owner_id} (dim={len(vector)})")
        except Exception as e:
            logger.error(f"Failed to upsert {kind_value} embedding {source_id}: {e}", exc_info=True)
            raise

    async def get(self, owner_id: str, kind: UnitKind, source_id: int) -> Optional[EmbeddingRecord]:
        with self._get_conn() as conn:
            row = conn.execute(
                """
                SELECT user_id, kind, source_id, vector, content, metadata, updated_at
                FROM unit_embeddings
                WHERE user_id = ? AND kind = ? AND source_id = ?
                """,
                (owner_id, UnitKind(kind).value, int(source_id)),
            ).fetchone()

        if not row:
            return None
        return EmbeddingRecord(
            user_id=row["user_id"],
            kind=UnitKind(row["kind"]),
            source_id=int(row["source_id"]),
            vector=json.loads(row["vector"]),
            content=row["content"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            updated_at=row["updated_at"],
        )

    async def get_vectors(self, owner_id: str, kind: UnitKind) -> Dict[int, List[float]]:
        """Cached vectors of one kind keyed by source id"""
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT source_id, vector FROM unit_embeddings WHERE user_id = ? AND kind = ?",
                (owner_id, UnitKind(kind).value),
            ).fetchall()
        return {int(row["source_id"]): json.loads(row["vector"]) for row in rows}

    async def nearest_neighbor(
        self,
        owner_id: str,
        kind: UnitKind,
        query_vector: Sequence[float],
        k: int = 1,
        min_similarity: float = 0.0,
    ) -> List[Dict[str, Any]]:
        """
        Top-k most similar cached units of one kind for one owner

        Args:
            owner_id: Only this user's vectors are searched
            kind: Hierarchy level to search
            query_vector: Vector to compare against
            k: Maximum number of results
            min_similarity: Results below this cosine similarity are dropped

        Returns:
            [{"source_id": int, "similarity": float}] best first
        """
        vectors = await self.get_vectors(owner_id, kind)
        if not vectors:
            return []

        query = np.asarray(query_vector, dtype=float)
        dim = query.shape[0]
        ids = [i for i, vec in vectors.items() if len(vec) == dim]
        skipped = len(vectors) - len(ids)
        if skipped:
            logger.warning(
                f"Skipping {skipped} {UnitKind(kind).value} embedding(s) for {owner_id} "
                f"with dimension != {dim}"
            )
        if not ids:
            return []

        matrix = np.asarray([vectors[i] for i in ids], dtype=float)
        scores = cosine_similarity_matrix(query, matrix)
        order = np.argsort(-scores, kind="stable")[:k]
        return [
            {"source_id": ids[i], "similarity": float(scores[i])}
            for i in order
            if scores[i] >= min_similarity
        ]

    async def delete(self, owner_id: str, kind: UnitKind, source_id: int) -> None:
        try:
            with self._get_conn() as conn:
                conn.execute(
                    "DELETE FROM unit_embeddings WHERE user_id = ? AND kind = ? AND source_id = ?",
                    (owner_id, UnitKind(kind).value, int(source_id)),
                )
                conn.commit()
        except Exception as e:
            logger.error(f"Failed to delete {kind} embedding {source_id}: {e}", exc_info=True)
            raise
