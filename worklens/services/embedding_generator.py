"""
Embedding generator - keeps the vector cache in step with unit content

Every content change of a task cluster, subtask or major task schedules a
regeneration on the background queue. Regeneration always re-reads the unit,
so a late or repeated job just rewrites the latest content; a unit that no
longer exists has its cached vector removed.
"""

from typing import Any, Dict, List, Optional, Union

from worklens.core.logger import get_logger
from worklens.core.models import MajorTask, Subtask, TaskCluster, UnitKind
from worklens.core.protocols import DatabaseManagerProtocol, OracleProtocol
from worklens.core.task_queue import BackgroundTaskQueue

logger = get_logger(__name__)

Unit = Union[TaskCluster, Subtask, MajorTask]


def format_task_cluster(cluster: TaskCluster) -> str:
    apps = ", ".join(cluster.source_apps) if cluster.source_apps else "unknown"
    return (
        f"Task: {cluster.title}\n"
        f"Description: {cluster.description}\n"
        f"Duration: {cluster.duration_minutes} minutes\n"
        f"Status: {cluster.status}\n"
        f"Activities: {apps}"
    )


def format_subtask(subtask: Subtask) -> str:
    return (
        f"Subtask: {subtask.name}\n"
        f"Summary: {subtask.summary}\n"
        f"Number of tasks: {len(subtask.member_task_ids)}"
    )


def format_major_task(major_task: MajorTask) -> str:
    bullets = "; ".join(major_task.summary_bullets)
    return (
        f"Major Task: {major_task.title}\n"
        f"Summary: {bullets}\n"
        f"Number of subtasks: {len(major_task.member_subtask_ids)}"
    )


def format_unit(unit: Unit) -> str:
    """Embedding text for any hierarchy unit"""
    if isinstance(unit, TaskCluster):
        return format_task_cluster(unit)
    if isinstance(unit, Subtask):
        return format_subtask(unit)
    if isinstance(unit, MajorTask):
        return format_major_task(unit)
    raise TypeError(f"Unsupported unit type: {type(unit).__name__}")


def unit_metadata(unit: Unit) -> Dict[str, Any]:
    if isinstance(unit, TaskCluster):
        return {"title": unit.title, "duration_minutes": unit.duration_minutes}
    if isinstance(unit, Subtask):
        return {"name": unit.name, "member_count": len(unit.member_task_ids)}
    return {"title": unit.title, "member_count": len(unit.member_subtask_ids)}


class EmbeddingGenerator:
    """Regenerates cached embeddings, inline or through the background queue"""

    def __init__(
        self,
        db: DatabaseManagerProtocol,
        oracle: OracleProtocol,
        queue: Optional[BackgroundTaskQueue] = None,
    ):
        self.db = db
        self.oracle = oracle
        self.queue = queue

    async def _load(self, kind: UnitKind, source_id: int) -> Optional[Unit]:
        if kind == UnitKind.TASK:
            return await self.db.task_clusters.get_by_id(source_id)
        if kind == UnitKind.SUBTASK:
            return await self.db.subtasks.get_by_id(source_id)
        major = await self.db.major_tasks.get_by_id(source_id)
        # Archived major tasks are out of routing and dedup
        if major is not None and major.archived:
            return None
        return major

    async def embed_text(self, content: str) -> List[float]:
        return await self.oracle.embed(content)

    async def regenerate(self, user_id: str, kind: UnitKind, source_id: int) -> bool:
        """
        Recompute and store the embedding of one unit

        Returns:
            True if a vector was written, False if the unit is gone (its
            cached vector is removed instead)
        """
        kind = UnitKind(kind)
        unit = await self._load(kind, source_id)
        if unit is None:
            await self.db.embeddings.delete(user_id, kind, source_id)
            logger.debug(f"{kind.value} {source_id} no longer live, dropped cached embedding")
            return False

        content = format_unit(unit)
        vector = await self.oracle.embed(content)
        await self.db.embeddings.upsert(
            user_id, kind, source_id, vector, content, metadata=unit_metadata(unit)
        )
        logger.debug(f"Regenerated {kind.value} embedding {source_id} for {user_id}")
        return True

    def schedule(self, user_id: str, kind: UnitKind, source_id: int) -> None:
        """Queue a regeneration; failures are retried by the queue"""
        kind = UnitKind(kind)
        if self.queue is None:
            raise RuntimeError("EmbeddingGenerator.schedule requires a BackgroundTaskQueue")

        self.queue.submit(
            f"embed:{kind.value}",
            lambda: self.regenerate(user_id, kind, source_id),
            user_id=user_id,
            payload={"kind": kind.value, "source_id": source_id},
        )
