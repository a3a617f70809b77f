"""
Type protocols for the pipeline's collaborators

The oracle, the vector index and the record store are external services;
these Protocols pin their contracts so that the SQLite/httpx implementations
in this package can be swapped for any other implementation.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from worklens.core.models import (
    GoalStatus,
    MajorTask,
    Subtask,
    TaskCluster,
    UnitKind,
    UserGoal,
)

# ==================== Oracle ====================


class OracleProtocol(Protocol):
    """Text-generation + embedding oracle"""

    async def chat_completion(
        self, messages: List[Dict[str, Any]], **kwargs: Any
    ) -> Dict[str, Any]:
        """Return {"content": str, "usage": {...}}; raise OracleError subclasses"""
        ...

    async def embed(self, text: str) -> List[float]:
        """Embed text into a fixed-dimension vector"""
        ...


# ==================== Vector index ====================


class VectorIndexProtocol(Protocol):
    """Per-owner, per-kind similarity search over unit embeddings"""

    async def upsert(
        self,
        owner_id: str,
        kind: UnitKind,
        source_id: int,
        vector: Sequence[float],
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...

    async def nearest_neighbor(
        self,
        owner_id: str,
        kind: UnitKind,
        query_vector: Sequence[float],
        k: int = 1,
        min_similarity: float = 0.0,
    ) -> List[Dict[str, Any]]:
        """Return [{"source_id": int, "similarity": float}] best first"""
        ...

    async def delete(self, owner_id: str, kind: UnitKind, source_id: int) -> None:
        ...

    async def get_vectors(self, owner_id: str, kind: UnitKind) -> Dict[int, List[float]]:
        """Cached vectors of one kind keyed by source id"""
        ...


# ==================== Repository Protocols ====================


class TaskClustersRepositoryProtocol(Protocol):
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
        ...

    async def get_by_id(self, cluster_id: int) -> Optional[TaskCluster]:
        ...

    async def get_by_ids(self, cluster_ids: List[int]) -> List[TaskCluster]:
        ...

    async def get_for_user(
        self, user_id: str, since: Optional[str] = None
    ) -> List[TaskCluster]:
        ...

    async def get_linked_to_goal(self, goal_id: int) -> List[TaskCluster]:
        ...


class SubtasksRepositoryProtocol(Protocol):
    async def create(
        self, user_id: str, name: str, summary: str, member_task_ids: List[int]
    ) -> Subtask:
        ...

    async def get_by_id(self, subtask_id: int) -> Optional[Subtask]:
        ...

    async def get_by_ids(self, subtask_ids: List[int]) -> List[Subtask]:
        ...

    async def get_for_user(
        self, user_id: str, since: Optional[str] = None
    ) -> List[Subtask]:
        ...

    async def update(
        self,
        subtask_id: int,
        name: Optional[str] = None,
        summary: Optional[str] = None,
        member_task_ids: Optional[List[int]] = None,
        update_count: Optional[int] = None,
    ) -> Optional[Subtask]:
        ...

    async def reset_update_count(self, subtask_id: int) -> None:
        ...

    async def delete(self, subtask_id: int) -> None:
        ...

    async def get_grouped_task_ids(self, user_id: str) -> Set[int]:
        ...


class MajorTasksRepositoryProtocol(Protocol):
    async def create(
        self,
        user_id: str,
        title: str,
        summary_bullets: List[str],
        member_subtask_ids: List[int],
    ) -> MajorTask:
        ...

    async def get_by_id(self, major_task_id: int) -> Optional[MajorTask]:
        ...

    async def get_for_user(
        self, user_id: str, since: Optional[str] = None, include_archived: bool = False
    ) -> List[MajorTask]:
        ...

    async def update(
        self,
        major_task_id: int,
        title: Optional[str] = None,
        summary_bullets: Optional[List[str]] = None,
        member_subtask_ids: Optional[List[int]] = None,
    ) -> Optional[MajorTask]:
        ...

    async def archive(self, major_task_id: int, prefix: str) -> None:
        ...

    async def replace_member_subtasks(
        self, user_id: str, old_ids: List[int], new_id: int, parent_id: Optional[int]
    ) -> int:
        ...

    async def get_assigned_subtask_ids(self, user_id: str) -> Set[int]:
        ...

    async def find_parent(self, user_id: str, subtask_id: int) -> Optional[MajorTask]:
        ...


class UserGoalsRepositoryProtocol(Protocol):
    async def get_for_user(
        self, user_id: str, include_completed: bool = True
    ) -> List[UserGoal]:
        ...

    async def update_status(self, goal_id: int, status: GoalStatus) -> None:
        ...


class DeadLettersRepositoryProtocol(Protocol):
    async def add(
        self,
        job_name: str,
        error: str,
        attempts: int,
        user_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> int:
        ...


class DatabaseManagerProtocol(Protocol):
    """Aggregate of repositories (see core.db.DatabaseManager)"""

    task_clusters: TaskClustersRepositoryProtocol
    subtasks: SubtasksRepositoryProtocol
    major_tasks: MajorTasksRepositoryProtocol
    user_goals: UserGoalsRepositoryProtocol
    embeddings: VectorIndexProtocol
    dead_letters: DeadLettersRepositoryProtocol
