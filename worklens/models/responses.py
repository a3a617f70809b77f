"""
Result models returned by pipeline operations
Provides strongly typed results; dump with to_payload() for camelCase keys
"""

from typing import Any, Dict, List, Literal, Optional

from worklens.core.models import RouteAction, UnitKind
from worklens.models.base import BaseModel, OperationResponse


# Event buffer
class BufferResult(BaseModel):
    """Outcome of adding one raw event"""

    buffered: bool
    flushed: bool
    buffer_size: int
    task_cluster_ids: List[int] = []
    error: Optional[str] = None


class BufferStatus(BaseModel):
    """Observable buffer state for one user"""

    exists: bool
    size: int
    max_size: int
    percentage: float
    last_classified: Optional[str] = None
    failed_attempts: int = 0
    next_retry_at: Optional[str] = None


# Routing
class RouteDecision(BaseModel):
    """Similarity routing outcome for one unit"""

    action: RouteAction
    target_id: Optional[int] = None
    similarity: float = 0.0


# Aggregation
AggregationAction = Literal[
    "waiting", "linked", "mutated", "classified", "refreshed", "skipped", "failed"
]


class AggregationResult(OperationResponse):
    """Outcome of one subtask or major task aggregation pass"""

    action: AggregationAction = "skipped"
    created_ids: List[int] = []
    updated_ids: List[int] = []
    triggered: bool = False


class GoalProgress(BaseModel):
    goal_id: int
    minutes_spent: int
    target_minutes: int
    status: str


# Deduplication
class MergeCandidate(BaseModel):
    """A qualifying pair of same-kind units"""

    kind: UnitKind
    first_id: int
    second_id: int
    similarity: float
    overlap: float


class MergeResult(OperationResponse):
    """Result of merging one candidate pair"""

    merged_id: Optional[int] = None
    retired_ids: List[int] = []
    similarity: float = 0.0


class MergeReport(BaseModel):
    """Outcome of one deduplication sweep"""

    kind: UnitKind
    user_id: str
    candidates: int = 0
    merged: List[MergeResult] = []
    skipped_conflicts: int = 0

    @property
    def merged_count(self) -> int:
        return sum(1 for r in self.merged if r.success)


# Coordinator
class CoordinatorStats(BaseModel):
    is_running: bool
    active_users: List[str]
    stats: Dict[str, Any]
    queue: Dict[str, Any]
