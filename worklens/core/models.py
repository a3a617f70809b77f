"""
Domain records for the work hierarchy

RawEvent → TaskCluster → Subtask → MajorTask, plus the derived embedding
cache entry and the user-authored goal that reconciliation updates.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UnitKind(str, Enum):
    """Embedding kinds; one vector namespace per hierarchy level"""

    TASK = "task"
    SUBTASK = "subtask"
    MAJOR_TASK = "major_task"


class RouteAction(str, Enum):
    LINK = "link"
    MUTATE = "mutate"
    CLASSIFY = "classify"


class GoalStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def now_iso() -> str:
    return datetime.now().isoformat()


def day_start_iso(moment: Optional[datetime] = None) -> str:
    """Local midnight of the given moment (default: now)"""
    moment = moment or datetime.now()
    return moment.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()


class RawEvent(BaseModel):
    """One captured activity sample; consumed once by the event buffer"""

    model_config = ConfigDict(frozen=True)

    user_id: str
    app: str
    title: str
    timestamp: str
    duration: float = 0.0
    afk_status: str = "not-afk"
    idle_time: float = 0.0


class TaskCluster(BaseModel):
    """Smallest classified work unit, built from exactly one event batch"""

    id: int
    user_id: str
    title: str
    description: str = ""
    start_time: str
    end_time: str
    duration_minutes: int
    status: str = "completed"
    source_apps: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    productivity: Optional[str] = None
    confidence: Optional[float] = None
    linked_goal_id: Optional[int] = None
    created_at: str = Field(default_factory=now_iso)


class Subtask(BaseModel):
    """Work stream grouping related task clusters"""

    id: int
    user_id: str
    name: str
    summary: str = ""
    member_task_ids: List[int]
    update_count: int = 0
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)


class MajorTask(BaseModel):
    """Project grouping related subtasks"""

    id: int
    user_id: str
    title: str
    summary_bullets: List[str] = Field(default_factory=list)
    member_subtask_ids: List[int]
    archived: bool = False
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)


class EmbeddingRecord(BaseModel):
    """Cached vector for one unit; never the source of truth for membership"""

    user_id: str
    kind: UnitKind
    source_id: int
    vector: List[float]
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    updated_at: str = Field(default_factory=now_iso)


class UserGoal(BaseModel):
    """User-defined target; completed once linked cluster time reaches the target"""

    id: int
    user_id: str
    name: str
    target_minutes: int
    status: GoalStatus = GoalStatus.PENDING
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)

    @property
    def is_completed(self) -> bool:
        return self.status == GoalStatus.COMPLETED
