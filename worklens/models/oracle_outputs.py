"""
Schemas for oracle (LLM) outputs

Every oracle reply is decoded against one of these models; any mismatch is a
MalformedOracleOutput (see core.json_parser).
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _OracleModel(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class ClusterPayload(_OracleModel):
    """One task cluster, as classified from a 20-event batch"""

    label: str = Field(min_length=1)
    summary: str
    apps: List[str]
    keywords: List[str]
    productivity: Literal["low", "medium", "high"]
    confidence: float = Field(ge=0.0, le=1.0)
    duration_seconds: Optional[int] = Field(default=None, ge=0)


class TaskClassificationOutput(_OracleModel):
    """Batch classification reply: exactly one cluster"""

    clusters: List[ClusterPayload] = Field(min_length=1, max_length=1)

    @property
    def cluster(self) -> ClusterPayload:
        return self.clusters[0]


class SubtaskGroupPayload(_OracleModel):
    """A subtask to create, or to update when id names an existing one"""

    id: Optional[int] = None
    name: str = Field(min_length=1)
    summary: str
    member_ids: List[int]

    @field_validator("member_ids")
    @classmethod
    def _dedupe(cls, value: List[int]) -> List[int]:
        return list(dict.fromkeys(value))


class SubtaskGroupingOutput(_OracleModel):
    subtasks: List[SubtaskGroupPayload]


class MajorTaskGroupPayload(_OracleModel):
    """A major task to create, or to update when id names an existing one"""

    id: Optional[int] = None
    title: str = Field(min_length=1)
    summary_bullets: List[str] = Field(min_length=1)
    subtask_ids: List[int]

    @field_validator("subtask_ids")
    @classmethod
    def _dedupe(cls, value: List[int]) -> List[int]:
        return list(dict.fromkeys(value))


class MajorTaskGroupingOutput(_OracleModel):
    major_tasks: List[MajorTaskGroupPayload]


class UnitRewriteOutput(_OracleModel):
    """Mutate/merge reply: one rewritten name + summary"""

    name: str = Field(min_length=1)
    summary: str = Field(min_length=1)
