"""
Deduplication merger - periodic near-duplicate merging per hierarchy level

A sweep compares every pair of live units of one kind for one user using
their cached embeddings. A pair qualifies when

    similarity >= merge_similarity   and   overlap < merge_max_overlap

where overlap = |A ∩ B| / min(|A|, |B|) over member ids. Candidates are merged
in descending similarity; a candidate touching a unit already merged in the
same sweep is skipped. Each merge asks the oracle for one name and summary
and creates a new unit holding the ordered union of both member lists.

Retirement differs per level: merged subtasks are deleted and the new subtask
takes over a single parent major task (one without a parent is queued for
placement), merged major tasks are archived with a title prefix. The steps of one merge are not atomic; a crash between
them leaves state that the next sweep or regeneration converges.
"""

from itertools import combinations
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Set, Union

import numpy as np

from worklens.core.logger import get_logger
from worklens.core.models import MajorTask, Subtask, UnitKind
from worklens.core.protocols import DatabaseManagerProtocol, OracleProtocol
from worklens.core.settings import PipelineSettings
from worklens.core.user_state import UserStateStore
from worklens.llm.prompt_manager import PromptManager
from worklens.models.responses import MergeCandidate, MergeReport, MergeResult
from worklens.services.embedding_generator import EmbeddingGenerator, format_unit
from worklens.services.unit_rewriter import UnitRewriter

if TYPE_CHECKING:
    from worklens.agents.major_task_agent import MajorTaskAgent

logger = get_logger(__name__)

MergeUnit = Union[Subtask, MajorTask]


def member_ids(unit: MergeUnit) -> List[int]:
    if isinstance(unit, Subtask):
        return unit.member_task_ids
    return unit.member_subtask_ids


def member_overlap(first: Sequence[int], second: Sequence[int]) -> float:
    """|A ∩ B| / min(|A|, |B|); 0.0 when either side is empty"""
    a, b = set(first), set(second)
    smaller = min(len(a), len(b))
    if smaller == 0:
        return 0.0
    return len(a & b) / smaller


def ordered_union(first: Sequence[int], second: Sequence[int]) -> List[int]:
    return list(dict.fromkeys(list(first) + list(second)))


def cosine_similarity(first: Sequence[float], second: Sequence[float]) -> float:
    a = np.asarray(first, dtype=float)
    b = np.asarray(second, dtype=float)
    if a.shape != b.shape:
        return 0.0
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


class DeduplicationMerger:
    """Finds and merges near-duplicate subtasks or major tasks"""

    def __init__(
        self,
        db: DatabaseManagerProtocol,
        oracle: OracleProtocol,
        prompt_manager: PromptManager,
        embeddings: EmbeddingGenerator,
        store: UserStateStore,
        settings: PipelineSettings,
    ):
        self.db = db
        self.rewriter = UnitRewriter(oracle, prompt_manager)
        self.embeddings = embeddings
        self.store = store
        self.merge_similarity = settings.merge_similarity
        self.max_overlap = settings.merge_max_overlap
        self.archive_prefix = settings.archive_prefix
        # Set by the coordinator once the major task agent exists
        self.major_task_agent: Optional["MajorTaskAgent"] = None

        self.stats: Dict[str, Any] = {
            "sweeps": 0,
            "merges": 0,
            "merge_failures": 0,
            "last_sweep": None,
        }

    async def _live_units(self, user_id: str, kind: UnitKind) -> Dict[int, MergeUnit]:
        if kind == UnitKind.SUBTASK:
            units = await self.db.subtasks.get_for_user(user_id)
        elif kind == UnitKind.MAJOR_TASK:
            units = await self.db.major_tasks.get_for_user(user_id, include_archived=False)
        else:
            raise ValueError(f"Deduplication is not defined for {kind}")
        return {u.id: u for u in units}

    async def find_candidates(self, user_id: str, kind: UnitKind) -> List[MergeCandidate]:
        """
        Qualifying pairs of live units, most similar first

        Units without a cached embedding are left out of this sweep.
        """
        kind = UnitKind(kind)
        units = await self._live_units(user_id, kind)
        vectors = await self.db.embeddings.get_vectors(user_id, kind)
        ids = sorted(uid for uid in units if uid in vectors)

        candidates: List[MergeCandidate] = []
        for first_id, second_id in combinations(ids, 2):
            similarity = cosine_similarity(vectors[first_id], vectors[second_id])
            if similarity < self.merge_similarity:
                continue
            overlap = member_overlap(member_ids(units[first_id]), member_ids(units[second_id]))
            if overlap >= self.max_overlap:
                continue
            candidates.append(
                MergeCandidate(
                    kind=kind,
                    first_id=first_id,
                    second_id=second_id,
                    similarity=similarity,
                    overlap=overlap,
                )
            )

        candidates.sort(key=lambda c: (-c.similarity, c.first_id, c.second_id))
        return candidates

    async def sweep(self, user_id: str, kind: UnitKind) -> MergeReport:
        """Run one deduplication sweep for one user and level, under the user's lock"""
        kind = UnitKind(kind)
        async with self.store.lock(user_id):
            report = await self._sweep(user_id, kind)

        self.stats["sweeps"] += 1
        self.stats["last_sweep"] = {"user_id": user_id, "kind": kind.value, "merged": report.merged_count}
        logger.info(
            f"Dedup sweep {kind.value} for {user_id}: {report.candidates} candidate(s), "
            f"{report.merged_count} merged, {report.skipped_conflicts} skipped"
        )
        return report

    async def _sweep(self, user_id: str, kind: UnitKind) -> MergeReport:
        candidates = await self.find_candidates(user_id, kind)
        report = MergeReport(kind=kind, user_id=user_id, candidates=len(candidates))
        if not candidates:
            return report

        consumed: Set[int] = set()
        for candidate in candidates:
            if candidate.first_id in consumed or candidate.second_id in consumed:
                report.skipped_conflicts += 1
                continue

            result = await self._merge_pair(user_id, candidate)
            report.merged.append(result)
            if result.success:
                consumed.update(result.retired_ids)

        return report

    async def _merge_pair(self, user_id: str, candidate: MergeCandidate) -> MergeResult:
        kind = UnitKind(candidate.kind)
        try:
            if kind == UnitKind.SUBTASK:
                merged_id = await self._merge_subtasks(user_id, candidate.first_id, candidate.second_id)
            else:
                merged_id = await self._merge_major_tasks(user_id, candidate.first_id, candidate.second_id)
        except Exception as e:
            self.stats["merge_failures"] += 1
            logger.error(
                f"Failed to merge {kind.value} {candidate.first_id} and {candidate.second_id}: {e}",
                exc_info=True,
            )
            return MergeResult(success=False, error=str(e), similarity=candidate.similarity)

        self.stats["merges"] += 1
        return MergeResult(
            success=True,
            message=f"Merged {kind.value} {candidate.first_id} and {candidate.second_id}",
            merged_id=merged_id,
            retired_ids=[candidate.first_id, candidate.second_id],
            similarity=candidate.similarity,
        )

    async def _merge_subtasks(self, user_id: str, first_id: int, second_id: int) -> int:
        first = await self.db.subtasks.get_by_id(first_id)
        second = await self.db.subtasks.get_by_id(second_id)
        if first is None or second is None:
            raise LookupError(f"Subtask {first_id} or {second_id} disappeared before merge")

        rewrite = await self.rewriter.merge("subtask", format_unit(first), format_unit(second))
        merged = await self.db.subtasks.create(
            user_id=user_id,
            name=rewrite.name,
            summary=rewrite.summary,
            member_task_ids=ordered_union(first.member_task_ids, second.member_task_ids),
        )

        for retired in (first, second):
            await self.db.subtasks.delete(retired.id)
            await self.db.embeddings.delete(user_id, UnitKind.SUBTASK, retired.id)

        # The merged subtask inherits first's parent, else second's
        parents = await self._parents_of(user_id, [first.id, second.id])
        parent_id = parents[0] if parents else None
        await self.db.major_tasks.replace_member_subtasks(
            user_id, [first.id, second.id], merged.id, parent_id
        )

        self._schedule(user_id, UnitKind.SUBTASK, merged.id)
        for pid in parents:
            self._schedule(user_id, UnitKind.MAJOR_TASK, pid)
        if parent_id is None:
            self._signal_new_subtask(user_id, merged.id)

        logger.info(f"Merged subtasks {first.id} + {second.id} -> {merged.id} ({merged.name})")
        return merged.id

    async def _merge_major_tasks(self, user_id: str, first_id: int, second_id: int) -> int:
        first = await self.db.major_tasks.get_by_id(first_id)
        second = await self.db.major_tasks.get_by_id(second_id)
        if first is None or second is None or first.archived or second.archived:
            raise LookupError(f"Major task {first_id} or {second_id} is no longer live")

        rewrite = await self.rewriter.merge("major task", format_unit(first), format_unit(second))
        merged = await self.db.major_tasks.create(
            user_id=user_id,
            title=rewrite.name,
            summary_bullets=[rewrite.summary],
            member_subtask_ids=ordered_union(first.member_subtask_ids, second.member_subtask_ids),
        )

        for retired in (first, second):
            await self.db.major_tasks.archive(retired.id, self.archive_prefix)
            await self.db.embeddings.delete(user_id, UnitKind.MAJOR_TASK, retired.id)

        self._schedule(user_id, UnitKind.MAJOR_TASK, merged.id)
        logger.info(f"Merged major tasks {first.id} + {second.id} -> {merged.id} ({merged.title})")
        return merged.id

    async def _parents_of(self, user_id: str, subtask_ids: List[int]) -> List[int]:
        parents: List[int] = []
        for subtask_id in subtask_ids:
            parent = await self.db.major_tasks.find_parent(user_id, subtask_id)
            if parent is not None and parent.id not in parents:
                parents.append(parent.id)
        return parents

    def _schedule(self, user_id: str, kind: UnitKind, source_id: int) -> None:
        if self.embeddings.queue is not None:
            self.embeddings.schedule(user_id, kind, source_id)

    def _signal_new_subtask(self, user_id: str, subtask_id: int) -> None:
        """Queue major task placement for a merged subtask that has no parent"""
        agent = self.major_task_agent
        queue = self.embeddings.queue
        if agent is None or queue is None:
            return

        subtask_ids = [subtask_id]
        queue.submit(
            "major:new_subtask",
            lambda: agent.handle_subtask_changes(user_id, subtask_ids, "new_subtask"),
            user_id=user_id,
            payload={"subtask_ids": subtask_ids, "reason": "new_subtask"},
        )
        logger.debug(f"Signalled major task aggregation for merged subtask {subtask_id}")
