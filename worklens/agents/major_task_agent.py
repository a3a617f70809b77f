"""
MajorTaskAgent - groups subtasks into major tasks and reconciles goals

Signalled by the SubtaskAgent with a reason:

- new_subtask: unassigned subtasks are routed against the user's live major
  tasks (link / mutate) and the rest go through one major_task_grouping pass
  together with the existing major tasks and the user's goals
- threshold_reached: subtasks that were updated update_threshold times
  refresh their parent major task (mutate contract, membership unchanged)

Summary bullets are append-only here. After every pass, triggering subtasks
at the threshold are reset to 0 and goal progress is reconciled.
"""

from typing import Any, Dict, List, Optional, Set, Tuple

from worklens.agents.similarity_router import SimilarityRouter
from worklens.core.json_parser import decode_oracle_output
from worklens.core.logger import get_logger
from worklens.core.models import (
    GoalStatus,
    MajorTask,
    RouteAction,
    Subtask,
    UnitKind,
    UserGoal,
)
from worklens.core.protocols import DatabaseManagerProtocol, OracleProtocol
from worklens.core.settings import PipelineSettings
from worklens.core.task_queue import BackgroundTaskQueue
from worklens.core.user_state import UserState, UserStateStore
from worklens.llm.prompt_manager import PromptManager
from worklens.models.oracle_outputs import MajorTaskGroupingOutput
from worklens.models.responses import AggregationResult, GoalProgress
from worklens.services.embedding_generator import EmbeddingGenerator, format_subtask
from worklens.services.unit_rewriter import UnitRewriter

logger = get_logger(__name__)

# Precedence when one pass performs several kinds of change
_ACTION_RANK = ["skipped", "refreshed", "linked", "mutated", "classified"]


def subtask_bullet(subtask: Subtask) -> str:
    return f"{subtask.name}: {subtask.summary}"


def append_unique(items: List[Any], new_items: List[Any]) -> List[Any]:
    result = list(items)
    for item in new_items:
        if item not in result:
            result.append(item)
    return result


def format_major_tasks_for_prompt(major_tasks: List[MajorTask]) -> str:
    if not major_tasks:
        return "(none)"
    lines = []
    for m in major_tasks:
        bullets = "; ".join(m.summary_bullets[-5:])
        lines.append(f"- [id {m.id}] {m.title}: {bullets} ({len(m.member_subtask_ids)} subtasks)")
    return "\n".join(lines)


def format_goals_for_prompt(goals: List[UserGoal]) -> str:
    if not goals:
        return "(no goals defined)"
    return "\n".join(f"- {g.name} (target {g.target_minutes} min)" for g in goals)


def format_subtasks_to_place(subtasks: List[Subtask]) -> str:
    return "\n".join(
        f"- [id {s.id}] {s.name}: {s.summary} ({len(s.member_task_ids)} tasks)"
        for s in subtasks
    )


class MajorTaskAgent:
    """Subtask → MajorTask aggregation and goal reconciliation"""

    def __init__(
        self,
        db: DatabaseManagerProtocol,
        oracle: OracleProtocol,
        prompt_manager: PromptManager,
        router: SimilarityRouter,
        embeddings: EmbeddingGenerator,
        store: UserStateStore,
        settings: PipelineSettings,
        queue: Optional[BackgroundTaskQueue] = None,
        merger=None,
    ):
        self.db = db
        self.oracle = oracle
        self.prompt_manager = prompt_manager
        self.router = router
        self.embeddings = embeddings
        self.rewriter = UnitRewriter(oracle, prompt_manager)
        self.store = store
        self.settings = settings
        self.queue = queue
        self.merger = merger

        self.stats: Dict[str, Any] = {
            "passes": 0,
            "major_tasks_created": 0,
            "major_tasks_updated": 0,
            "refreshes": 0,
            "goals_completed": 0,
        }

    async def handle_subtask_changes(
        self, user_id: str, subtask_ids: List[int], reason: str
    ) -> AggregationResult:
        """
        Place or refresh the given subtasks

        Args:
            user_id: Owner
            subtask_ids: Subtasks that were created or reached the update threshold
            reason: new_subtask | threshold_reached

        Raises:
            TransientOracleFailure / MalformedOracleOutput: the pass is abandoned
            and retried by the queue; already-placed subtasks are not re-placed
        """
        async with self.store.lock(user_id) as state:
            subtasks = [
                s for s in await self.db.subtasks.get_by_ids(subtask_ids) if s.user_id == user_id
            ]
            if not subtasks:
                logger.debug(f"No live subtasks among {subtask_ids} for {user_id}, skipping")
                return AggregationResult(success=True, action="skipped", message="no live subtasks")

            logger.debug(f"Major task pass for {user_id} ({reason}): subtasks {[s.id for s in subtasks]}")
            result = await self._place_and_refresh(user_id, subtasks)

            await self._reset_update_counts(subtasks)
            await self.reconcile_goals(user_id)
            self._after_pass(state, result)
            return result

    async def _place_and_refresh(self, user_id: str, subtasks: List[Subtask]) -> AggregationResult:
        assigned = await self.db.major_tasks.get_assigned_subtask_ids(user_id)
        threshold = self.settings.update_threshold
        actions: List[str] = []
        created_ids: List[int] = []
        updated_ids: List[int] = []
        to_classify: List[Subtask] = []

        for subtask in subtasks:
            if subtask.id in assigned:
                if subtask.update_count < threshold:
                    continue
                parent = await self.db.major_tasks.find_parent(user_id, subtask.id)
                if parent is None:
                    continue
                refreshed = await self._mutate(parent, subtask)
                updated_ids.append(refreshed.id)
                self.stats["refreshes"] += 1
                actions.append("refreshed")
                continue

            decision = await self.router.route(user_id, format_subtask(subtask), UnitKind.MAJOR_TASK)
            target = None
            if decision.action in (RouteAction.LINK, RouteAction.MUTATE):
                target = await self.db.major_tasks.get_by_id(decision.target_id)
                if target is None or target.archived or target.user_id != user_id:
                    target = None

            if target is None:
                to_classify.append(subtask)
                continue

            if decision.action == RouteAction.LINK:
                updated = await self._link(target, subtask)
                actions.append("linked")
            else:
                updated = await self._mutate(target, subtask, add_member=True)
                actions.append("mutated")
            assigned.add(subtask.id)
            updated_ids.append(updated.id)

        if to_classify:
            created, updated = await self._grouping_pass(user_id, to_classify, assigned)
            created_ids.extend(created)
            updated_ids.extend(updated)
            actions.append("classified")

        action = max(actions, key=_ACTION_RANK.index) if actions else "skipped"
        return AggregationResult(
            success=True,
            action=action,
            created_ids=created_ids,
            updated_ids=list(dict.fromkeys(updated_ids)),
        )

    async def _link(self, target: MajorTask, subtask: Subtask) -> MajorTask:
        updated = await self.db.major_tasks.update(
            target.id,
            summary_bullets=append_unique(target.summary_bullets, [subtask_bullet(subtask)]),
            member_subtask_ids=append_unique(target.member_subtask_ids, [subtask.id]),
        )
        logger.info(f"Linked subtask {subtask.id} to major task {target.id} ({target.title})")
        return updated

    async def _mutate(self, target: MajorTask, subtask: Subtask, add_member: bool = False) -> MajorTask:
        """Rewrite the title, append the returned summary as a bullet"""
        rewrite = await self.rewriter.mutate(
            "major task", target.title, "; ".join(target.summary_bullets), format_subtask(subtask)
        )
        members = target.member_subtask_ids
        if add_member:
            members = append_unique(members, [subtask.id])

        updated = await self.db.major_tasks.update(
            target.id,
            title=rewrite.name,
            summary_bullets=append_unique(target.summary_bullets, [rewrite.summary]),
            member_subtask_ids=members,
        )
        logger.info(f"Mutated major task {target.id} with subtask {subtask.id}: {target.title} -> {rewrite.name}")
        return updated

    async def _grouping_pass(
        self, user_id: str, to_classify: List[Subtask], assigned: Set[int]
    ) -> Tuple[List[int], List[int]]:
        existing = await self.db.major_tasks.get_for_user(user_id)
        goals = await self.db.user_goals.get_for_user(user_id)

        messages = self.prompt_manager.build_messages(
            "major_task_grouping",
            "user_prompt_template",
            goals_text=format_goals_for_prompt(goals),
            major_tasks_text=format_major_tasks_for_prompt(existing),
            subtasks_text=format_subtasks_to_place(to_classify),
        )
        config_params = self.prompt_manager.get_config_params("major_task_grouping")
        response = await self.oracle.chat_completion(messages, **config_params)
        output = decode_oracle_output(response.get("content", ""), MajorTaskGroupingOutput)

        allowed = {s.id for s in to_classify} - assigned
        existing_by_id = {m.id: m for m in existing}
        claimed: Set[int] = set()
        created_ids: List[int] = []
        updated_ids: List[int] = []

        for entry in output.major_tasks:
            members = [sid for sid in entry.subtask_ids if sid in allowed and sid not in claimed]
            claimed.update(members)

            target = existing_by_id.get(entry.id) if entry.id is not None else None
            if target is not None:
                new_members = [sid for sid in members if sid not in target.member_subtask_ids]
                new_bullets = [b for b in entry.summary_bullets if b not in target.summary_bullets]
                if not new_members and not new_bullets:
                    continue
                updated = await self.db.major_tasks.update(
                    target.id,
                    summary_bullets=target.summary_bullets + new_bullets,
                    member_subtask_ids=target.member_subtask_ids + new_members,
                )
                existing_by_id[target.id] = updated
                updated_ids.append(updated.id)
                continue

            if not members:
                logger.debug(f"Skipping major task '{entry.title}' without assignable subtasks")
                continue

            major = await self.db.major_tasks.create(
                user_id=user_id,
                title=entry.title,
                summary_bullets=list(entry.summary_bullets),
                member_subtask_ids=members,
            )
            created_ids.append(major.id)

        leftover = allowed - claimed
        if leftover:
            logger.warning(f"Major task grouping left subtasks {sorted(leftover)} unplaced for {user_id}")

        self.stats["major_tasks_created"] += len(created_ids)
        self.stats["major_tasks_updated"] += len(updated_ids)
        logger.info(
            f"Major task grouping for {user_id}: {len(to_classify)} subtasks -> "
            f"{len(created_ids)} created, {len(updated_ids)} updated"
        )
        return created_ids, updated_ids

    async def _reset_update_counts(self, subtasks: List[Subtask]) -> None:
        threshold = self.settings.update_threshold
        for subtask in subtasks:
            if subtask.update_count >= threshold:
                await self.db.subtasks.reset_update_count(subtask.id)
                logger.debug(f"Reset update count of subtask {subtask.id} ({subtask.update_count} -> 0)")

    async def reconcile_goals(self, user_id: str) -> List[GoalProgress]:
        """
        Recompute goal status from the time of grouped, goal-linked clusters

        Only clusters that belong to one of the user's subtasks count. A
        completed goal never goes back to in_progress.
        """
        goals = await self.db.user_goals.get_for_user(user_id, include_completed=False)
        if not goals:
            return []

        grouped = await self.db.subtasks.get_grouped_task_ids(user_id)
        progress: List[GoalProgress] = []

        for goal in goals:
            linked = await self.db.task_clusters.get_linked_to_goal(goal.id)
            minutes = sum(c.duration_minutes for c in linked if c.id in grouped)

            status = GoalStatus(goal.status)
            if minutes >= goal.target_minutes:
                status = GoalStatus.COMPLETED
            elif minutes > 0:
                status = GoalStatus.IN_PROGRESS

            if status != GoalStatus(goal.status):
                await self.db.user_goals.update_status(goal.id, status)
                if status == GoalStatus.COMPLETED:
                    self.stats["goals_completed"] += 1
                    logger.info(f"Goal {goal.id} ({goal.name}) completed for {user_id}: {minutes}/{goal.target_minutes} min")

            progress.append(
                GoalProgress(
                    goal_id=goal.id,
                    minutes_spent=minutes,
                    target_minutes=goal.target_minutes,
                    status=status.value,
                )
            )

        return progress

    def _after_pass(self, state: UserState, result: AggregationResult) -> None:
        self.stats["passes"] += 1
        if self.queue is None:
            return

        user_id = state.user_id
        for major_id in dict.fromkeys(result.created_ids + result.updated_ids):
            self.embeddings.schedule(user_id, UnitKind.MAJOR_TASK, major_id)

        if result.action == "skipped":
            return

        passes = state.passes_since_dedup[UnitKind.MAJOR_TASK] + 1
        if passes >= self.settings.dedup_every_passes and self.merger is not None:
            state.passes_since_dedup[UnitKind.MAJOR_TASK] = 0
            merger = self.merger
            self.queue.submit(
                "dedup:major_task",
                lambda: merger.sweep(user_id, UnitKind.MAJOR_TASK),
                user_id=user_id,
                payload={"kind": UnitKind.MAJOR_TASK.value},
            )
        else:
            state.passes_since_dedup[UnitKind.MAJOR_TASK] = passes
