"""
SubtaskAgent - groups task clusters into subtasks

Triggered once per new TaskCluster (through the background queue). Runs
under the user's lock:

- no subtask exists today: wait until at least initial_grouping_threshold
  ungrouped clusters exist today, then run a full grouping pass
- otherwise route the new cluster against the user's subtasks
  (link / mutate / classify, see SimilarityRouter)

A cluster belongs to at most one subtask and is never moved once assigned.
Created or updated subtasks are re-embedded in the background and signalled
to the MajorTaskAgent; every completed pass counts toward the subtask-level
deduplication cadence.
"""

from typing import Any, Dict, List, Optional, Set, Tuple

from worklens.agents.similarity_router import SimilarityRouter
from worklens.core.json_parser import decode_oracle_output
from worklens.core.logger import get_logger
from worklens.core.models import RouteAction, Subtask, TaskCluster, UnitKind, day_start_iso
from worklens.core.protocols import DatabaseManagerProtocol, OracleProtocol
from worklens.core.settings import PipelineSettings
from worklens.core.task_queue import BackgroundTaskQueue
from worklens.core.user_state import UserState, UserStateStore
from worklens.llm.prompt_manager import PromptManager
from worklens.models.oracle_outputs import SubtaskGroupingOutput
from worklens.models.responses import AggregationResult
from worklens.services.embedding_generator import EmbeddingGenerator, format_task_cluster
from worklens.services.unit_rewriter import UnitRewriter

logger = get_logger(__name__)


def format_clusters_for_prompt(clusters: List[TaskCluster]) -> str:
    if not clusters:
        return "(none)"
    return "\n".join(
        f"- [{c.id}] {c.title}: {c.description} ({c.duration_minutes} min, apps: {', '.join(c.source_apps)})"
        for c in clusters
    )


def format_subtasks_for_prompt(subtasks: List[Subtask]) -> str:
    if not subtasks:
        return "(none)"
    return "\n".join(
        f"- [id {s.id}] {s.name}: {s.summary} ({len(s.member_task_ids)} tasks)"
        for s in subtasks
    )


class SubtaskAgent:
    """TaskCluster → Subtask aggregation"""

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
        major_task_agent=None,
        merger=None,
    ):
        """
        Args:
            db: Repositories
            oracle: Text generation / embedding oracle
            prompt_manager: Prompt templates
            router: Similarity router (subtask level)
            embeddings: Embedding regeneration service
            store: Per-user state and locks
            settings: Thresholds
            queue: Background queue for cascades and sweeps
            major_task_agent: MajorTaskAgent signalled after a pass (wired by the coordinator)
            merger: DeduplicationMerger scheduled on the dedup cadence
        """
        self.db = db
        self.prompt_manager = prompt_manager
        self.router = router
        self.embeddings = embeddings
        self.oracle = oracle
        self.rewriter = UnitRewriter(oracle, prompt_manager)
        self.store = store
        self.settings = settings
        self.queue = queue
        self.major_task_agent = major_task_agent
        self.merger = merger

        self.stats: Dict[str, Any] = {
            "passes": 0,
            "subtasks_created": 0,
            "subtasks_updated": 0,
            "links": 0,
            "mutations": 0,
            "grouping_passes": 0,
            "waiting": 0,
        }

    async def handle_new_task(self, user_id: str, cluster_id: int) -> AggregationResult:
        """
        Aggregate one newly classified cluster

        Raises:
            TransientOracleFailure / MalformedOracleOutput: the pass is abandoned;
            the queue retries it and an already-grouped cluster is skipped on retry
        """
        async with self.store.lock(user_id) as state:
            result = await self._handle_new_task(user_id, cluster_id)
            if result.action not in ("waiting", "skipped"):
                await self._after_pass(state, result)
            return result

    async def _handle_new_task(self, user_id: str, cluster_id: int) -> AggregationResult:
        cluster = await self.db.task_clusters.get_by_id(cluster_id)
        if cluster is None or cluster.user_id != user_id:
            logger.warning(f"Task cluster {cluster_id} not found for {user_id}, skipping")
            return AggregationResult(success=True, action="skipped", message="cluster not found")

        grouped = await self.db.subtasks.get_grouped_task_ids(user_id)
        if cluster_id in grouped:
            logger.debug(f"Task cluster {cluster_id} already grouped, skipping")
            return AggregationResult(success=True, action="skipped", message="already grouped")

        today = day_start_iso()
        subtasks_today = await self.db.subtasks.get_for_user(user_id, since=today)

        if not subtasks_today:
            ungrouped = await self._ungrouped_today(user_id, today, grouped, cluster)
            threshold = self.settings.initial_grouping_threshold
            if len(ungrouped) < threshold:
                self.stats["waiting"] += 1
                logger.debug(f"Waiting for {threshold} tasks for {user_id} (current: {len(ungrouped)})")
                return AggregationResult(
                    success=True,
                    action="waiting",
                    message=f"Waiting for {threshold} tasks (current: {len(ungrouped)})",
                )
            return await self._grouping_pass(user_id, ungrouped, [])

        decision = await self.router.route(user_id, format_task_cluster(cluster), UnitKind.SUBTASK)

        if decision.action in (RouteAction.LINK, RouteAction.MUTATE):
            target = await self.db.subtasks.get_by_id(decision.target_id)
            if target is not None and target.user_id == user_id:
                if decision.action == RouteAction.LINK:
                    return await self._link(cluster, target)
                return await self._mutate(cluster, target)
            logger.debug(f"Routed subtask {decision.target_id} no longer exists, classifying")

        ungrouped = await self._ungrouped_today(user_id, today, grouped, cluster)
        return await self._grouping_pass(user_id, ungrouped, subtasks_today)

    async def _ungrouped_today(
        self, user_id: str, today: str, grouped: Set[int], cluster: TaskCluster
    ) -> List[TaskCluster]:
        clusters = await self.db.task_clusters.get_for_user(user_id, since=today)
        ungrouped = [c for c in clusters if c.id not in grouped]
        if all(c.id != cluster.id for c in ungrouped):
            ungrouped.append(cluster)
        return ungrouped

    async def _link(self, cluster: TaskCluster, target: Subtask) -> AggregationResult:
        updated = await self.db.subtasks.update(
            target.id,
            member_task_ids=target.member_task_ids + [cluster.id],
            update_count=target.update_count + 1,
        )
        self.stats["links"] += 1
        logger.info(f"Linked task {cluster.id} to subtask {target.id} ({target.name})")
        return AggregationResult(success=True, action="linked", updated_ids=[updated.id])

    async def _mutate(self, cluster: TaskCluster, target: Subtask) -> AggregationResult:
        rewrite = await self.rewriter.mutate(
            "subtask", target.name, target.summary, format_task_cluster(cluster)
        )
        updated = await self.db.subtasks.update(
            target.id,
            name=rewrite.name,
            summary=rewrite.summary,
            member_task_ids=target.member_task_ids + [cluster.id],
            update_count=target.update_count + 1,
        )
        self.stats["mutations"] += 1
        logger.info(f"Mutated subtask {target.id} with task {cluster.id}: {target.name} -> {rewrite.name}")
        return AggregationResult(success=True, action="mutated", updated_ids=[updated.id])

    async def _grouping_pass(
        self, user_id: str, ungrouped: List[TaskCluster], existing: List[Subtask]
    ) -> AggregationResult:
        """One subtask_grouping oracle call over ungrouped clusters and existing subtasks"""
        messages = self.prompt_manager.build_messages(
            "subtask_grouping",
            "user_prompt_template",
            tasks_text=format_clusters_for_prompt(ungrouped),
            subtasks_text=format_subtasks_for_prompt(existing),
        )
        config_params = self.prompt_manager.get_config_params("subtask_grouping")
        response = await self.oracle.chat_completion(messages, **config_params)
        output = decode_oracle_output(response.get("content", ""), SubtaskGroupingOutput)

        created, updated = await self._apply_grouping(user_id, output, ungrouped, existing)

        self.stats["grouping_passes"] += 1
        logger.info(
            f"Subtask grouping for {user_id}: {len(ungrouped)} tasks -> "
            f"{len(created)} created, {len(updated)} updated"
        )
        return AggregationResult(
            success=True,
            action="classified",
            created_ids=[s.id for s in created],
            updated_ids=[s.id for s in updated],
        )

    async def _apply_grouping(
        self,
        user_id: str,
        output: SubtaskGroupingOutput,
        ungrouped: List[TaskCluster],
        existing: List[Subtask],
    ) -> Tuple[List[Subtask], List[Subtask]]:
        allowed = {c.id for c in ungrouped}
        existing_by_id = {s.id: s for s in existing}
        claimed: Set[int] = set()
        created: List[Subtask] = []
        updated: List[Subtask] = []

        for entry in output.subtasks:
            members = [m for m in entry.member_ids if m in allowed and m not in claimed]
            rejected = [m for m in entry.member_ids if m not in members]
            if rejected:
                logger.debug(f"Ignoring task ids {rejected} for '{entry.name}' (not ungrouped or already claimed)")
            claimed.update(members)

            target = existing_by_id.get(entry.id) if entry.id is not None else None
            if target is not None:
                new_members = [m for m in members if m not in target.member_task_ids]
                content_changed = entry.name != target.name or entry.summary != target.summary
                if not new_members and not content_changed:
                    continue
                subtask = await self.db.subtasks.update(
                    target.id,
                    name=entry.name,
                    summary=entry.summary,
                    member_task_ids=target.member_task_ids + new_members,
                    update_count=target.update_count + 1,
                )
                existing_by_id[target.id] = subtask
                updated.append(subtask)
                continue

            if not members:
                logger.debug(f"Skipping subtask '{entry.name}' without assignable members")
                continue

            subtask = await self.db.subtasks.create(
                user_id=user_id, name=entry.name, summary=entry.summary, member_task_ids=members
            )
            created.append(subtask)

        leftover = allowed - claimed
        if leftover:
            logger.warning(f"Grouping left tasks {sorted(leftover)} ungrouped for {user_id}")

        self.stats["subtasks_created"] += len(created)
        self.stats["subtasks_updated"] += len(updated)
        return created, updated

    async def _after_pass(self, state: UserState, result: AggregationResult) -> None:
        """Embeddings, cascade to major tasks and dedup cadence; all through the queue"""
        self.stats["passes"] += 1
        user_id = state.user_id
        if self.queue is None:
            return

        touched = list(dict.fromkeys(result.created_ids + result.updated_ids))
        for subtask_id in touched:
            self.embeddings.schedule(user_id, UnitKind.SUBTASK, subtask_id)

        if self.major_task_agent is not None:
            await self._signal_major_tasks(user_id, result)

        passes = state.passes_since_dedup[UnitKind.SUBTASK] + 1
        if passes >= self.settings.dedup_every_passes and self.merger is not None:
            state.passes_since_dedup[UnitKind.SUBTASK] = 0
            merger = self.merger
            self.queue.submit(
                "dedup:subtask",
                lambda: merger.sweep(user_id, UnitKind.SUBTASK),
                user_id=user_id,
                payload={"kind": UnitKind.SUBTASK.value},
            )
        else:
            state.passes_since_dedup[UnitKind.SUBTASK] = passes

    async def _signal_major_tasks(self, user_id: str, result: AggregationResult) -> None:
        """new_subtask after any creation; otherwise only updated subtasks at the update threshold"""
        threshold = self.settings.update_threshold
        updated = await self.db.subtasks.get_by_ids(result.updated_ids)
        at_threshold = [s.id for s in updated if s.update_count >= threshold]

        if result.created_ids:
            subtask_ids, reason = list(result.created_ids) + at_threshold, "new_subtask"
        elif at_threshold:
            subtask_ids, reason = at_threshold, "threshold_reached"
        else:
            return

        agent = self.major_task_agent
        self.queue.submit(
            f"major:{reason}",
            lambda: agent.handle_subtask_changes(user_id, subtask_ids, reason),
            user_id=user_id,
            payload={"subtask_ids": subtask_ids, "reason": reason},
        )
        result.triggered = True
        logger.debug(f"Signalled major task aggregation for {user_id}: {reason} {subtask_ids}")
