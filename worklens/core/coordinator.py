"""
Pipeline coordinator
Wires the classification pipeline together and owns its lifecycle:
event intake, the background task queue and the periodic user sweep
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from worklens.core.logger import get_logger
from worklens.core.models import RawEvent, UnitKind
from worklens.core.protocols import DatabaseManagerProtocol, OracleProtocol
from worklens.core.settings import PipelineSettings
from worklens.core.task_queue import BackgroundTaskQueue
from worklens.core.user_state import UserStateStore
from worklens.llm.prompt_manager import PromptManager
from worklens.models.responses import BufferResult, BufferStatus, CoordinatorStats, MergeReport

logger = get_logger(__name__)

# Global coordinator instance
_coordinator: Optional["PipelineCoordinator"] = None


class PipelineCoordinator:
    """Pipeline coordinator"""

    def __init__(
        self,
        settings: PipelineSettings,
        db: DatabaseManagerProtocol,
        oracle: OracleProtocol,
        prompt_manager: Optional[PromptManager] = None,
    ):
        """
        Initialize coordinator

        Args:
            settings: Pipeline thresholds and worker sizing
            db: Repositories (task clusters, subtasks, major tasks, goals, embeddings, dead letters)
            oracle: Text generation / embedding oracle
            prompt_manager: Prompt templates; the packaged prompts.toml by default
        """
        self.settings = settings
        self.db = db
        self.oracle = oracle
        self.prompt_manager = prompt_manager or PromptManager()

        self.store = UserStateStore()
        self.queue = BackgroundTaskQueue(
            workers=settings.queue_workers,
            max_attempts=settings.queue_max_attempts,
            retry_base_seconds=settings.queue_retry_base_seconds,
            dead_letters=db.dead_letters,
        )

        self.active_users: List[str] = []

        self.is_running = False
        self.sweep_task: Optional[asyncio.Task] = None
        self.stats: Dict[str, Any] = {
            "start_time": None,
            "events_received": 0,
            "sweep_cycles": 0,
            "last_sweep_time": None,
            "stalled_retries": 0,
        }

        self._init_managers()

    def _init_managers(self) -> None:
        """Build the components and wire their cascades"""
        # Lazy imports keep core importable without the agent layer
        from worklens.agents.event_buffer import EventBuffer
        from worklens.agents.major_task_agent import MajorTaskAgent
        from worklens.agents.similarity_router import SimilarityRouter
        from worklens.agents.subtask_agent import SubtaskAgent
        from worklens.agents.task_classifier import TaskClassifier
        from worklens.services.deduplication_merger import DeduplicationMerger
        from worklens.services.embedding_generator import EmbeddingGenerator

        self.embeddings = EmbeddingGenerator(self.db, self.oracle, self.queue)
        self.router = SimilarityRouter(self.oracle, self.db.embeddings, self.settings)
        self.merger = DeduplicationMerger(
            self.db, self.oracle, self.prompt_manager, self.embeddings, self.store, self.settings
        )
        self.major_task_agent = MajorTaskAgent(
            self.db,
            self.oracle,
            self.prompt_manager,
            self.router,
            self.embeddings,
            self.store,
            self.settings,
            queue=self.queue,
            merger=self.merger,
        )
        self.merger.major_task_agent = self.major_task_agent
        self.subtask_agent = SubtaskAgent(
            self.db,
            self.oracle,
            self.prompt_manager,
            self.router,
            self.embeddings,
            self.store,
            self.settings,
            queue=self.queue,
            major_task_agent=self.major_task_agent,
            merger=self.merger,
        )
        self.classifier = TaskClassifier(
            self.db,
            self.oracle,
            self.prompt_manager,
            self.embeddings,
            queue=self.queue,
            subtask_agent=self.subtask_agent,
        )
        self.event_buffer = EventBuffer(
            self.store, self.classifier, self.settings, dead_letters=self.db.dead_letters
        )
        logger.debug("Pipeline components initialized")

    async def start(self) -> None:
        """Start the background queue and the periodic sweep"""
        if self.is_running:
            logger.warning("Coordinator is already running")
            return

        await self.queue.start()
        self.is_running = True
        self.sweep_task = asyncio.create_task(self._sweep_loop())
        self.stats["start_time"] = datetime.now()
        logger.info(
            f"Pipeline coordinator started, sweep interval: {self.settings.sweep_interval} seconds"
        )

    async def stop(self, *, drain: bool = True) -> None:
        """
        Stop the sweep and the queue

        Args:
            drain: Wait for queued background work before stopping the workers
        """
        if not self.is_running:
            return

        logger.info("Stopping pipeline coordinator...")
        self.is_running = False
        if self.sweep_task and not self.sweep_task.done():
            self.sweep_task.cancel()
            try:
                await self.sweep_task
            except asyncio.CancelledError:
                pass
        self.sweep_task = None

        await self.queue.stop(drain=drain)
        logger.info("Pipeline coordinator stopped")

    # ==================== Event intake ====================

    async def add_event(self, event: RawEvent) -> BufferResult:
        """Buffer one raw event; registers the user for the periodic sweep"""
        self.add_user(event.user_id)
        self.stats["events_received"] += 1
        return await self.event_buffer.add_event(event)

    def add_user(self, user_id: str) -> None:
        if user_id not in self.active_users:
            self.active_users.append(user_id)
            logger.debug(f"Added active user {user_id}")

    def remove_user(self, user_id: str) -> None:
        if user_id in self.active_users:
            self.active_users.remove(user_id)
            logger.debug(f"Removed active user {user_id}")

    async def set_current_goal(self, user_id: str, goal_id: Optional[int]) -> None:
        """Goal that subsequently classified clusters are linked to (None to stop tracking)"""
        async with self.store.lock(user_id) as state:
            state.current_goal_id = goal_id
        logger.debug(f"Current goal for {user_id}: {goal_id}")

    def get_buffer_status(self, user_id: str) -> BufferStatus:
        return self.event_buffer.get_buffer_status(user_id)

    async def clear_buffer(self, user_id: str) -> int:
        return await self.event_buffer.clear_buffer(user_id)

    # ==================== Maintenance ====================

    async def run_deduplication(
        self, user_id: str, kind: Optional[UnitKind] = None
    ) -> List[MergeReport]:
        """Run a deduplication sweep now, for one level or both (subtasks first)"""
        kinds = [UnitKind(kind)] if kind else [UnitKind.SUBTASK, UnitKind.MAJOR_TASK]
        return [await self.merger.sweep(user_id, k) for k in kinds]

    async def drain(self) -> None:
        """Wait until all queued background work has finished"""
        await self.queue.drain()

    async def sweep_once(self) -> int:
        """
        One sweep over active users, in batches with a pause between batches

        Returns:
            Number of stalled buffers that were retried
        """
        users = list(self.active_users)
        batch_size = self.settings.sweep_batch_size
        retried = 0

        for start in range(0, len(users), batch_size):
            batch = users[start : start + batch_size]
            results = await asyncio.gather(
                *(self.event_buffer.retry_stalled(user_id) for user_id in batch),
                return_exceptions=True,
            )
            for user_id, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.error(f"Sweep failed for {user_id}: {result}", exc_info=result)
                elif result is not None:
                    retried += 1

            if start + batch_size < len(users) and self.settings.sweep_batch_delay > 0:
                await asyncio.sleep(self.settings.sweep_batch_delay)

        self.stats["sweep_cycles"] += 1
        self.stats["stalled_retries"] += retried
        self.stats["last_sweep_time"] = datetime.now()
        return retried

    async def _sweep_loop(self) -> None:
        """Scheduled sweep loop"""
        try:
            while self.is_running:
                await asyncio.sleep(self.settings.sweep_interval)
                if not self.is_running:
                    break
                retried = await self.sweep_once()
                logger.debug(f"Sweep over {len(self.active_users)} user(s), {retried} stalled buffer(s) retried")
        except asyncio.CancelledError:
            logger.debug("Sweep loop cancelled")
        except Exception as e:
            logger.error(f"Sweep loop failed: {e}", exc_info=True)

    def get_stats(self) -> CoordinatorStats:
        """Get coordinator statistics"""
        return CoordinatorStats(
            is_running=self.is_running,
            active_users=list(self.active_users),
            stats={
                "coordinator": {
                    **self.stats,
                    "start_time": self.stats["start_time"].isoformat()
                    if self.stats["start_time"]
                    else None,
                    "last_sweep_time": self.stats["last_sweep_time"].isoformat()
                    if self.stats["last_sweep_time"]
                    else None,
                },
                "task_classifier": dict(self.classifier.stats),
                "subtask_agent": dict(self.subtask_agent.stats),
                "major_task_agent": dict(self.major_task_agent.stats),
                "deduplication": dict(self.merger.stats),
            },
            queue=self.queue.get_stats(),
        )


def get_coordinator() -> PipelineCoordinator:
    """Get global coordinator singleton, built from the global config"""
    global _coordinator
    if _coordinator is None:
        from worklens.config.loader import get_config
        from worklens.core.db import get_db
        from worklens.core.logger import is_configured, setup_logging
        from worklens.core.settings import get_settings
        from worklens.llm.manager import get_llm_manager

        if not is_configured():
            setup_logging(get_config().get("logging", {}) or {})

        _coordinator = PipelineCoordinator(get_settings(), get_db(), get_llm_manager())
    return _coordinator


def reset_coordinator() -> None:
    global _coordinator
    _coordinator = None
