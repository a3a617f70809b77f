"""
EventBuffer - per-user accumulation of raw events

Events are appended to the user's buffer in the state store. Whenever the
buffer length is a multiple of the batch size, the buffer is consumed in whole
batches, oldest first. A failed batch stays at the head of the buffer
together with everything behind it; the coordinator's sweep retries it with
exponential backoff and, after max_flush_attempts consecutive failures, the
oldest batch is moved to the dead-letter log.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from worklens.agents.task_classifier import TaskClassifier
from worklens.core.logger import get_logger
from worklens.core.models import RawEvent, now_iso
from worklens.core.protocols import DeadLettersRepositoryProtocol
from worklens.core.settings import PipelineSettings
from worklens.core.user_state import UserState, UserStateStore
from worklens.models.responses import BufferResult, BufferStatus

logger = get_logger(__name__)


class EventBuffer:
    """Buffers raw events and flushes full batches to the TaskClassifier"""

    def __init__(
        self,
        store: UserStateStore,
        classifier: TaskClassifier,
        settings: PipelineSettings,
        dead_letters: Optional[DeadLettersRepositoryProtocol] = None,
    ):
        self.store = store
        self.classifier = classifier
        self.batch_size = settings.batch_size
        self.max_flush_attempts = settings.max_flush_attempts
        self.retry_base_seconds = settings.flush_retry_base_seconds
        self.dead_letters = dead_letters

    async def add_event(self, event: RawEvent) -> BufferResult:
        """
        Append one event; flush synchronously when a batch boundary is reached

        Returns:
            BufferResult; flushed is True only if every full batch was classified
        """
        async with self.store.lock(event.user_id) as state:
            state.events.append(event)
            size = len(state.events)

            if size % self.batch_size != 0:
                return BufferResult(buffered=True, flushed=False, buffer_size=size)

            cluster_ids, error = await self._flush(state)
            return BufferResult(
                buffered=True,
                flushed=error is None,
                buffer_size=len(state.events),
                task_cluster_ids=cluster_ids,
                error=error,
            )

    async def retry_stalled(self, user_id: str) -> Optional[BufferResult]:
        """
        Retry a retained full batch once its backoff has elapsed

        Returns:
            BufferResult if a flush was attempted, else None
        """
        state = self.store.peek(user_id)
        if state is None or len(state.events) < self.batch_size:
            return None

        async with self.store.lock(user_id) as state:
            if len(state.events) < self.batch_size:
                return None
            if state.next_retry_at is not None and datetime.now() < state.next_retry_at:
                return None

            logger.info(
                f"Retrying stalled buffer for {user_id} "
                f"({len(state.events)} events, attempt {state.failed_flush_attempts + 1})"
            )
            cluster_ids, error = await self._flush(state)
            return BufferResult(
                buffered=False,
                flushed=error is None,
                buffer_size=len(state.events),
                task_cluster_ids=cluster_ids,
                error=error,
            )

    async def _flush(self, state: UserState) -> Tuple[List[int], Optional[str]]:
        """Consume whole batches until the buffer holds less than one batch or a batch fails"""
        cluster_ids: List[int] = []

        while len(state.events) >= self.batch_size:
            batch = state.events[: self.batch_size]
            try:
                cluster = await self.classifier.classify(
                    state.user_id, batch, linked_goal_id=state.current_goal_id
                )
            except Exception as e:
                await self._record_failure(state, e)
                return cluster_ids, str(e)

            del state.events[: self.batch_size]
            state.last_classified = now_iso()
            state.failed_flush_attempts = 0
            state.next_retry_at = None
            cluster_ids.append(cluster.id)

        return cluster_ids, None

    async def _record_failure(self, state: UserState, error: Exception) -> None:
        state.failed_flush_attempts += 1
        attempts = state.failed_flush_attempts

        if attempts >= self.max_flush_attempts:
            await self._dead_letter_oldest_batch(state, error)
            return

        delay = self.retry_base_seconds * (2 ** (attempts - 1))
        state.next_retry_at = datetime.now() + timedelta(seconds=delay)
        logger.warning(
            f"Batch classification failed for {state.user_id} "
            f"(attempt {attempts}/{self.max_flush_attempts}), buffer kept "
            f"({len(state.events)} events), retry in {delay:.0f}s: {error}"
        )

    async def _dead_letter_oldest_batch(self, state: UserState, error: Exception) -> None:
        batch = state.events[: self.batch_size]
        attempts = state.failed_flush_attempts

        if self.dead_letters is not None:
            await self.dead_letters.add(
                job_name="event_batch",
                error=str(error),
                attempts=attempts,
                user_id=state.user_id,
                payload={"events": [e.model_dump() for e in batch]},
            )

        del state.events[: self.batch_size]
        state.failed_flush_attempts = 0
        state.next_retry_at = None
        logger.error(
            f"Dropped batch of {len(batch)} events for {state.user_id} to dead-letter log "
            f"after {attempts} failed attempts: {error}"
        )

    def get_buffer_status(self, user_id: str) -> BufferStatus:
        state = self.store.peek(user_id)
        if state is None:
            return BufferStatus(
                exists=False, size=0, max_size=self.batch_size, percentage=0.0
            )

        size = len(state.events)
        return BufferStatus(
            exists=True,
            size=size,
            max_size=self.batch_size,
            percentage=round(size / self.batch_size * 100, 1),
            last_classified=state.last_classified,
            failed_attempts=state.failed_flush_attempts,
            next_retry_at=state.next_retry_at.isoformat() if state.next_retry_at else None,
        )

    async def clear_buffer(self, user_id: str) -> int:
        """Discard a user's buffered events; returns how many were dropped"""
        if self.store.peek(user_id) is None:
            return 0

        async with self.store.lock(user_id) as state:
            dropped = len(state.events)
            state.events.clear()
            state.failed_flush_attempts = 0
            state.next_retry_at = None

        logger.info(f"Cleared {dropped} buffered events for {user_id}")
        return dropped
