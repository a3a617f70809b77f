"""
Background task queue

Fire-and-forget work (embedding regeneration, cascading reclassification,
dedup sweeps) is submitted here instead of being awaited by the caller.
Delivery is at-least-once: a failing job is retried with exponential backoff
up to max_attempts, then written to the dead-letter log.
"""

import asyncio
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from worklens.core.logger import get_logger
from worklens.core.protocols import DeadLettersRepositoryProtocol

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


@dataclass
class Job:
    """One unit of background work; factory builds a fresh coroutine per attempt"""

    name: str
    factory: JobFactory
    user_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 0


class BackgroundTaskQueue:
    """asyncio worker pool with retry and dead-letter handling"""

    def __init__(
        self,
        workers: int = 4,
        max_attempts: int = 3,
        retry_base_seconds: float = 1.0,
        dead_letters: Optional[DeadLettersRepositoryProtocol] = None,
    ):
        """
        Initialize queue

        Args:
            workers: Number of concurrent worker tasks
            max_attempts: Attempts per job before dead-lettering
            retry_base_seconds: Backoff base; attempt n waits base * 2**(n-1)
            dead_letters: Repository receiving jobs that exhausted their attempts
        """
        self.worker_count = workers
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self.dead_letters = dead_letters

        self._queue: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self.is_running = False

        self.stats: Dict[str, Any] = {
            "submitted": 0,
            "succeeded": 0,
            "retried": 0,
            "dead_lettered": 0,
            "last_failure": None,
        }

    async def start(self) -> None:
        if self.is_running:
            logger.warning("BackgroundTaskQueue is already running")
            return

        self.is_running = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"worklens-queue-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"BackgroundTaskQueue started ({self.worker_count} workers)")

    async def stop(self, drain: bool = True) -> None:
        if not self.is_running:
            return

        if drain:
            await self.drain()

        self.is_running = False
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = []
        logger.info("BackgroundTaskQueue stopped")

    def submit(
        self,
        name: str,
        factory: JobFactory,
        user_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Enqueue a job without waiting for it"""
        job = Job(name=name, factory=factory, user_id=user_id, payload=payload or {})
        self._queue.put_nowait(job)
        self.stats["submitted"] += 1
        logger.debug(f"Queued background job {name} (user={user_id}, pending={self._queue.qsize()})")

    async def drain(self) -> None:
        """Wait until every submitted job (including retries) has finished"""
        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run(job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # _run handles job failures; this guards the worker itself
                logger.error(f"Queue worker {index} error on {job.name}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def _run(self, job: Job) -> None:
        job.attempts += 1
        try:
            await job.factory()
            self.stats["succeeded"] += 1
            logger.debug(f"Background job {job.name} succeeded (attempt {job.attempts})")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats["last_failure"] = f"{job.name}: {e}"

            if job.attempts < self.max_attempts:
                delay = self.retry_base_seconds * (2 ** (job.attempts - 1))
                logger.warning(
                    f"Background job {job.name} failed (attempt {job.attempts}/{self.max_attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                self.stats["retried"] += 1
                await asyncio.sleep(delay)
                # Re-enqueue before this attempt is marked done so drain() keeps waiting
                self._queue.put_nowait(job)
                return

            logger.error(
                f"Background job {job.name} exhausted {job.attempts} attempts, dead-lettering: {e}",
                exc_info=True,
            )
            await self._dead_letter(job, e)

    async def _dead_letter(self, job: Job, error: Exception) -> None:
        self.stats["dead_lettered"] += 1
        if self.dead_letters is None:
            return

        try:
            await self.dead_letters.add(
                job_name=job.name,
                error="".join(traceback.format_exception_only(type(error), error)).strip(),
                attempts=job.attempts,
                user_id=job.user_id,
                payload={**job.payload, "failed_at": datetime.now().isoformat()},
            )
        except Exception as e:
            logger.error(f"Failed to record dead letter for {job.name}: {e}", exc_info=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "workers": len(self._workers),
            "pending": self.pending,
            **self.stats,
        }
