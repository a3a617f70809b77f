"""
Per-user state store

Holds every user's event buffer, current goal and aggregation counters in one
table keyed by user id. Each user has one asyncio.Lock; all code that reads or
mutates a user's pipeline state runs inside `async with store.lock(user_id)`.
Locked sections never call another locked entry point; cascades go through
the background task queue instead.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from worklens.core.logger import get_logger
from worklens.core.models import RawEvent, UnitKind

logger = get_logger(__name__)


@dataclass
class UserState:
    """Mutable pipeline state for one user"""

    user_id: str
    events: List[RawEvent] = field(default_factory=list)
    last_classified: Optional[str] = None
    # Goal the user is currently tracking time against, if any
    current_goal_id: Optional[int] = None
    # Stalled batch bookkeeping
    failed_flush_attempts: int = 0
    next_retry_at: Optional[datetime] = None
    # Completed classification passes since the last dedup sweep, per level
    passes_since_dedup: Dict[UnitKind, int] = field(
        default_factory=lambda: {UnitKind.SUBTASK: 0, UnitKind.MAJOR_TASK: 0}
    )


class UserStateStore:
    """Table of UserState keyed by user id, with one lock per user"""

    def __init__(self):
        self._states: Dict[str, UserState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, user_id: str) -> UserState:
        """Get state for a user, creating it on first access"""
        state = self._states.get(user_id)
        if state is None:
            state = UserState(user_id=user_id)
            self._states[user_id] = state
            logger.debug(f"Created pipeline state for user {user_id}")
        return state

    def peek(self, user_id: str) -> Optional[UserState]:
        """Get state without creating it"""
        return self._states.get(user_id)

    def discard(self, user_id: str) -> bool:
        """Drop a user's state; the lock is kept so waiters stay valid"""
        return self._states.pop(user_id, None) is not None

    def user_ids(self) -> List[str]:
        return list(self._states.keys())

    def _get_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def is_locked(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def lock(self, user_id: str) -> AsyncIterator[UserState]:
        """Serialize access to one user's state"""
        async with self._get_lock(user_id):
            yield self.get(user_id)
