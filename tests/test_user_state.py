"""Tests for the per-user state store and its locks."""
import asyncio

import pytest

from worklens.core.models import UnitKind
from worklens.core.user_state import UserStateStore


class TestUserStateStore:
    """State is created lazily and kept per user."""

    def test_get_creates_state_once(self):
        store = UserStateStore()
        assert store.peek("alice") is None

        state = store.get("alice")
        assert state.user_id == "alice"
        assert state.events == []
        assert state.passes_since_dedup == {UnitKind.SUBTASK: 0, UnitKind.MAJOR_TASK: 0}
        assert store.get("alice") is state
        assert store.peek("alice") is state

    def test_users_are_independent(self):
        store = UserStateStore()
        store.get("alice").current_goal_id = 7
        assert store.get("bob").current_goal_id is None
        assert sorted(store.user_ids()) == ["alice", "bob"]

    def test_discard(self):
        store = UserStateStore()
        store.get("alice")
        assert store.discard("alice") is True
        assert store.discard("alice") is False
        assert store.peek("alice") is None


class TestUserLocks:
    """One asyncio.Lock per user serializes access to that user's state."""

    @pytest.mark.asyncio
    async def test_lock_yields_state(self):
        store = UserStateStore()
        async with store.lock("alice") as state:
            assert store.is_locked("alice")
            state.current_goal_id = 3
        assert not store.is_locked("alice")
        assert store.get("alice").current_goal_id == 3

    @pytest.mark.asyncio
    async def test_same_user_is_serialized(self):
        store = UserStateStore()
        order = []

        async def worker(name):
            async with store.lock("alice"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    @pytest.mark.asyncio
    async def test_different_users_do_not_block(self):
        store = UserStateStore()
        async with store.lock("alice"):
            assert not store.is_locked("bob")
            async with store.lock("bob") as state:
                assert state.user_id == "bob"
