"""Tests for the SQLite repositories, vector index and migrations."""
import sqlite3
from contextlib import closing

import numpy as np
import pytest

from helpers import seed_cluster, unit_vector

from worklens.core.db import DatabaseManager
from worklens.core.db.embeddings import cosine_similarity_matrix
from worklens.core.models import UnitKind
from worklens.migrations import MigrationRunner


class TestMigrations:
    def test_fresh_database_is_fully_migrated(self, db):
        status = MigrationRunner(db.db_path).get_migration_status()
        assert [m["version"] for m in status["applied"]] == ["0001", "0002"]
        assert status["pending_count"] == 0

    def test_rerun_is_noop(self, db):
        assert MigrationRunner(db.db_path).run_migrations() == 0

    def test_rollback_and_reapply(self, db):
        runner = MigrationRunner(db.db_path)
        assert runner.rollback_to("0001") == 1

        with closing(sqlite3.connect(db.db_path)) as conn:
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert "dead_letters" not in tables
        assert "subtasks" in tables

        assert runner.run_migrations() == 1

    def test_table_counts(self, db):
        counts = db.get_table_counts()
        assert counts["task_clusters"] == 0
        assert counts["dead_letters"] == 0


class TestTaskClusters:
    @pytest.mark.asyncio
    async def test_ordered_oldest_first_per_user(self, db):
        first = await seed_cluster(db, "alice", "First")
        await seed_cluster(db, "bob", "Other")
        second = await seed_cluster(db, "alice", "Second")

        clusters = await db.task_clusters.get_for_user("alice")

        assert [c.id for c in clusters] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_get_by_ids_preserves_order(self, db):
        a = await seed_cluster(db, "alice", "A")
        b = await seed_cluster(db, "alice", "B")

        clusters = await db.task_clusters.get_by_ids([b.id, 999, a.id])

        assert [c.id for c in clusters] == [b.id, a.id]

    @pytest.mark.asyncio
    async def test_goal_link(self, db):
        goal = await db.user_goals.create("alice", "Ship", 60)
        linked = await seed_cluster(db, "alice", "Linked", linked_goal_id=goal.id)
        await seed_cluster(db, "alice", "Unlinked")

        clusters = await db.task_clusters.get_linked_to_goal(goal.id)

        assert [c.id for c in clusters] == [linked.id]


class TestSubtasks:
    @pytest.mark.asyncio
    async def test_update_and_grouped_ids(self, db):
        subtask = await db.subtasks.create(user_id="alice", name="Parser", summary="s", member_task_ids=[1, 2])

        updated = await db.subtasks.update(subtask.id, member_task_ids=[1, 2, 3], update_count=4)

        assert updated.member_task_ids == [1, 2, 3]
        assert updated.update_count == 4
        assert await db.subtasks.get_grouped_task_ids("alice") == {1, 2, 3}
        assert await db.subtasks.get_grouped_task_ids("bob") == set()

    @pytest.mark.asyncio
    async def test_reset_and_delete(self, db):
        subtask = await db.subtasks.create(user_id="alice", name="Parser", summary="s", member_task_ids=[1])
        await db.subtasks.update(subtask.id, update_count=10)

        await db.subtasks.reset_update_count(subtask.id)
        assert (await db.subtasks.get_by_id(subtask.id)).update_count == 0

        await db.subtasks.delete(subtask.id)
        assert await db.subtasks.get_by_id(subtask.id) is None


class TestMajorTasks:
    @pytest.mark.asyncio
    async def test_replace_member_subtasks_dedupes(self, db):
        major = await db.major_tasks.create(
            user_id="alice", title="Compiler", summary_bullets=["x"], member_subtask_ids=[1, 7, 2]
        )
        untouched = await db.major_tasks.create(
            user_id="alice", title="Docs", summary_bullets=["y"], member_subtask_ids=[9]
        )

        changed = await db.major_tasks.replace_member_subtasks("alice", [1, 2], 30, major.id)

        assert changed == 1
        assert (await db.major_tasks.get_by_id(major.id)).member_subtask_ids == [30, 7]
        assert (await db.major_tasks.get_by_id(untouched.id)).member_subtask_ids == [9]

    @pytest.mark.asyncio
    async def test_replace_member_subtasks_keeps_one_parent(self, db):
        first = await db.major_tasks.create(
            user_id="alice", title="Compiler", summary_bullets=["x"], member_subtask_ids=[1, 7]
        )
        second = await db.major_tasks.create(
            user_id="alice", title="Docs", summary_bullets=["y"], member_subtask_ids=[9, 2]
        )

        changed = await db.major_tasks.replace_member_subtasks("alice", [1, 2], 30, first.id)

        assert changed == 2
        assert (await db.major_tasks.get_by_id(first.id)).member_subtask_ids == [30, 7]
        assert (await db.major_tasks.get_by_id(second.id)).member_subtask_ids == [9]

    @pytest.mark.asyncio
    async def test_replace_member_subtasks_without_parent_only_drops(self, db):
        major = await db.major_tasks.create(
            user_id="alice", title="Compiler", summary_bullets=["x"], member_subtask_ids=[1, 7]
        )

        await db.major_tasks.replace_member_subtasks("alice", [1], 30, None)

        assert (await db.major_tasks.get_by_id(major.id)).member_subtask_ids == [7]

    @pytest.mark.asyncio
    async def test_archived_excluded_from_live_queries(self, db):
        major = await db.major_tasks.create(
            user_id="alice", title="Compiler", summary_bullets=["x"], member_subtask_ids=[1]
        )
        await db.major_tasks.archive(major.id, "[MERGED] ")

        assert await db.major_tasks.get_for_user("alice") == []
        assert len(await db.major_tasks.get_for_user("alice", include_archived=True)) == 1
        assert await db.major_tasks.get_assigned_subtask_ids("alice") == set()
        assert await db.major_tasks.find_parent("alice", 1) is None


class TestEmbeddings:
    def test_zero_vector_scores_zero(self):
        scores = cosine_similarity_matrix(np.array([1.0, 0.0]), np.array([[0.0, 0.0], [2.0, 0.0]]))
        assert scores.tolist() == pytest.approx([0.0, 1.0])

    @pytest.mark.asyncio
    async def test_nearest_neighbor_ranks_and_filters(self, db):
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 1, unit_vector(1.0), "a")
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 2, unit_vector(1.0, 1.0), "b")
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 3, unit_vector(0.0, 1.0), "c")

        matches = await db.embeddings.nearest_neighbor(
            "alice", UnitKind.SUBTASK, unit_vector(1.0), k=3, min_similarity=0.5
        )

        assert [m["source_id"] for m in matches] == [1, 2]
        assert matches[0]["similarity"] == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, db):
        await db.embeddings.upsert("alice", UnitKind.TASK, 1, unit_vector(1.0), "old", {"v": 1})
        await db.embeddings.upsert("alice", UnitKind.TASK, 1, unit_vector(0.0, 1.0), "new", {"v": 2})

        record = await db.embeddings.get("alice", UnitKind.TASK, 1)

        assert record.content == "new"
        assert record.metadata == {"v": 2}

    @pytest.mark.asyncio
    async def test_dimension_mismatch_returns_nothing(self, db):
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 1, [1.0, 0.0], "a")

        assert await db.embeddings.nearest_neighbor("alice", UnitKind.SUBTASK, [1.0, 0.0, 0.0]) == []

    @pytest.mark.asyncio
    async def test_mixed_dimensions_are_skipped(self, db):
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 1, [1.0, 0.0], "old model")
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 2, [1.0, 0.0, 0.0], "a")
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 3, [0.0, 1.0, 0.0], "b")

        matches = await db.embeddings.nearest_neighbor("alice", UnitKind.SUBTASK, [1.0, 0.0, 0.0], k=3)

        assert [m["source_id"] for m in matches] == [2, 3]
        assert matches[0]["similarity"] == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_delete(self, db):
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 1, unit_vector(1.0), "a")
        await db.embeddings.delete("alice", UnitKind.SUBTASK, 1)

        assert await db.embeddings.get("alice", UnitKind.SUBTASK, 1) is None


class TestDatabaseManager:
    def test_creates_parent_directory(self, tmp_path):
        manager = DatabaseManager(tmp_path / "deep" / "dir" / "worklens.db")
        assert manager.db_path.exists()
