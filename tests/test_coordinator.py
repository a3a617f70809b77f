"""End-to-end tests through PipelineCoordinator."""
import pytest

from helpers import cluster_reply, make_events

from worklens.core.models import UnitKind


class TestPipeline:
    @pytest.mark.asyncio
    async def test_eighty_events_build_the_hierarchy(self, coordinator, db, oracle):
        for i in range(4):
            oracle.reply("task_classification", cluster_reply(f"Parser step {i}"))

        for event in make_events("alice", 80):
            await coordinator.add_event(event)

        clusters = await db.task_clusters.get_for_user("alice")
        assert len(clusters) == 4
        cluster_ids = [c.id for c in clusters]

        # Fresh database: the first subtask gets id 1
        oracle.reply(
            "subtask_grouping",
            {"subtasks": [{"name": "Parser", "summary": "Parser work", "member_ids": cluster_ids}]},
        )
        oracle.reply(
            "major_task_grouping",
            {"major_tasks": [{"title": "Other: Compiler", "summary_bullets": ["Parser"], "subtask_ids": [1]}]},
        )

        await coordinator.start()
        await coordinator.drain()
        await coordinator.stop()

        subtasks = await db.subtasks.get_for_user("alice")
        assert [(s.id, s.member_task_ids) for s in subtasks] == [(1, cluster_ids)]
        majors = await db.major_tasks.get_for_user("alice")
        assert [(m.title, m.member_subtask_ids) for m in majors] == [("Other: Compiler", [1])]
        for cluster_id in cluster_ids:
            assert await db.embeddings.get("alice", UnitKind.TASK, cluster_id) is not None
        assert await db.embeddings.get("alice", UnitKind.MAJOR_TASK, majors[0].id) is not None
        assert await db.dead_letters.get_recent() == []

        stats = coordinator.get_stats()
        assert stats.active_users == ["alice"]
        assert stats.stats["task_classifier"]["batches_classified"] == 4
        assert stats.stats["coordinator"]["events_received"] == 80

    @pytest.mark.asyncio
    async def test_current_goal_links_new_clusters(self, coordinator, db, oracle):
        goal = await db.user_goals.create("alice", "Ship parser", 60)
        await coordinator.set_current_goal("alice", goal.id)
        oracle.reply("task_classification", cluster_reply())

        for event in make_events("alice", 20):
            await coordinator.add_event(event)

        clusters = await db.task_clusters.get_for_user("alice")
        assert clusters[0].linked_goal_id == goal.id


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_retries_stalled_buffer(self, coordinator, db, oracle):
        oracle.fail("task_classification")
        oracle.reply("task_classification", cluster_reply())

        for event in make_events("alice", 20):
            result = await coordinator.add_event(event)
        assert result.flushed is False

        retried = await coordinator.sweep_once()

        assert retried == 1
        assert len(await db.task_clusters.get_for_user("alice")) == 1
        assert coordinator.get_buffer_status("alice").size == 0

    @pytest.mark.asyncio
    async def test_sweep_visits_every_active_user(self, coordinator, oracle):
        coordinator.add_user("alice")
        coordinator.add_user("bob")
        coordinator.add_user("carol")

        assert await coordinator.sweep_once() == 0
        assert coordinator.stats["sweep_cycles"] == 1

        coordinator.remove_user("bob")
        assert coordinator.active_users == ["alice", "carol"]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop(self, coordinator):
        await coordinator.start()
        assert coordinator.is_running is True
        assert coordinator.get_stats().queue["is_running"] is True

        await coordinator.stop()
        assert coordinator.is_running is False
        assert coordinator.sweep_task is None

    @pytest.mark.asyncio
    async def test_clear_buffer(self, coordinator):
        for event in make_events("alice", 6):
            await coordinator.add_event(event)

        assert await coordinator.clear_buffer("alice") == 6

    @pytest.mark.asyncio
    async def test_run_deduplication_both_levels(self, coordinator):
        reports = await coordinator.run_deduplication("alice")
        assert [r.kind for r in reports] == ["subtask", "major_task"]
        assert all(r.candidates == 0 for r in reports)
