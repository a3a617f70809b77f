"""Tests for SubtaskAgent: initial grouping, routing bands and major task signals."""
import pytest

from helpers import group_by_topic, seed_cluster, unit_vector

from worklens.core.models import UnitKind


class RecordingMajorAgent:
    def __init__(self):
        self.calls = []

    async def handle_subtask_changes(self, user_id, subtask_ids, reason):
        self.calls.append((user_id, list(subtask_ids), reason))


@pytest.fixture
def recorder(running):
    recorder = RecordingMajorAgent()
    running.subtask_agent.major_task_agent = recorder
    return recorder


async def seed_subtask(db, oracle, name, vector, member_ids, update_count=0):
    """Subtask with a pinned embedding; the name must contain the pin marker."""
    subtask = await db.subtasks.create(
        user_id="alice", name=name, summary=f"{name} work", member_task_ids=member_ids
    )
    if update_count:
        subtask = await db.subtasks.update(subtask.id, update_count=update_count)
    await db.embeddings.upsert("alice", UnitKind.SUBTASK, subtask.id, vector, name)
    return subtask


class TestInitialGrouping:
    @pytest.mark.asyncio
    async def test_waits_for_four_tasks(self, running, db, oracle, recorder):
        clusters = [await seed_cluster(db, "alice", f"Task {i}") for i in range(3)]

        result = await running.subtask_agent.handle_new_task("alice", clusters[-1].id)

        assert result.action == "waiting"
        assert oracle.calls_for("subtask_grouping") == []
        assert await db.subtasks.get_for_user("alice") == []

    @pytest.mark.asyncio
    async def test_fourth_task_groups_all(self, running, db, oracle, recorder):
        c1, c2, c3, c4 = [await seed_cluster(db, "alice", f"Task {i}") for i in range(4)]
        oracle.reply(
            "subtask_grouping",
            {
                "subtasks": [
                    {"name": "Parser", "summary": "Parser work", "member_ids": [c1.id, c2.id]},
                    {"name": "Docs", "summary": "Docs work", "member_ids": [c3.id, c4.id]},
                ]
            },
        )

        result = await running.subtask_agent.handle_new_task("alice", c4.id)
        await running.drain()

        assert result.action == "classified"
        assert len(result.created_ids) == 2
        assert result.triggered is True
        subtasks = await db.subtasks.get_for_user("alice")
        assert [s.member_task_ids for s in subtasks] == [[c1.id, c2.id], [c3.id, c4.id]]
        assert recorder.calls == [("alice", result.created_ids, "new_subtask")]
        for subtask_id in result.created_ids:
            assert await db.embeddings.get("alice", UnitKind.SUBTASK, subtask_id) is not None

    @pytest.mark.asyncio
    async def test_related_tasks_share_a_subtask(self, running, db, oracle, recorder):
        titles = [
            "Auth API debugging",
            "Auth API testing",
            "Dashboard layout in Figma",
            "Dashboard asset export",
        ]
        clusters = [await seed_cluster(db, "alice", title) for title in titles]
        auth_ids = {clusters[0].id, clusters[1].id}
        dashboard_ids = {clusters[2].id, clusters[3].id}
        oracle.reply("subtask_grouping", group_by_topic)

        result = await running.subtask_agent.handle_new_task("alice", clusters[-1].id)
        await running.drain()

        assert result.action == "classified"
        subtasks = await db.subtasks.get_for_user("alice")
        assert len(subtasks) >= 2
        owner = {tid: s.id for s in subtasks for tid in s.member_task_ids}
        assert sorted(owner) == sorted(auth_ids | dashboard_ids)
        assert len({owner[tid] for tid in auth_ids}) == 1
        assert len({owner[tid] for tid in dashboard_ids}) == 1
        assert {owner[tid] for tid in auth_ids}.isdisjoint(owner[tid] for tid in dashboard_ids)

    @pytest.mark.asyncio
    async def test_task_ids_claimed_once(self, running, db, oracle, recorder):
        c1, c2, c3, c4 = [await seed_cluster(db, "alice", f"Task {i}") for i in range(4)]
        oracle.reply(
            "subtask_grouping",
            {
                "subtasks": [
                    {"name": "Parser", "summary": "s", "member_ids": [c1.id, 999]},
                    {"name": "Mixed", "summary": "s", "member_ids": [c1.id, c2.id, c3.id, c4.id]},
                    {"name": "Empty", "summary": "s", "member_ids": [c1.id]},
                ]
            },
        )

        await running.subtask_agent.handle_new_task("alice", c4.id)

        subtasks = await db.subtasks.get_for_user("alice")
        assert [(s.name, s.member_task_ids) for s in subtasks] == [
            ("Parser", [c1.id]),
            ("Mixed", [c2.id, c3.id, c4.id]),
        ]

    @pytest.mark.asyncio
    async def test_grouped_task_is_skipped(self, running, db, oracle, recorder):
        cluster = await seed_cluster(db, "alice", "Task")
        await db.subtasks.create(user_id="alice", name="Parser", summary="s", member_task_ids=[cluster.id])

        result = await running.subtask_agent.handle_new_task("alice", cluster.id)

        assert result.action == "skipped"

    @pytest.mark.asyncio
    async def test_unknown_task_is_skipped(self, running, recorder):
        result = await running.subtask_agent.handle_new_task("alice", 12345)
        assert result.action == "skipped"


class TestRouting:
    @pytest.mark.asyncio
    async def test_link_appends_without_oracle_text_call(self, running, db, oracle, recorder):
        oracle.pin("ALPHA", unit_vector(1.0))
        subtask = await seed_subtask(db, oracle, "ALPHA parser", unit_vector(1.0), [100])
        cluster = await seed_cluster(db, "alice", "ALPHA tokenizer")

        result = await running.subtask_agent.handle_new_task("alice", cluster.id)

        assert result.action == "linked"
        assert result.updated_ids == [subtask.id]
        stored = await db.subtasks.get_by_id(subtask.id)
        assert stored.member_task_ids == [100, cluster.id]
        assert stored.update_count == 1
        assert stored.name == "ALPHA parser"
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_mutate_rewrites_target(self, running, db, oracle, recorder):
        subtask = await seed_subtask(db, oracle, "Parser", unit_vector(1.0), [100])
        oracle.pin("BETA", unit_vector(1.0, 0.8))
        cluster = await seed_cluster(db, "alice", "BETA lexer")
        oracle.reply("unit_mutation", {"name": "Parser and lexer", "summary": "Front end work"})

        result = await running.subtask_agent.handle_new_task("alice", cluster.id)

        assert result.action == "mutated"
        stored = await db.subtasks.get_by_id(subtask.id)
        assert stored.name == "Parser and lexer"
        assert stored.summary == "Front end work"
        assert stored.member_task_ids == [100, cluster.id]
        assert stored.update_count == 1

    @pytest.mark.asyncio
    async def test_low_similarity_runs_grouping_pass(self, running, db, oracle, recorder):
        subtask = await seed_subtask(db, oracle, "Parser", unit_vector(1.0), [100])
        oracle.pin("GAMMA", unit_vector(1.0, 2.0))
        cluster = await seed_cluster(db, "alice", "GAMMA invoices")
        oracle.reply(
            "subtask_grouping",
            {"subtasks": [{"name": "Invoices", "summary": "Billing", "member_ids": [cluster.id]}]},
        )

        result = await running.subtask_agent.handle_new_task("alice", cluster.id)

        assert result.action == "classified"
        prompt = oracle.calls_for("subtask_grouping")[0][1]["content"]
        assert f"[id {subtask.id}] Parser" in prompt
        assert "GAMMA invoices" in prompt
        created = await db.subtasks.get_by_id(result.created_ids[0])
        assert created.member_task_ids == [cluster.id]

    @pytest.mark.asyncio
    async def test_grouping_pass_can_extend_existing(self, running, db, oracle, recorder):
        subtask = await seed_subtask(db, oracle, "Parser", unit_vector(1.0), [100])
        oracle.pin("GAMMA", unit_vector(0.0, 1.0))
        cluster = await seed_cluster(db, "alice", "GAMMA grammar")
        oracle.reply(
            "subtask_grouping",
            {
                "subtasks": [
                    {"id": subtask.id, "name": "Parser", "summary": "Parser work", "member_ids": [cluster.id]}
                ]
            },
        )

        result = await running.subtask_agent.handle_new_task("alice", cluster.id)

        assert result.updated_ids == [subtask.id]
        stored = await db.subtasks.get_by_id(subtask.id)
        assert stored.member_task_ids == [100, cluster.id]
        assert stored.update_count == 1


class TestMajorTaskSignal:
    @pytest.mark.asyncio
    async def test_tenth_update_signals_threshold(self, running, db, oracle, recorder):
        oracle.pin("ALPHA", unit_vector(1.0))
        subtask = await seed_subtask(db, oracle, "ALPHA parser", unit_vector(1.0), [100], update_count=9)
        cluster = await seed_cluster(db, "alice", "ALPHA tokenizer")

        result = await running.subtask_agent.handle_new_task("alice", cluster.id)
        await running.drain()

        assert result.triggered is True
        assert recorder.calls == [("alice", [subtask.id], "threshold_reached")]

    @pytest.mark.asyncio
    async def test_ninth_update_does_not_signal(self, running, db, oracle, recorder):
        oracle.pin("ALPHA", unit_vector(1.0))
        await seed_subtask(db, oracle, "ALPHA parser", unit_vector(1.0), [100], update_count=8)
        cluster = await seed_cluster(db, "alice", "ALPHA tokenizer")

        result = await running.subtask_agent.handle_new_task("alice", cluster.id)
        await running.drain()

        assert result.triggered is False
        assert recorder.calls == []


class TestDedupCadence:
    @pytest.mark.asyncio
    async def test_every_fifth_pass_schedules_sweep(self, running, db, oracle, recorder):
        oracle.pin("ALPHA", unit_vector(1.0))
        await seed_subtask(db, oracle, "ALPHA parser", unit_vector(1.0), [100])

        for i in range(4):
            cluster = await seed_cluster(db, "alice", f"ALPHA step {i}")
            await running.subtask_agent.handle_new_task("alice", cluster.id)
        await running.drain()

        assert running.merger.stats["sweeps"] == 0
        assert running.store.get("alice").passes_since_dedup[UnitKind.SUBTASK] == 4

        cluster = await seed_cluster(db, "alice", "ALPHA step 4")
        await running.subtask_agent.handle_new_task("alice", cluster.id)
        await running.drain()

        assert running.merger.stats["sweeps"] == 1
        assert running.store.get("alice").passes_since_dedup[UnitKind.SUBTASK] == 0
