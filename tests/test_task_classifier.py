"""Tests for TaskClassifier: strict decoding, persistence and follow-up jobs."""
import json

import pytest

from helpers import cluster_reply, make_events

from worklens.agents.task_classifier import TaskClassifier, estimate_duration_minutes
from worklens.core.errors import MalformedOracleOutput, TransientOracleFailure
from worklens.core.task_queue import BackgroundTaskQueue
from worklens.models.oracle_outputs import ClusterPayload
from worklens.services.embedding_generator import EmbeddingGenerator


def make_classifier(db, oracle, prompt_manager, queue=None, subtask_agent=None):
    embeddings = EmbeddingGenerator(db, oracle, queue)
    return TaskClassifier(
        db, oracle, prompt_manager, embeddings, queue=queue, subtask_agent=subtask_agent
    )


class TestClassify:
    @pytest.mark.asyncio
    async def test_persists_one_cluster_per_batch(self, db, oracle, prompt_manager):
        classifier = make_classifier(db, oracle, prompt_manager)
        batch = make_events("alice", 10, app="VS Code") + make_events(
            "alice", 10, app="Terminal", title="pytest"
        )
        oracle.reply("task_classification", cluster_reply("Write parser", duration_seconds=600))

        cluster = await classifier.classify("alice", batch)

        assert cluster.title == "Write parser"
        assert cluster.start_time == batch[0].timestamp
        assert cluster.end_time == batch[-1].timestamp
        assert cluster.duration_minutes == 10
        assert cluster.source_apps == ["VS Code", "Terminal"]
        assert cluster.productivity == "high"
        stored = await db.task_clusters.get_for_user("alice")
        assert [c.id for c in stored] == [cluster.id]

    @pytest.mark.asyncio
    async def test_prompt_lists_every_event(self, db, oracle, prompt_manager):
        classifier = make_classifier(db, oracle, prompt_manager)
        batch = make_events("alice", 20)
        oracle.reply("task_classification", cluster_reply())

        await classifier.classify("alice", batch)

        messages = oracle.calls_for("task_classification")[0]
        assert "20 activity samples" in messages[1]["content"]
        assert batch[19].title in messages[1]["content"]

    @pytest.mark.asyncio
    async def test_linked_goal_is_recorded(self, db, oracle, prompt_manager):
        goal = await db.user_goals.create("alice", "Ship parser", 120)
        classifier = make_classifier(db, oracle, prompt_manager)
        oracle.reply("task_classification", cluster_reply())

        cluster = await classifier.classify("alice", make_events("alice", 20), linked_goal_id=goal.id)

        assert cluster.linked_goal_id == goal.id

    @pytest.mark.asyncio
    async def test_multiple_clusters_rejected(self, db, oracle, prompt_manager):
        classifier = make_classifier(db, oracle, prompt_manager)
        payload = cluster_reply("A")
        payload["clusters"].append(cluster_reply("B")["clusters"][0])
        oracle.reply("task_classification", payload)

        with pytest.raises(MalformedOracleOutput):
            await classifier.classify("alice", make_events("alice", 20))

        assert await db.task_clusters.get_for_user("alice") == []
        assert classifier.stats["classification_failures"] == 1

    @pytest.mark.asyncio
    async def test_fenced_json_rejected(self, db, oracle, prompt_manager):
        classifier = make_classifier(db, oracle, prompt_manager)
        oracle.reply("task_classification", "```json\n" + json.dumps(cluster_reply()) + "\n```")

        with pytest.raises(MalformedOracleOutput) as exc_info:
            await classifier.classify("alice", make_events("alice", 20))

        assert exc_info.value.raw_output.startswith("```json")

    @pytest.mark.asyncio
    async def test_missing_field_rejected(self, db, oracle, prompt_manager):
        classifier = make_classifier(db, oracle, prompt_manager)
        payload = cluster_reply()
        del payload["clusters"][0]["productivity"]
        oracle.reply("task_classification", payload)

        with pytest.raises(MalformedOracleOutput):
            await classifier.classify("alice", make_events("alice", 20))

    @pytest.mark.asyncio
    async def test_transient_failure_propagates(self, db, oracle, prompt_manager):
        classifier = make_classifier(db, oracle, prompt_manager)
        oracle.fail("task_classification")

        with pytest.raises(TransientOracleFailure):
            await classifier.classify("alice", make_events("alice", 20))

    @pytest.mark.asyncio
    async def test_empty_batch(self, db, oracle, prompt_manager):
        classifier = make_classifier(db, oracle, prompt_manager)
        with pytest.raises(ValueError):
            await classifier.classify("alice", [])


class TestFollowups:
    @pytest.mark.asyncio
    async def test_schedules_embedding_and_subtask_jobs(self, db, oracle, prompt_manager):
        queue = BackgroundTaskQueue()
        classifier = make_classifier(db, oracle, prompt_manager, queue=queue, subtask_agent=object())
        oracle.reply("task_classification", cluster_reply())

        await classifier.classify("alice", make_events("alice", 20))

        assert queue.pending == 2
        assert queue.stats["submitted"] == 2

    @pytest.mark.asyncio
    async def test_without_subtask_agent_only_embeds(self, db, oracle, prompt_manager):
        queue = BackgroundTaskQueue()
        classifier = make_classifier(db, oracle, prompt_manager, queue=queue)
        oracle.reply("task_classification", cluster_reply())

        await classifier.classify("alice", make_events("alice", 20))

        assert queue.pending == 1


class TestDurationEstimate:
    def _payload(self, duration_seconds=None):
        return ClusterPayload(**cluster_reply(duration_seconds=duration_seconds)["clusters"][0])

    def test_uses_reported_duration(self):
        assert estimate_duration_minutes(self._payload(900), 20) == 15

    def test_falls_back_to_event_count(self):
        assert estimate_duration_minutes(self._payload(), 20) == 7
        assert estimate_duration_minutes(self._payload(0), 20) == 7

    def test_at_least_one_minute(self):
        assert estimate_duration_minutes(self._payload(10), 20) == 1
        assert estimate_duration_minutes(self._payload(), 1) == 1
