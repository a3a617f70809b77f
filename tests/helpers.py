"""Shared builders for WorkLens tests."""
import json
import re
import zlib
from collections import defaultdict, deque
from datetime import datetime, timedelta

import numpy as np

from worklens.core.errors import TransientOracleFailure
from worklens.core.models import RawEvent

EMBED_DIM = 64


def bag_of_words(text):
    """Deterministic hashed bag-of-words vector."""
    vector = np.zeros(EMBED_DIM)
    for word in text.lower().split():
        vector[zlib.crc32(word.encode("utf-8")) % EMBED_DIM] += 1.0
    return vector.tolist()


def unit_vector(*values):
    """EMBED_DIM vector whose leading components are `values`."""
    vector = np.zeros(EMBED_DIM)
    vector[: len(values)] = values
    return vector.tolist()


class StubOracle:
    """Scripted oracle.

    Chat replies are queued per prompt category (recognised from the system
    prompt). A callable reply is called with the messages and its result is
    sent back as JSON. Embeddings are hashed bag-of-words unless the text
    contains a pinned marker, in which case the pinned vector is returned.
    """

    def __init__(self, prompt_manager):
        self._prefixes = {
            category: prompt_manager.get_prompt(category, "system_prompt").split("{")[0]
            for category in prompt_manager.categories()
        }
        self.replies = defaultdict(deque)
        self.calls = []
        self.pinned = {}
        self.embed_calls = 0

    def reply(self, category, payload):
        if not isinstance(payload, (str, Exception)) and not callable(payload):
            payload = json.dumps(payload)
        self.replies[category].append(payload)

    def fail(self, category, error=None):
        self.replies[category].append(
            error or TransientOracleFailure("oracle unavailable", status_code=503)
        )

    def pin(self, marker, vector):
        self.pinned[marker] = list(vector)

    def calls_for(self, category):
        return [messages for name, messages in self.calls if name == category]

    def _category(self, messages):
        system = messages[0]["content"]
        for category, prefix in self._prefixes.items():
            if system.startswith(prefix):
                return category
        return "unknown"

    async def chat_completion(self, messages, **kwargs):
        category = self._category(messages)
        self.calls.append((category, messages))
        if not self.replies[category]:
            raise AssertionError(f"Unexpected oracle call for {category}")
        reply = self.replies[category].popleft()
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = json.dumps(reply(messages))
        return {"content": reply, "usage": {"total_tokens": 0}}

    async def embed(self, text):
        self.embed_calls += 1
        for marker, vector in self.pinned.items():
            if marker in text:
                return list(vector)
        return bag_of_words(text)


def make_events(user_id, count, app="VS Code", title="editing parser.py", start=None):
    start = start or datetime(2026, 1, 5, 9, 0, 0)
    return [
        RawEvent(
            user_id=user_id,
            app=app,
            title=f"{title} #{i}",
            timestamp=(start + timedelta(seconds=15 * i)).isoformat(),
            duration=15.0,
        )
        for i in range(count)
    ]


def cluster_reply(label="Write expression parser", duration_seconds=None, **overrides):
    cluster = {
        "label": label,
        "summary": f"{label} in the compiler project",
        "apps": ["VS Code"],
        "keywords": ["parser", "compiler"],
        "productivity": "high",
        "confidence": 0.9,
    }
    if duration_seconds is not None:
        cluster["duration_seconds"] = duration_seconds
    cluster.update(overrides)
    return {"clusters": [cluster]}


async def seed_cluster(db, user_id, title, minutes=10, linked_goal_id=None):
    now = datetime.now().isoformat()
    return await db.task_clusters.create(
        user_id=user_id,
        title=title,
        description=f"{title} session",
        start_time=now,
        end_time=now,
        duration_minutes=minutes,
        source_apps=["VS Code"],
        linked_goal_id=linked_goal_id,
    )


def group_by_topic(messages):
    """Subtask grouping reply that puts ungrouped tasks sharing a leading title word together."""
    prompt = messages[-1]["content"]
    ungrouped = prompt.split("Ungrouped tasks:", 1)[1]
    topics = {}
    for task_id, topic in re.findall(r"^- \[(\d+)\] (\S+)", ungrouped, flags=re.MULTILINE):
        topics.setdefault(topic, []).append(int(task_id))
    return {
        "subtasks": [
            {"name": f"{topic} work", "summary": f"Everything about {topic}", "member_ids": ids}
            for topic, ids in topics.items()
        ]
    }
