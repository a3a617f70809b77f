"""
TaskClassifier - turns one full event batch into one TaskCluster

Calls the oracle with the task_classification prompt, decodes the reply
strictly (exactly one cluster), persists the cluster and then hands off to
the background queue: embedding regeneration and the subtask aggregation
trigger. Nothing after persistence runs inline.
"""

from typing import Any, Dict, List, Optional

from worklens.core.json_parser import decode_oracle_output
from worklens.core.logger import get_logger
from worklens.core.models import RawEvent, TaskCluster, UnitKind
from worklens.core.protocols import DatabaseManagerProtocol, OracleProtocol
from worklens.core.task_queue import BackgroundTaskQueue
from worklens.llm.prompt_manager import PromptManager
from worklens.models.oracle_outputs import ClusterPayload, TaskClassificationOutput
from worklens.services.embedding_generator import EmbeddingGenerator

logger = get_logger(__name__)


def estimate_duration_minutes(cluster: ClusterPayload, event_count: int) -> int:
    """Oracle-reported duration when positive, else roughly 3 events per minute"""
    if cluster.duration_seconds:
        return max(1, round(cluster.duration_seconds / 60))
    return max(1, round(event_count / 3))


def format_events(events: List[RawEvent]) -> str:
    return "\n".join(f"{e.timestamp} | {e.app} | {e.title}" for e in events)


def distinct_apps(events: List[RawEvent]) -> List[str]:
    return list(dict.fromkeys(e.app for e in events if e.app))


class TaskClassifier:
    """Batch → TaskCluster via the oracle"""

    def __init__(
        self,
        db: DatabaseManagerProtocol,
        oracle: OracleProtocol,
        prompt_manager: PromptManager,
        embeddings: EmbeddingGenerator,
        queue: Optional[BackgroundTaskQueue] = None,
        subtask_agent=None,
    ):
        """
        Args:
            db: Repositories
            oracle: Text generation / embedding oracle
            prompt_manager: Prompt templates
            embeddings: Embedding regeneration service
            queue: Background queue used for the subtask trigger
            subtask_agent: SubtaskAgent notified of each new cluster (wired by the coordinator)
        """
        self.db = db
        self.oracle = oracle
        self.prompt_manager = prompt_manager
        self.embeddings = embeddings
        self.queue = queue
        self.subtask_agent = subtask_agent

        self.stats: Dict[str, Any] = {
            "batches_classified": 0,
            "classification_failures": 0,
            "last_cluster_id": None,
        }

    async def classify(
        self,
        user_id: str,
        batch: List[RawEvent],
        linked_goal_id: Optional[int] = None,
    ) -> TaskCluster:
        """
        Classify one batch into a persisted TaskCluster

        Args:
            user_id: Owner of the batch
            batch: Events, oldest first
            linked_goal_id: Goal the user was tracking, copied onto the cluster

        Raises:
            TransientOracleFailure: oracle unreachable
            MalformedOracleOutput: reply is not exactly one valid cluster
        """
        if not batch:
            raise ValueError("Cannot classify an empty batch")

        messages = self.prompt_manager.build_messages(
            "task_classification",
            "user_prompt_template",
            event_count=len(batch),
            events_text=format_events(batch),
        )
        config_params = self.prompt_manager.get_config_params("task_classification")

        try:
            response = await self.oracle.chat_completion(messages, **config_params)
            output = decode_oracle_output(response.get("content", ""), TaskClassificationOutput)
        except Exception:
            self.stats["classification_failures"] += 1
            raise

        payload = output.cluster
        cluster = await self.db.task_clusters.create(
            user_id=user_id,
            title=payload.label,
            description=payload.summary,
            start_time=batch[0].timestamp,
            end_time=batch[-1].timestamp,
            duration_minutes=estimate_duration_minutes(payload, len(batch)),
            source_apps=distinct_apps(batch),
            keywords=payload.keywords,
            productivity=payload.productivity,
            confidence=payload.confidence,
            linked_goal_id=linked_goal_id,
        )

        self.stats["batches_classified"] += 1
        self.stats["last_cluster_id"] = cluster.id
        logger.info(
            f"Classified {len(batch)} events for {user_id} into cluster {cluster.id}: "
            f"{cluster.title} ({cluster.duration_minutes} min)"
        )

        self._schedule_followups(user_id, cluster.id)
        return cluster

    def _schedule_followups(self, user_id: str, cluster_id: int) -> None:
        if self.queue is None:
            return

        self.embeddings.schedule(user_id, UnitKind.TASK, cluster_id)

        if self.subtask_agent is not None:
            agent = self.subtask_agent
            self.queue.submit(
                "subtask:new_task",
                lambda: agent.handle_new_task(user_id, cluster_id),
                user_id=user_id,
                payload={"cluster_id": cluster_id},
            )
