"""
Pipeline agents

EventBuffer -> TaskClassifier -> SubtaskAgent -> MajorTaskAgent, with the
SimilarityRouter deciding link / mutate / classify for each new unit
"""

from .event_buffer import EventBuffer
from .major_task_agent import MajorTaskAgent
from .similarity_router import SimilarityRouter
from .subtask_agent import SubtaskAgent
from .task_classifier import TaskClassifier

__all__ = [
    "EventBuffer",
    "TaskClassifier",
    "SimilarityRouter",
    "SubtaskAgent",
    "MajorTaskAgent",
]
