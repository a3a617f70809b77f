"""
Services shared by the agents: embeddings, oracle rewrites and deduplication
"""

from .deduplication_merger import DeduplicationMerger
from .embedding_generator import EmbeddingGenerator
from .unit_rewriter import UnitRewriter

__all__ = ["DeduplicationMerger", "EmbeddingGenerator", "UnitRewriter"]
