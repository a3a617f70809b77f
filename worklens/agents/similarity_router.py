"""
SimilarityRouter - three-band nearest-neighbour routing

A unit is embedded and compared with the closest unit of the next level up:

    similarity >= link threshold    -> link     (attach, no content rewrite)
    similarity >= mutate threshold  -> mutate   (attach and rewrite target)
    otherwise / no candidates       -> classify (full oracle grouping pass)

A boundary value belongs to the higher band.
"""

from typing import Optional

from worklens.core.logger import get_logger
from worklens.core.models import RouteAction, UnitKind
from worklens.core.protocols import OracleProtocol, VectorIndexProtocol
from worklens.core.settings import PipelineSettings
from worklens.models.responses import RouteDecision

logger = get_logger(__name__)


class SimilarityRouter:
    """Routes new or changed units to link / mutate / classify"""

    def __init__(
        self,
        oracle: OracleProtocol,
        index: VectorIndexProtocol,
        settings: PipelineSettings,
    ):
        self.oracle = oracle
        self.index = index
        self.link_threshold = settings.link_similarity
        self.mutate_threshold = settings.mutate_similarity

    def decide(self, similarity: Optional[float], target_id: Optional[int]) -> RouteDecision:
        """Pure band function; no target means classify"""
        if target_id is None or similarity is None:
            return RouteDecision(action=RouteAction.CLASSIFY, similarity=0.0)

        if similarity >= self.link_threshold:
            action = RouteAction.LINK
        elif similarity >= self.mutate_threshold:
            action = RouteAction.MUTATE
        else:
            return RouteDecision(action=RouteAction.CLASSIFY, similarity=similarity)

        return RouteDecision(action=action, target_id=target_id, similarity=similarity)

    async def route(self, user_id: str, content: str, target_kind: UnitKind) -> RouteDecision:
        """
        Embed content and route it against the user's units of target_kind

        Raises:
            TransientOracleFailure / MalformedOracleOutput: embedding failed
        """
        target_kind = UnitKind(target_kind)
        vector = await self.oracle.embed(content)
        matches = await self.index.nearest_neighbor(
            user_id, target_kind, vector, k=1, min_similarity=0.0
        )

        if not matches:
            logger.debug(f"No {target_kind.value} candidates for {user_id}, classifying")
            return self.decide(None, None)

        best = matches[0]
        decision = self.decide(float(best["similarity"]), int(best["source_id"]))
        logger.debug(
            f"Routed against {target_kind.value} {best['source_id']} for {user_id}: "
            f"{decision.action} (similarity={decision.similarity:.3f})"
        )
        return decision
