"""Tests for the three-band SimilarityRouter."""
import pytest

from helpers import unit_vector

from worklens.agents.similarity_router import SimilarityRouter
from worklens.core.models import RouteAction, UnitKind
from worklens.core.settings import PipelineSettings


@pytest.fixture
def router(oracle, db):
    return SimilarityRouter(oracle, db.embeddings, PipelineSettings())


class TestBands:
    """Boundary values belong to the higher band."""

    @pytest.mark.parametrize(
        "similarity,expected",
        [
            (1.0, RouteAction.LINK),
            (0.85, RouteAction.LINK),
            (0.849999, RouteAction.MUTATE),
            (0.70, RouteAction.MUTATE),
            (0.6999, RouteAction.CLASSIFY),
            (0.0, RouteAction.CLASSIFY),
        ],
    )
    def test_decide(self, router, similarity, expected):
        decision = router.decide(similarity, 7)
        assert decision.action == expected

    def test_link_and_mutate_keep_target(self, router):
        assert router.decide(0.9, 7).target_id == 7
        assert router.decide(0.75, 7).target_id == 7

    def test_classify_has_no_target(self, router):
        decision = router.decide(0.5, 7)
        assert decision.target_id is None
        assert decision.similarity == 0.5

    def test_no_candidate_classifies(self, router):
        assert router.decide(None, None).action == RouteAction.CLASSIFY


class TestRoute:
    @pytest.mark.asyncio
    async def test_empty_index_classifies(self, router):
        decision = await router.route("alice", "anything", UnitKind.SUBTASK)
        assert decision.action == RouteAction.CLASSIFY

    @pytest.mark.asyncio
    async def test_identical_vector_links(self, router, db, oracle):
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 5, unit_vector(1.0), "parser")
        oracle.pin("ALPHA", unit_vector(1.0))

        decision = await router.route("alice", "ALPHA cluster", UnitKind.SUBTASK)

        assert decision.action == RouteAction.LINK
        assert decision.target_id == 5
        assert decision.similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_mid_band_mutates(self, router, db, oracle):
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 5, unit_vector(1.0), "parser")
        # cos = 1 / sqrt(1.64) ~ 0.78
        oracle.pin("BETA", unit_vector(1.0, 0.8))

        decision = await router.route("alice", "BETA cluster", UnitKind.SUBTASK)

        assert decision.action == RouteAction.MUTATE
        assert decision.target_id == 5

    @pytest.mark.asyncio
    async def test_best_candidate_wins(self, router, db, oracle):
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 5, unit_vector(0.0, 1.0), "docs")
        await db.embeddings.upsert("alice", UnitKind.SUBTASK, 6, unit_vector(1.0), "parser")
        oracle.pin("ALPHA", unit_vector(1.0, 0.1))

        decision = await router.route("alice", "ALPHA cluster", UnitKind.SUBTASK)

        assert decision.target_id == 6

    @pytest.mark.asyncio
    async def test_other_users_and_kinds_are_ignored(self, router, db, oracle):
        await db.embeddings.upsert("bob", UnitKind.SUBTASK, 5, unit_vector(1.0), "parser")
        await db.embeddings.upsert("alice", UnitKind.MAJOR_TASK, 6, unit_vector(1.0), "compiler")
        oracle.pin("ALPHA", unit_vector(1.0))

        decision = await router.route("alice", "ALPHA cluster", UnitKind.SUBTASK)

        assert decision.action == RouteAction.CLASSIFY
