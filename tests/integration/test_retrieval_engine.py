"""Integration tests for policy-filtered retrieval (SQLite in-process scan)."""

import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.db.models import Tenant
from backend.app.docs.retriever import RetrievalEngine
from backend.app.errors import RetrievalError
from backend.app.models.access import AccessPolicy
from backend.app.models.chat import ChatTurn
from backend.app.models.documents import DocumentStatus, ExtractionStrategy
from tests.fakes import (
    OTHER_TENANT_ID,
    FailingEmbedder,
    KeywordEmbedder,
    ScriptedLLMClient,
    add_document,
)


@pytest_asyncio.fixture
async def other_tenant_id(session_factory: async_sessionmaker[AsyncSession]) -> uuid.UUID:
    async with session_factory() as session:
        session.add(Tenant(tenant_id=OTHER_TENANT_ID, name="Other", slug="other"))
        await session.commit()
    return OTHER_TENANT_ID


@pytest.fixture
def engine_under_test(session_factory: async_sessionmaker[AsyncSession]) -> RetrievalEngine:
    return RetrievalEngine(session_factory, KeywordEmbedder(), top_k=5, min_similarity=0.5)


class TestAccessFiltering:
    """Test that only visible documents are ever returned."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("level", "visible"), [(0, False), (5, False), (10, True)])
    async def test_document_level_requires_policy_level(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine_under_test: RetrievalEngine,
        tenant_id: uuid.UUID,
        level: int,
        visible: bool,
    ) -> None:
        """Test that a level-10 document is only visible to level >= 10."""
        document_id = await add_document(
            session_factory, tenant_id, "refund policy for members", access_level=10
        )

        results = await engine_under_test.retrieve(
            tenant_id, "refund", AccessPolicy(level=level)
        )

        assert (document_id in {r.document_id for r in results}) is visible

    @pytest.mark.asyncio
    async def test_tags_restrict_visibility(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine_under_test: RetrievalEngine,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that untagged documents are open and tagged ones need a shared tag."""
        open_doc = await add_document(session_factory, tenant_id, "refund basics")
        vip_doc = await add_document(session_factory, tenant_id, "refund vip", tags=["vip"])
        bonus_doc = await add_document(
            session_factory, tenant_id, "refund bonus", tags=["bonus"]
        )

        no_tags = await engine_under_test.retrieve(tenant_id, "refund", AccessPolicy(level=0))
        vip = await engine_under_test.retrieve(
            tenant_id, "refund", AccessPolicy(level=0, tags={"VIP"})
        )

        assert {r.document_id for r in no_tags} == {open_doc}
        assert {r.document_id for r in vip} == {open_doc, vip_doc}
        assert bonus_doc not in {r.document_id for r in vip}

    @pytest.mark.asyncio
    async def test_other_tenant_documents_never_returned(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine_under_test: RetrievalEngine,
        tenant_id: uuid.UUID,
        other_tenant_id: uuid.UUID,
    ) -> None:
        """Test tenant isolation."""
        own = await add_document(session_factory, tenant_id, "refund policy")
        await add_document(session_factory, other_tenant_id, "refund policy")

        results = await engine_under_test.retrieve(tenant_id, "refund", AccessPolicy(level=99))

        assert [r.document_id for r in results] == [own]

    @pytest.mark.asyncio
    async def test_unfinished_documents_are_not_searched(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine_under_test: RetrievalEngine,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that only COMPLETED documents contribute chunks."""
        await add_document(
            session_factory, tenant_id, "refund draft", status=DocumentStatus.PROCESSING
        )
        await add_document(session_factory, tenant_id, "refund old", status=DocumentStatus.FAILED)

        assert await engine_under_test.retrieve(tenant_id, "refund", AccessPolicy()) == []


class TestRanking:
    """Test similarity threshold, ordering and limits."""

    @pytest.mark.asyncio
    async def test_below_threshold_returns_empty(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine_under_test: RetrievalEngine,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that unrelated chunks are dropped rather than padded in."""
        await add_document(session_factory, tenant_id, "refund policy")

        assert await engine_under_test.retrieve(tenant_id, "shipping", AccessPolicy()) == []

    @pytest.mark.asyncio
    async def test_results_ordered_by_similarity(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine_under_test: RetrievalEngine,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test most similar first, with similarity and provenance populated."""
        partial = await add_document(session_factory, tenant_id, "refund", file_name="a.txt")
        exact = await add_document(
            session_factory, tenant_id, "refund and shipping", file_name="b.txt"
        )

        results = await engine_under_test.retrieve(
            tenant_id, "refund shipping", AccessPolicy()
        )

        assert [r.document_id for r in results] == [exact, partial]
        assert results[0].similarity == pytest.approx(1.0)
        assert results[1].similarity == pytest.approx(0.707107, abs=1e-6)
        assert results[0].file_name == "b.txt"
        assert results[0].source == ExtractionStrategy.FAST

    @pytest.mark.asyncio
    async def test_top_k_limits_results(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine_under_test: RetrievalEngine,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that at most top_k chunks are returned."""
        for index in range(4):
            await add_document(session_factory, tenant_id, f"refund {index}")

        assert len(await engine_under_test.retrieve(tenant_id, "refund", AccessPolicy())) == 4
        results = await engine_under_test.retrieve(tenant_id, "refund", AccessPolicy(), top_k=2)
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_empty_query_or_zero_limit(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine_under_test: RetrievalEngine,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test degenerate requests return nothing without searching."""
        await add_document(session_factory, tenant_id, "refund policy")

        assert await engine_under_test.retrieve(tenant_id, "   ", AccessPolicy()) == []
        assert await engine_under_test.retrieve(tenant_id, "refund", AccessPolicy(), top_k=0) == []


class TestQueryHandling:
    """Test query rewriting and embedding failures."""

    @pytest.mark.asyncio
    async def test_follow_up_is_rewritten_with_history(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that a context-dependent follow-up is rewritten before embedding."""
        await add_document(session_factory, tenant_id, "refund policy")
        llm = ScriptedLLMClient(rewrite="refund deadline")
        engine = RetrievalEngine(session_factory, KeywordEmbedder(), llm)
        history = [
            ChatTurn(role="user", content="Tell me about refunds"),
            ChatTurn(role="assistant", content="Refunds are possible."),
        ]

        results = await engine.retrieve(
            tenant_id, "and how long does it take?", AccessPolicy(), history=history
        )

        assert len(results) == 1
        assert len(llm.complete_calls) == 1

    @pytest.mark.asyncio
    async def test_rewrite_failure_uses_raw_query(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that a failing rewrite falls back to the original message."""
        await add_document(session_factory, tenant_id, "refund policy")
        engine = RetrievalEngine(session_factory, KeywordEmbedder(), ScriptedLLMClient())
        history = [ChatTurn(role="user", content="hi")]

        results = await engine.retrieve(
            tenant_id, "refund please", AccessPolicy(), history=history
        )

        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_no_history_skips_rewrite(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that the first message of a conversation is used as-is."""
        llm = ScriptedLLMClient(rewrite="shipping")
        engine = RetrievalEngine(session_factory, KeywordEmbedder(), llm)

        await engine.retrieve(tenant_id, "refund", AccessPolicy())

        assert llm.complete_calls == []

    @pytest.mark.asyncio
    async def test_embedding_failure_raises_retrieval_error(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that a failed query embedding is surfaced as RetrievalError."""
        engine = RetrievalEngine(session_factory, FailingEmbedder(fail_on_call=1))

        with pytest.raises(RetrievalError):
            await engine.retrieve(tenant_id, "refund", AccessPolicy())
