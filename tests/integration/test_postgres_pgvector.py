"""PostgreSQL-specific integration test for pgvector similarity search.

Requires a real PostgreSQL instance with the pgvector extension (SQLite runs
the in-process scan instead).

Run with: DATABASE_URL='postgresql://...' pytest -m postgres
"""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.config import get_settings
from backend.app.db.engine import create_session_factory
from backend.app.db.models import Document, Tenant
from backend.app.docs.indexing import IndexWriter
from backend.app.docs.retriever import RetrievalEngine
from backend.app.llm.embeddings import HashingEmbedder
from backend.app.models.access import AccessPolicy
from backend.app.models.documents import DocumentStatus, ExtractionStrategy, MediaKind


@pytest.mark.postgres
@pytest.mark.asyncio
async def test_pgvector_search_ranks_and_filters(postgres_engine: AsyncEngine) -> None:
    """Test cosine ranking, the similarity threshold and access filtering in SQL."""
    session_factory = create_session_factory(postgres_engine)
    embedder = HashingEmbedder(dimension=get_settings().embedding_dim)
    writer = IndexWriter(embedder)
    tenant_id = uuid.uuid4()

    async with session_factory() as session:
        session.add(Tenant(tenant_id=tenant_id, name="PG", slug=f"pg-{tenant_id}"))
        open_doc = Document(
            tenant_id=tenant_id,
            file_name="refunds.md",
            storage_key="pg/refunds.md",
            media_kind=MediaKind.TEXT.value,
            status=DocumentStatus.COMPLETED.value,
        )
        locked_doc = Document(
            tenant_id=tenant_id,
            file_name="locked.md",
            storage_key="pg/locked.md",
            media_kind=MediaKind.TEXT.value,
            status=DocumentStatus.COMPLETED.value,
            access_level=10,
        )
        session.add_all([open_doc, locked_doc])
        await session.flush()
        await writer.reindex(
            session,
            open_doc,
            ["refund requests within thirty days", "shipping takes a week"],
            ExtractionStrategy.FAST,
        )
        await writer.reindex(
            session, locked_doc, ["refund requests within thirty days"], ExtractionStrategy.SMART
        )
        await session.commit()

    engine = RetrievalEngine(session_factory, embedder, min_similarity=0.9)

    results = await engine.retrieve(
        tenant_id, "refund requests within thirty days", AccessPolicy(level=0)
    )

    assert [r.document_id for r in results] == [open_doc.document_id]
    assert results[0].similarity == pytest.approx(1.0, abs=1e-5)
    assert results[0].source == ExtractionStrategy.FAST

    results = await engine.retrieve(
        tenant_id, "refund requests within thirty days", AccessPolicy(level=10)
    )
    assert {r.document_id for r in results} == {open_doc.document_id, locked_doc.document_id}
