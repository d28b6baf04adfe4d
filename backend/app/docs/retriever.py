"""Retrieval engine - policy-filtered cosine similarity search over chunks."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import Select, and_, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from backend.app.db.models import Document, DocumentChunk, DocumentTag
from backend.app.errors import RetrievalError
from backend.app.llm.client import ChatCompletionClient
from backend.app.llm.embeddings import Embedder, cosine_similarity
from backend.app.models.access import AccessPolicy
from backend.app.models.chat import ChatTurn
from backend.app.models.documents import DocumentStatus, ExtractionStrategy, RetrievedChunk
from backend.app.utils.logging import log_event
from backend.app.utils.metrics import PipelineMetrics

logger = logging.getLogger(__name__)

REWRITE_PROMPT = (
    "Rewrite the user's last message as a single self-contained search query, "
    "resolving pronouns and references using the conversation. "
    "Reply with the query only."
)

# Only the most recent turns matter for resolving references
REWRITE_HISTORY_TURNS = 6


def visible_documents(policy: AccessPolicy) -> ColumnElement[bool]:
    """SQL predicate selecting documents the policy can see.

    Visible iff access_level <= policy.level and the document has no tags or
    shares at least one tag with the policy.
    """
    tagged = exists().where(DocumentTag.document_id == Document.document_id)
    if not policy.tags:
        return and_(Document.access_level <= policy.level, ~tagged)

    shares_tag = exists().where(
        DocumentTag.document_id == Document.document_id,
        DocumentTag.tag.in_(sorted(policy.tags)),
    )
    return and_(Document.access_level <= policy.level, or_(~tagged, shares_tag))


class RetrievalEngine:
    """Finds the chunks most relevant to a query within a tenant's access scope."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: Embedder,
        llm_client: ChatCompletionClient | None = None,
        *,
        top_k: int = 5,
        min_similarity: float = 0.5,
        rewrite_timeout_seconds: float = 5.0,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            session_factory: Factory for short-lived sessions
            embedder: Must be the embedder used at indexing time
            llm_client: Short-completion client for query rewriting (optional)
            top_k: Default maximum number of results
            min_similarity: Minimum cosine similarity (0-1) for a candidate
            rewrite_timeout_seconds: Timeout for query rewriting
            metrics: Metrics recorder (optional, defaults to no-op)
        """
        self._session_factory = session_factory
        self._embedder = embedder
        self._llm = llm_client
        self._top_k = top_k
        self._min_similarity = min_similarity
        self._rewrite_timeout = rewrite_timeout_seconds
        self._metrics = metrics or PipelineMetrics()

    async def retrieve(
        self,
        tenant_id: UUID,
        query: str,
        policy: AccessPolicy,
        *,
        top_k: int | None = None,
        history: Sequence[ChatTurn] = (),
    ) -> list[RetrievedChunk]:
        """Return up to ``top_k`` visible chunks, most similar first.

        Args:
            tenant_id: Tenant whose documents are searched
            query: Latest user message
            policy: Requester's access policy
            top_k: Maximum results (defaults to the engine's setting)
            history: Prior conversation turns used to rewrite the query

        Returns:
            Chunks with similarity >= the threshold; an empty list when none
            qualify

        Raises:
            RetrievalError: If embedding or the similarity search fails
        """
        limit = top_k if top_k is not None else self._top_k
        if limit <= 0 or not query.strip():
            return []

        search_query = await self.rewrite_query(query, history)
        vector = await self._embed_query(search_query)

        try:
            async with self._session_factory() as session:
                if session.get_bind().dialect.name == "postgresql":
                    results = await self._search_pgvector(session, tenant_id, policy, vector, limit)
                else:
                    results = await self._search_scan(session, tenant_id, policy, vector, limit)
        except RetrievalError:
            raise
        except Exception as e:
            raise RetrievalError(f"Similarity search failed: {e}") from e

        self._metrics.record_retrieval(len(results))
        log_event(
            logger,
            f"Retrieved {len(results)} chunks",
            tenant_id=tenant_id,
            policy_level=policy.level,
            result_count=len(results),
            rewritten=search_query != query,
        )
        return results

    async def rewrite_query(self, query: str, history: Sequence[ChatTurn]) -> str:
        """Make a follow-up question self-contained; falls back to the raw query."""
        if not history or self._llm is None:
            return query

        turns = [*history[-REWRITE_HISTORY_TURNS:], ChatTurn(role="user", content=query)]
        try:
            rewritten = await asyncio.wait_for(
                self._llm.complete(system_prompt=REWRITE_PROMPT, messages=turns, max_tokens=64),
                timeout=self._rewrite_timeout,
            )
        except Exception as e:
            logger.warning(f"Query rewrite failed, using raw query: {type(e).__name__}: {e}")
            return query

        return rewritten.strip() or query

    async def _embed_query(self, query: str) -> list[float]:
        try:
            vector = await self._embedder.embed(query)
        except Exception as e:
            raise RetrievalError(f"Query embedding failed: {e}") from e

        if len(vector) != self._embedder.dimension:
            raise RetrievalError(
                f"Query embedding has dimension {len(vector)}, "
                f"expected {self._embedder.dimension}"
            )
        return vector

    def _base_query(self, tenant_id: UUID, policy: AccessPolicy) -> Select[Any]:
        return (
            select(DocumentChunk, Document.file_name)
            .join(Document, DocumentChunk.document_id == Document.document_id)
            .where(
                DocumentChunk.tenant_id == tenant_id,
                Document.tenant_id == tenant_id,
                Document.status == DocumentStatus.COMPLETED.value,
                visible_documents(policy),
            )
        )

    async def _search_pgvector(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        policy: AccessPolicy,
        vector: list[float],
        limit: int,
    ) -> list[RetrievedChunk]:
        """Rank inside PostgreSQL with the pgvector cosine distance operator."""
        distance = DocumentChunk.embedding.cosine_distance(vector)
        stmt = (
            self._base_query(tenant_id, policy)
            .add_columns(distance.label("distance"))
            .where(distance <= 1.0 - self._min_similarity)
            .order_by(distance, DocumentChunk.document_id, DocumentChunk.position)
            .limit(limit)
        )
        result = await session.execute(stmt)
        return [
            _to_retrieved(chunk, file_name, 1.0 - float(dist))
            for chunk, file_name, dist in result.all()
        ]

    async def _search_scan(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        policy: AccessPolicy,
        vector: list[float],
        limit: int,
    ) -> list[RetrievedChunk]:
        """Rank the pre-filtered rows in process (dialects without pgvector)."""
        result = await session.execute(self._base_query(tenant_id, policy))

        scored: list[tuple[float, DocumentChunk, str]] = []
        for chunk, file_name in result.all():
            similarity = cosine_similarity(vector, list(chunk.embedding))
            if similarity >= self._min_similarity:
                scored.append((similarity, chunk, file_name))

        # Deterministic order for equal scores
        scored.sort(key=lambda item: (-item[0], str(item[1].document_id), item[1].position))
        return [
            _to_retrieved(chunk, file_name, similarity)
            for similarity, chunk, file_name in scored[:limit]
        ]


def _to_retrieved(chunk: DocumentChunk, file_name: str, similarity: float) -> RetrievedChunk:
    source = (chunk.metadata_ or {}).get("source")
    return RetrievedChunk(
        chunk_id=chunk.chunk_id,
        document_id=chunk.document_id,
        file_name=file_name,
        content=chunk.content,
        similarity=round(similarity, 6),
        source=ExtractionStrategy(source) if source else None,
    )
