"""Embedding & indexing writer - the only code path that writes chunk rows."""

import asyncio
import logging
from collections.abc import Iterable

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import Document, DocumentChunk
from backend.app.errors import EmbeddingError, IndexingError
from backend.app.llm.embeddings import Embedder
from backend.app.models.documents import ExtractionStrategy
from backend.app.utils.logging import log_event
from backend.app.utils.metrics import PipelineMetrics

logger = logging.getLogger(__name__)


class IndexWriter:
    """Embeds chunk texts and atomically replaces a document's chunk set."""

    def __init__(
        self,
        embedder: Embedder,
        *,
        concurrency: int = 4,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._embedder = embedder
        self._concurrency = max(1, concurrency)
        self._metrics = metrics or PipelineMetrics()

    async def embed_all(self, chunks: list[str]) -> list[list[float]]:
        """Embed every chunk independently with bounded concurrency.

        Raises:
            EmbeddingError: If any embedding fails or has the wrong dimension
        """
        semaphore = asyncio.Semaphore(self._concurrency)
        expected = self._embedder.dimension

        async def _embed(position: int, text: str) -> list[float]:
            async with semaphore:
                try:
                    vector = await self._embedder.embed(text)
                except EmbeddingError:
                    raise
                except Exception as e:
                    raise EmbeddingError(f"Embedding chunk {position} failed: {e}") from e

            if len(vector) != expected:
                raise EmbeddingError(
                    f"Embedding for chunk {position} has dimension {len(vector)}, "
                    f"expected {expected}"
                )
            return vector

        return list(await asyncio.gather(*(_embed(i, text) for i, text in enumerate(chunks))))

    async def reindex(
        self,
        session: AsyncSession,
        document: Document,
        chunks: Iterable[str],
        provenance: ExtractionStrategy,
    ) -> int:
        """Replace all chunks of ``document`` with freshly embedded ones.

        All embeddings are computed before any row is touched. The delete of
        the previous chunk set is flushed strictly before the insert; both
        run in the caller's transaction, which the caller commits.

        Args:
            session: Session owning the current transaction
            document: Document whose chunk set is replaced
            chunks: Chunk texts in document order
            provenance: Extraction strategy recorded on every chunk

        Returns:
            Number of chunks written

        Raises:
            EmbeddingError: If any chunk fails to embed (nothing is written)
            IndexingError: If deleting or inserting chunk rows fails
        """
        texts = list(chunks)
        vectors = await self.embed_all(texts)

        try:
            await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == document.document_id)
            )
            session.add_all(
                DocumentChunk(
                    tenant_id=document.tenant_id,
                    document_id=document.document_id,
                    position=position,
                    content=text,
                    embedding=vector,
                    metadata_={"source": provenance.value},
                )
                for position, (text, vector) in enumerate(zip(texts, vectors, strict=True))
            )
            await session.flush()
        except SQLAlchemyError as e:
            raise IndexingError(
                f"Writing chunks for document {document.document_id} failed: "
                f"{type(e).__name__}"
            ) from e

        self._metrics.inc_chunks(len(texts))
        log_event(
            logger,
            f"Indexed {len(texts)} chunks for document {document.document_id}",
            document_id=document.document_id,
            chunk_count=len(texts),
            source=provenance.value,
        )
        return len(texts)
