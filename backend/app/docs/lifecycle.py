"""Document lifecycle manager.

State machine: PENDING -> PROCESSING -> {COMPLETED | FAILED}.

``process`` is the single boundary where ingestion errors are caught and
recorded on the document; it never raises for pipeline failures, so a worker
running it cannot crash.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from datetime import timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.adapters.object_store import ObjectStore
from backend.app.config import Settings
from backend.app.db.models import Document, DocumentChunk, DocumentTag, Tenant, utcnow
from backend.app.docs.chunker import chunk_text, normalize_text
from backend.app.docs.extraction import ExtractionCascade
from backend.app.docs.indexing import IndexWriter
from backend.app.errors import (
    ExtractionError,
    NotFoundError,
    NoUsableTextError,
    PipelineError,
)
from backend.app.models.access import normalize_tag
from backend.app.models.documents import DocumentStatus, MediaKind, UserDocument
from backend.app.utils.logging import log_event
from backend.app.utils.metrics import PipelineMetrics

logger = logging.getLogger(__name__)

NO_USABLE_TEXT_MESSAGE = "no usable text extracted"


def to_user_document(document: Document) -> UserDocument:
    """Convert ORM row to domain model."""
    return UserDocument(
        document_id=document.document_id,
        tenant_id=document.tenant_id,
        file_name=document.file_name,
        storage_key=document.storage_key,
        media_kind=MediaKind(document.media_kind),
        status=DocumentStatus(document.status),
        access_level=document.access_level,
        tags=document.tag_names,
        char_count=document.char_count,
        summary=document.summary,
        error_message=document.error_message,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


def _describe_failure(error: Exception) -> str:
    if isinstance(error, PipelineError):
        return str(error) or type(error).__name__
    return f"Unexpected error during processing ({type(error).__name__}): {error}"


class DocumentLifecycleManager:
    """Owns document status transitions and drives the ingestion pipeline."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        object_store: ObjectStore,
        cascade: ExtractionCascade,
        index_writer: IndexWriter,
        settings: Settings,
        *,
        metrics: PipelineMetrics | None = None,
        enqueue: Callable[[UUID], None] | None = None,
    ) -> None:
        """Initialize manager.

        Args:
            session_factory: Factory for short-lived sessions (work outlives requests)
            object_store: Store holding uploaded file bytes
            cascade: Extraction cascade
            index_writer: Embedding & indexing writer
            settings: Application settings (gates, chunking, timeouts)
            metrics: Metrics recorder (optional, defaults to no-op)
            enqueue: Hands a document id to the ingestion queue; when None,
                callers run ``process`` themselves
        """
        self._session_factory = session_factory
        self._object_store = object_store
        self._cascade = cascade
        self._index_writer = index_writer
        self._settings = settings
        self._metrics = metrics or PipelineMetrics()
        self._enqueue = enqueue

    async def register(
        self,
        *,
        tenant_id: UUID,
        file_name: str,
        storage_key: str,
        media_kind: MediaKind,
        access_level: int = 0,
        tags: Iterable[str] = (),
    ) -> UserDocument:
        """Create a PENDING document for an already uploaded object and enqueue it.

        Raises:
            NotFoundError: If the tenant does not exist
        """
        async with self._session_factory() as session:
            if await session.get(Tenant, tenant_id) is None:
                raise NotFoundError(f"Tenant {tenant_id} not found")

            document = Document(
                tenant_id=tenant_id,
                file_name=file_name,
                storage_key=storage_key,
                media_kind=media_kind.value,
                status=DocumentStatus.PENDING.value,
                access_level=access_level,
                tags=[DocumentTag(tag=tag) for tag in _normalize_tags(tags)],
            )
            session.add(document)
            await session.commit()
            result = to_user_document(document)

        log_event(
            logger,
            f"Registered document {result.document_id} ({file_name})",
            document_id=result.document_id,
            tenant_id=tenant_id,
            media_kind=media_kind.value,
        )
        self._submit(result.document_id)
        return result

    async def reprocess(
        self,
        tenant_id: UUID,
        document_id: UUID,
        *,
        access_level: int | None = None,
        tags: Iterable[str] | None = None,
    ) -> UserDocument:
        """Reset a document to PENDING and enqueue a full reindex.

        Access level and tags can only change here, together with the reindex.

        Raises:
            NotFoundError: If the document does not exist for this tenant
        """
        async with self._session_factory() as session:
            document = await self._get_owned(session, tenant_id, document_id)
            if access_level is not None:
                document.access_level = access_level
            if tags is not None:
                _replace_tags(document, tags)
            document.status = DocumentStatus.PENDING.value
            document.error_message = None
            document.updated_at = utcnow()
            await session.commit()
            result = to_user_document(document)

        log_event(logger, f"Reprocess requested for {document_id}", document_id=document_id)
        self._submit(document_id)
        return result

    async def process(self, document_id: UUID) -> DocumentStatus | None:
        """Run extraction, chunking and indexing for one document.

        Returns:
            Terminal status reached, or None if the document no longer exists
        """
        started = time.perf_counter()

        claimed = await self._claim(document_id)
        if claimed is None:
            logger.warning(f"Document {document_id} not found, skipping processing")
            return None
        file_name, media_kind, storage_key, language = claimed

        try:
            data = b"" if media_kind.is_media else await self._download(storage_key)
            extraction = await self._cascade.extract(
                data, media_kind, file_name, storage_key=storage_key, language=language
            )

            normalized = normalize_text(extraction.text)
            if len(normalized) < self._settings.min_text_chars:
                raise NoUsableTextError(NO_USABLE_TEXT_MESSAGE)

            chunks = chunk_text(
                normalized,
                window_size=self._settings.chunk_window_size,
                overlap=self._settings.chunk_overlap,
            )

            async with self._session_factory() as session:
                document = await session.get(Document, document_id)
                if document is None:
                    raise NotFoundError(f"Document {document_id} was deleted during processing")

                count = await self._index_writer.reindex(
                    session, document, chunks, extraction.strategy
                )
                document.status = DocumentStatus.COMPLETED.value
                document.char_count = len(normalized)
                document.summary = normalized[: self._settings.summary_chars]
                document.error_message = None
                document.updated_at = utcnow()
                await session.commit()
        except Exception as e:
            message = _describe_failure(e)
            await self._mark_failed(document_id, message)
            self._metrics.record_document(
                DocumentStatus.FAILED.value, (time.perf_counter() - started) * 1000
            )
            log_event(
                logger,
                f"Document {document_id} failed: {message}",
                level=logging.WARNING,
                document_id=document_id,
                error_type=type(e).__name__,
            )
            return DocumentStatus.FAILED

        latency_ms = (time.perf_counter() - started) * 1000
        self._metrics.record_document(DocumentStatus.COMPLETED.value, latency_ms)
        log_event(
            logger,
            f"Document {document_id} completed",
            document_id=document_id,
            strategy=extraction.strategy.value,
            chunk_count=count,
            char_count=len(normalized),
            latency_ms=round(latency_ms, 1),
        )
        return DocumentStatus.COMPLETED

    async def fail_stale(self, max_age_seconds: float | None = None) -> int:
        """Fail documents stuck in PROCESSING longer than ``max_age_seconds``.

        Returns:
            Number of documents failed
        """
        max_age = (
            max_age_seconds
            if max_age_seconds is not None
            else self._settings.stale_processing_seconds
        )
        cutoff = utcnow() - timedelta(seconds=max_age)

        async with self._session_factory() as session:
            result = await session.execute(
                select(Document).where(
                    Document.status == DocumentStatus.PROCESSING.value,
                    Document.processing_started_at < cutoff,
                )
            )
            stale = list(result.scalars().all())
            for document in stale:
                document.status = DocumentStatus.FAILED.value
                document.error_message = (
                    f"Processing did not finish within {max_age:.0f} seconds"
                )
                document.updated_at = utcnow()
            await session.commit()

        if stale:
            log_event(
                logger,
                f"Failed {len(stale)} stale documents",
                level=logging.WARNING,
                document_ids=[str(document.document_id) for document in stale],
            )
        return len(stale)

    async def resume_pending(self) -> int:
        """Re-enqueue PENDING documents, oldest first.

        The queue lives in memory, so documents registered before a restart
        are only picked up again through this.

        Returns:
            Number of documents enqueued
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document.document_id)
                .where(Document.status == DocumentStatus.PENDING.value)
                .order_by(Document.created_at)
            )
            pending = list(result.scalars().all())

        for document_id in pending:
            self._submit(document_id)

        if pending:
            log_event(logger, f"Resumed {len(pending)} pending documents", count=len(pending))
        return len(pending)

    async def delete(self, tenant_id: UUID, document_id: UUID) -> None:
        """Remove a document, its chunks and its stored object.

        Raises:
            NotFoundError: If the document does not exist for this tenant
        """
        async with self._session_factory() as session:
            document = await self._get_owned(session, tenant_id, document_id)
            storage_key = document.storage_key
            await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
            )
            await session.delete(document)
            await session.commit()

        try:
            await self._object_store.delete(storage_key)
        except PipelineError as e:
            # Row is gone; the orphaned object only costs storage
            log_event(
                logger,
                f"Stored object for deleted document {document_id} was not removed: {e}",
                level=logging.WARNING,
                document_id=document_id,
                storage_key=storage_key,
            )

        log_event(logger, f"Deleted document {document_id}", document_id=document_id)

    async def get_document(self, tenant_id: UUID, document_id: UUID) -> UserDocument:
        """Get one document (status polling).

        Raises:
            NotFoundError: If the document does not exist for this tenant
        """
        async with self._session_factory() as session:
            return to_user_document(await self._get_owned(session, tenant_id, document_id))

    async def list_documents(self, tenant_id: UUID) -> list[UserDocument]:
        """List a tenant's documents, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document)
                .where(Document.tenant_id == tenant_id)
                .order_by(Document.created_at.desc())
            )
            return [to_user_document(document) for document in result.scalars().all()]

    def _submit(self, document_id: UUID) -> None:
        if self._enqueue is not None:
            self._enqueue(document_id)

    async def _claim(self, document_id: UUID) -> tuple[str, MediaKind, str, str] | None:
        """Move to PROCESSING and purge the previous chunk set."""
        async with self._session_factory() as session:
            document = await session.get(Document, document_id)
            if document is None:
                return None

            document.status = DocumentStatus.PROCESSING.value
            document.processing_started_at = utcnow()
            document.error_message = None
            document.updated_at = utcnow()
            await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
            )

            tenant = await session.get(Tenant, document.tenant_id)
            language = tenant.language if tenant is not None else self._settings.default_language
            claimed = (
                document.file_name,
                MediaKind(document.media_kind),
                document.storage_key,
                language,
            )
            await session.commit()

        log_event(logger, f"Processing document {document_id}", document_id=document_id)
        return claimed

    async def _download(self, storage_key: str) -> bytes:
        try:
            return await asyncio.wait_for(
                self._object_store.get(storage_key),
                timeout=self._settings.download_timeout_seconds,
            )
        except TimeoutError as e:
            raise ExtractionError(
                f"Download timed out after {self._settings.download_timeout_seconds:.0f}s"
            ) from e

    async def _mark_failed(self, document_id: UUID, message: str) -> None:
        async with self._session_factory() as session:
            document = await session.get(Document, document_id)
            if document is None:
                return
            document.status = DocumentStatus.FAILED.value
            document.error_message = message
            document.updated_at = utcnow()
            await session.commit()

    @staticmethod
    async def _get_owned(session: AsyncSession, tenant_id: UUID, document_id: UUID) -> Document:
        document = await session.get(Document, document_id)
        if document is None or document.tenant_id != tenant_id:
            raise NotFoundError(f"Document {document_id} not found")
        return document


def _normalize_tags(tags: Iterable[str]) -> list[str]:
    return sorted({normalize_tag(tag) for tag in tags if tag and tag.strip()})


def _replace_tags(document: Document, tags: Iterable[str]) -> None:
    wanted = set(_normalize_tags(tags))
    document.tags = [tag for tag in document.tags if tag.tag in wanted]
    existing = {tag.tag for tag in document.tags}
    document.tags.extend(DocumentTag(tag=tag) for tag in sorted(wanted - existing))
