"""Service wiring - capabilities are selected once from settings at startup."""

import logging
from dataclasses import dataclass
from functools import lru_cache

from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from backend.app.adapters.object_store import (
    InMemoryObjectStore,
    ObjectStore,
    SupabaseObjectStore,
)
from backend.app.adapters.ocr import DocumentParser, LlamaParseClient
from backend.app.adapters.transcription import DeepgramTranscriber, Transcriber
from backend.app.chat.history import ChatHistory
from backend.app.chat.orchestrator import ChatOrchestrator
from backend.app.config import Settings, get_settings
from backend.app.db.engine import create_session_factory, get_async_engine
from backend.app.docs.extraction import ExtractionCascade
from backend.app.docs.indexing import IndexWriter
from backend.app.docs.lifecycle import DocumentLifecycleManager
from backend.app.docs.retriever import RetrievalEngine
from backend.app.docs.worker import IngestionQueue
from backend.app.llm.client import ChatCompletionClient, get_llm_client
from backend.app.llm.embeddings import Embedder, get_embedder
from backend.app.utils.metrics import PrometheusPipelineMetrics

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived pipeline components shared by routes and workers."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    object_store: ObjectStore
    parser: DocumentParser | None
    transcriber: Transcriber | None
    embedder: Embedder
    llm_client: ChatCompletionClient
    queue: IngestionQueue
    lifecycle: DocumentLifecycleManager
    retriever: RetrievalEngine
    orchestrator: ChatOrchestrator
    history: ChatHistory

    def capabilities(self) -> dict[str, str]:
        """Which implementation backs each capability (for health checks)."""
        return {
            "object_store": type(self.object_store).__name__,
            "smart_extraction": type(self.parser).__name__ if self.parser else "unavailable",
            "transcription": (
                type(self.transcriber).__name__ if self.transcriber else "unavailable"
            ),
            "embedding": type(self.embedder).__name__,
            "completion": type(self.llm_client).__name__,
        }

    async def start(self) -> None:
        """Start ingestion workers and the stale-processing sweep.

        Documents registered before a restart but never picked up are
        re-enqueued.
        """
        self.queue.start(self.lifecycle.process, sweep=self.lifecycle.fail_stale)
        await self.lifecycle.resume_pending()

    async def aclose(self) -> None:
        """Stop workers and close HTTP clients."""
        await self.queue.stop()
        for component in (self.object_store, self.parser, self.transcriber):
            aclose = getattr(component, "aclose", None)
            if aclose is not None:
                await aclose()


def _secret(value: SecretStr | None) -> str | None:
    return (value.get_secret_value() or None) if value is not None else None


def build_object_store(settings: Settings) -> ObjectStore:
    service_key = _secret(settings.supabase_service_role_key)
    if settings.supabase_url and service_key:
        return SupabaseObjectStore(
            settings.supabase_url,
            service_key,
            bucket=settings.storage_bucket,
            timeout_seconds=settings.download_timeout_seconds,
        )
    logger.warning("Supabase storage not configured, using in-memory object store")
    return InMemoryObjectStore()


def build_parser(settings: Settings) -> DocumentParser | None:
    api_key = _secret(settings.llama_cloud_api_key)
    if api_key is None:
        logger.warning("LLAMA_CLOUD_API_KEY not set, smart extraction unavailable")
        return None
    return LlamaParseClient(
        api_key,
        base_url=settings.llama_cloud_base_url,
        poll_interval_seconds=settings.llama_parse_poll_interval_seconds,
    )


def build_transcriber(settings: Settings) -> Transcriber | None:
    api_key = _secret(settings.deepgram_api_key)
    if api_key is None:
        logger.warning("DEEPGRAM_API_KEY not set, transcription unavailable")
        return None
    return DeepgramTranscriber(
        api_key, base_url=settings.deepgram_base_url, model=settings.deepgram_model
    )


def build_services(
    settings: Settings,
    *,
    engine: AsyncEngine | None = None,
    object_store: ObjectStore | None = None,
    parser: DocumentParser | None = None,
    transcriber: Transcriber | None = None,
    embedder: Embedder | None = None,
    llm_client: ChatCompletionClient | None = None,
) -> Services:
    """Wire every component from settings; explicit arguments override selection."""
    session_factory = create_session_factory(engine or get_async_engine())
    metrics = PrometheusPipelineMetrics()

    object_store = object_store or build_object_store(settings)
    parser = parser or build_parser(settings)
    transcriber = transcriber or build_transcriber(settings)
    embedder = embedder or get_embedder(settings)
    llm_client = llm_client or get_llm_client(settings)

    cascade = ExtractionCascade(
        object_store,
        parser,
        transcriber,
        min_fast_text_chars=settings.min_fast_text_chars,
        signed_url_ttl_seconds=settings.signed_url_ttl_seconds,
        fast_timeout_seconds=settings.fast_extract_timeout_seconds,
        smart_timeout_seconds=settings.smart_extract_timeout_seconds,
        transcription_timeout_seconds=settings.transcription_timeout_seconds,
        metrics=metrics,
    )
    index_writer = IndexWriter(
        embedder, concurrency=settings.embedding_concurrency, metrics=metrics
    )
    queue = IngestionQueue(
        workers=settings.ingestion_workers,
        sweep_interval_seconds=settings.stale_sweep_interval_seconds,
    )
    lifecycle = DocumentLifecycleManager(
        session_factory,
        object_store,
        cascade,
        index_writer,
        settings,
        metrics=metrics,
        enqueue=queue.submit,
    )
    retriever = RetrievalEngine(
        session_factory,
        embedder,
        llm_client,
        top_k=settings.retrieval_top_k,
        min_similarity=settings.retrieval_min_similarity,
        rewrite_timeout_seconds=settings.query_rewrite_timeout_seconds,
        metrics=metrics,
    )
    orchestrator = ChatOrchestrator(
        session_factory,
        retriever,
        llm_client,
        title_chars=settings.chat_title_chars,
        persist_partial_on_abort=settings.persist_partial_on_abort,
        metrics=metrics,
    )

    return Services(
        settings=settings,
        session_factory=session_factory,
        object_store=object_store,
        parser=parser,
        transcriber=transcriber,
        embedder=embedder,
        llm_client=llm_client,
        queue=queue,
        lifecycle=lifecycle,
        retriever=retriever,
        orchestrator=orchestrator,
        history=ChatHistory(session_factory),
    )


@lru_cache
def get_services() -> Services:
    """Process-wide services (FastAPI dependency; override in tests)."""
    return build_services(get_settings())
