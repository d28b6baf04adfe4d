"""Integration tests for service startup over an existing database."""

import asyncio
import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.adapters.object_store import InMemoryObjectStore
from backend.app.config import Settings
from backend.app.models.documents import DocumentStatus, MediaKind
from backend.app.services import Services, build_services
from tests.fakes import KeywordEmbedder, ScriptedLLMClient


def make_services(engine: AsyncEngine, object_store: InMemoryObjectStore) -> Services:
    return build_services(
        Settings(use_mock_ai=True),
        engine=engine,
        object_store=object_store,
        embedder=KeywordEmbedder(),
        llm_client=ScriptedLLMClient(),
    )


@pytest.mark.asyncio
async def test_restart_picks_up_documents_registered_before_shutdown(
    engine: AsyncEngine, tenant_id: uuid.UUID
) -> None:
    """Test that a PENDING document left by a previous process is processed on start."""
    object_store = InMemoryObjectStore()
    await object_store.put("tenant/refunds.txt", ("refund policy " * 20).encode())

    # First process registers but never starts its workers
    before_restart = make_services(engine, object_store)
    document = await before_restart.lifecycle.register(
        tenant_id=tenant_id,
        file_name="refunds.txt",
        storage_key="tenant/refunds.txt",
        media_kind=MediaKind.TEXT,
    )
    await before_restart.aclose()

    after_restart = make_services(engine, object_store)
    await after_restart.start()
    try:
        await asyncio.wait_for(after_restart.queue.join(), timeout=5)
    finally:
        await after_restart.aclose()

    result = await after_restart.lifecycle.get_document(tenant_id, document.document_id)
    assert result.status == DocumentStatus.COMPLETED
    assert result.char_count == len("refund policy " * 20) - 1
