"""Unit tests for capability selection in service wiring."""

from pydantic import SecretStr
from sqlalchemy.ext.asyncio import create_async_engine

from backend.app.adapters.object_store import InMemoryObjectStore, SupabaseObjectStore
from backend.app.adapters.ocr import LlamaParseClient
from backend.app.adapters.transcription import DeepgramTranscriber
from backend.app.config import Settings
from backend.app.llm.client import DeterministicStubClient
from backend.app.llm.embeddings import HashingEmbedder
from backend.app.services import (
    build_object_store,
    build_parser,
    build_services,
    build_transcriber,
)


def test_missing_keys_select_fallbacks() -> None:
    """Test that unconfigured capabilities are in-memory or unavailable."""
    settings = Settings(
        supabase_url=None,
        supabase_service_role_key=None,
        llama_cloud_api_key=None,
        deepgram_api_key=None,
    )

    assert isinstance(build_object_store(settings), InMemoryObjectStore)
    assert build_parser(settings) is None
    assert build_transcriber(settings) is None


def test_empty_secret_counts_as_missing() -> None:
    """Test that an empty key in the environment does not enable a capability."""
    assert build_parser(Settings(llama_cloud_api_key=SecretStr(""))) is None


def test_configured_keys_select_services() -> None:
    """Test that keys select the HTTP adapters."""
    settings = Settings(
        supabase_url="https://proj.supabase.co",
        supabase_service_role_key=SecretStr("service"),
        llama_cloud_api_key=SecretStr("llx"),
        deepgram_api_key=SecretStr("dg"),
    )

    assert isinstance(build_object_store(settings), SupabaseObjectStore)
    assert isinstance(build_parser(settings), LlamaParseClient)
    assert isinstance(build_transcriber(settings), DeepgramTranscriber)


def test_build_services_reports_capabilities() -> None:
    """Test wiring in mock mode and the capability report."""
    settings = Settings(
        use_mock_ai=True,
        supabase_url=None,
        llama_cloud_api_key=None,
        deepgram_api_key=None,
        embedding_dim=16,
    )
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")

    services = build_services(settings, engine=engine)

    assert isinstance(services.llm_client, DeterministicStubClient)
    assert isinstance(services.embedder, HashingEmbedder)
    assert services.capabilities() == {
        "object_store": "InMemoryObjectStore",
        "smart_extraction": "unavailable",
        "transcription": "unavailable",
        "embedding": "HashingEmbedder",
        "completion": "DeterministicStubClient",
    }
    assert not services.queue.running
