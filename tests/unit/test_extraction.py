"""Unit tests for the extraction cascade.

External capabilities are AsyncMocks so tests can assert on call counts.
"""

import asyncio
import io
from unittest.mock import AsyncMock, MagicMock

import pytest
from pypdf import PdfWriter

from backend.app.adapters.object_store import InMemoryObjectStore
from backend.app.docs.extraction import ExtractionCascade, extract_text_fast
from backend.app.errors import CapabilityUnavailableError, ExtractionError
from backend.app.models.documents import ExtractionStrategy, MediaKind

CLEAN_TEXT = (
    "Our refund policy allows returns within thirty days of purchase. "
    "Contact support with your order number."
)


def blank_pdf() -> bytes:
    """PDF with one page and no text layer (like a scanned document)."""
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def parser() -> AsyncMock:
    mock = AsyncMock()
    mock.parse.return_value = "# Scanned page\n\n" + CLEAN_TEXT
    return mock


@pytest.fixture
def transcriber() -> AsyncMock:
    mock = AsyncMock()
    mock.transcribe.return_value = "Welcome to lesson one. Today we talk about pricing."
    return mock


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


class TestFastExtraction:
    """Test extract_text_fast."""

    def test_plain_text_decoded(self) -> None:
        """Test that .txt files are decoded as UTF-8."""
        assert extract_text_fast("olá mundo".encode(), "notes.txt") == "olá mundo"

    def test_markdown_decoded(self) -> None:
        """Test that .md files are decoded as UTF-8."""
        assert extract_text_fast(b"# Title\n\nBody", "README.md") == "# Title\n\nBody"

    def test_percent_encoding_decoded(self) -> None:
        """Test that residual percent-encoding is decoded."""
        assert extract_text_fast(b"caf%C3%A9 com leite", "menu.txt") == "café com leite"

    def test_unknown_format_returns_empty(self) -> None:
        """Test that unsupported formats yield an empty string."""
        assert extract_text_fast(b"\x00\x01\x02", "slides.pptx") == ""

    def test_blank_pdf_returns_empty(self) -> None:
        """Test that a PDF without a text layer yields no text."""
        assert extract_text_fast(blank_pdf(), "scan.pdf").strip() == ""


class TestTextCascade:
    """Test the FAST -> SMART cascade for text-bearing files."""

    @pytest.mark.asyncio
    async def test_clean_text_uses_fast_only(
        self, object_store: InMemoryObjectStore, parser: AsyncMock
    ) -> None:
        """Test that sufficient fast text never calls smart extraction."""
        cascade = ExtractionCascade(object_store, parser)

        result = await cascade.extract(CLEAN_TEXT.encode(), MediaKind.TEXT, "policy.txt")

        assert result.strategy == ExtractionStrategy.FAST
        assert result.text == CLEAN_TEXT
        assert parser.parse.await_count == 0

    @pytest.mark.asyncio
    async def test_short_fast_text_escalates_to_smart(
        self, object_store: InMemoryObjectStore, parser: AsyncMock
    ) -> None:
        """Test that fast text under the quality gate calls smart extraction once."""
        cascade = ExtractionCascade(object_store, parser, min_fast_text_chars=50)

        result = await cascade.extract(b"Page 1", MediaKind.TEXT, "short.txt", language="en")

        assert result.strategy == ExtractionStrategy.SMART
        assert CLEAN_TEXT in result.text
        parser.parse.assert_awaited_once_with(b"Page 1", "short.txt", "en")

    @pytest.mark.asyncio
    async def test_scanned_pdf_escalates_to_smart(
        self, object_store: InMemoryObjectStore, parser: AsyncMock
    ) -> None:
        """Test that a PDF with no text layer goes through smart extraction."""
        cascade = ExtractionCascade(object_store, parser)

        result = await cascade.extract(blank_pdf(), MediaKind.TEXT, "scan.pdf")

        assert result.strategy == ExtractionStrategy.SMART
        assert parser.parse.await_count == 1

    @pytest.mark.asyncio
    async def test_corrupt_pdf_fast_failure_escalates(
        self, object_store: InMemoryObjectStore, parser: AsyncMock
    ) -> None:
        """Test that a fast-path parse error is swallowed and escalates."""
        cascade = ExtractionCascade(object_store, parser)

        result = await cascade.extract(b"%PDF-1.7 truncated garbage", MediaKind.TEXT, "bad.pdf")

        assert result.strategy == ExtractionStrategy.SMART

    @pytest.mark.asyncio
    async def test_smart_not_configured_raises(self, object_store: InMemoryObjectStore) -> None:
        """Test that insufficient fast text without OCR is a capability error."""
        cascade = ExtractionCascade(object_store, parser=None)

        with pytest.raises(CapabilityUnavailableError) as exc_info:
            await cascade.extract(b"tiny", MediaKind.TEXT, "tiny.txt")

        assert isinstance(exc_info.value, ExtractionError)
        assert "not configured" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_smart_failure_raises_extraction_error(
        self, object_store: InMemoryObjectStore, parser: AsyncMock
    ) -> None:
        """Test that unexpected smart extraction errors are wrapped."""
        parser.parse.side_effect = RuntimeError("service exploded")
        cascade = ExtractionCascade(object_store, parser)

        with pytest.raises(ExtractionError, match="Smart extraction failed"):
            await cascade.extract(b"tiny", MediaKind.TEXT, "tiny.txt")

    @pytest.mark.asyncio
    async def test_smart_timeout_raises_extraction_error(
        self, object_store: InMemoryObjectStore
    ) -> None:
        """Test that the smart strategy runs under its own timeout."""

        async def slow_parse(data: bytes, file_name: str, language: str) -> str:
            await asyncio.sleep(5)
            return CLEAN_TEXT

        parser = MagicMock()
        parser.parse = slow_parse
        cascade = ExtractionCascade(object_store, parser, smart_timeout_seconds=0.01)

        with pytest.raises(ExtractionError, match="timed out"):
            await cascade.extract(b"tiny", MediaKind.TEXT, "tiny.txt")

    @pytest.mark.asyncio
    async def test_strategy_recorded_in_metrics(
        self, object_store: InMemoryObjectStore, parser: AsyncMock
    ) -> None:
        """Test that the winning strategy is counted."""
        metrics = MagicMock()
        cascade = ExtractionCascade(object_store, parser, metrics=metrics)

        await cascade.extract(CLEAN_TEXT.encode(), MediaKind.TEXT, "policy.txt")

        metrics.inc_strategy.assert_called_once_with("FAST")


class TestMediaCascade:
    """Test the transcription path for audio/video."""

    @pytest.mark.asyncio
    async def test_video_goes_straight_to_transcription(
        self,
        object_store: InMemoryObjectStore,
        parser: AsyncMock,
        transcriber: AsyncMock,
    ) -> None:
        """Test that media uses a signed URL and never the text strategies."""
        await object_store.put("tenant/lesson.mp4", b"\x00\x00video")
        cascade = ExtractionCascade(
            object_store, parser, transcriber, signed_url_ttl_seconds=120
        )

        result = await cascade.extract(
            b"", MediaKind.VIDEO, "lesson.mp4", storage_key="tenant/lesson.mp4", language="pt"
        )

        assert result.strategy == ExtractionStrategy.TRANSCRIPTION
        assert "pricing" in result.text
        transcriber.transcribe.assert_awaited_once()
        audio_url, language = transcriber.transcribe.await_args.args
        assert audio_url.startswith("memory://")
        assert "expires_in=120" in audio_url
        assert language == "pt"
        assert parser.parse.await_count == 0

    @pytest.mark.asyncio
    async def test_transcription_not_configured_raises(
        self, object_store: InMemoryObjectStore
    ) -> None:
        """Test that audio without a transcriber fails with a capability error."""
        await object_store.put("tenant/a.mp3", b"audio")
        cascade = ExtractionCascade(object_store, transcriber=None)

        with pytest.raises(CapabilityUnavailableError):
            await cascade.extract(b"", MediaKind.AUDIO, "a.mp3", storage_key="tenant/a.mp3")

    @pytest.mark.asyncio
    async def test_transcription_failure_has_no_fallback(
        self,
        object_store: InMemoryObjectStore,
        parser: AsyncMock,
        transcriber: AsyncMock,
    ) -> None:
        """Test that a transcription error fails without trying other strategies."""
        await object_store.put("tenant/a.mp3", b"audio")
        transcriber.transcribe.side_effect = ExtractionError("Transcription request failed")
        cascade = ExtractionCascade(object_store, parser, transcriber)

        with pytest.raises(ExtractionError, match="Transcription request failed"):
            await cascade.extract(b"", MediaKind.AUDIO, "a.mp3", storage_key="tenant/a.mp3")

        assert parser.parse.await_count == 0

    @pytest.mark.asyncio
    async def test_missing_object_fails_transcription(
        self, object_store: InMemoryObjectStore, transcriber: AsyncMock
    ) -> None:
        """Test that a signing failure is reported as an extraction error."""
        cascade = ExtractionCascade(object_store, transcriber=transcriber)

        with pytest.raises(ExtractionError, match="Transcription failed"):
            await cascade.extract(b"", MediaKind.AUDIO, "a.mp3", storage_key="missing.mp3")
