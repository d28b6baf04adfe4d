"""Extraction cascade - fast local parse, smart OCR fallback, transcription.

Strategy order for text-bearing files:
- FAST: local raw-text parse (PDF via pypdf, TXT/MD via UTF-8), no network
- SMART: hosted OCR/markdown conversion, only when FAST yields fewer than
  ``min_fast_text_chars`` characters (likely a scanned document)

Audio/video goes straight to TRANSCRIPTION through a signed URL; there is no
fallback for that kind.
"""

import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import unquote

from pypdf import PdfReader

from backend.app.adapters.object_store import ObjectStore
from backend.app.adapters.ocr import DocumentParser
from backend.app.adapters.transcription import Transcriber
from backend.app.errors import CapabilityUnavailableError, ExtractionError
from backend.app.models.documents import ExtractionStrategy, MediaKind
from backend.app.utils.logging import log_event
from backend.app.utils.metrics import PipelineMetrics

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = frozenset({".txt", ".md", ".markdown", ".csv"})


@dataclass(frozen=True)
class ExtractionResult:
    """Extracted text plus the strategy that produced it."""

    text: str
    strategy: ExtractionStrategy


def extract_text_fast(data: bytes, file_name: str) -> str:
    """Local, cost-free text extraction.

    Returns an empty string for formats it does not understand.

    Raises:
        pypdf.errors.PdfReadError: On unreadable PDFs (handled by the cascade)
    """
    suffix = PurePosixPath(file_name).suffix.lower()

    if data.startswith(b"%PDF") or suffix == ".pdf":
        reader = PdfReader(io.BytesIO(data))
        text = "\n".join(page.extract_text() or "" for page in reader.pages)
    elif suffix in TEXT_SUFFIXES:
        text = data.decode("utf-8", errors="replace")
    else:
        return ""

    # Some PDF producers leave percent-encoded sequences in the text layer
    return unquote(text)


class ExtractionCascade:
    """Produces a best-effort text rendition of a stored file."""

    def __init__(
        self,
        object_store: ObjectStore,
        parser: DocumentParser | None = None,
        transcriber: Transcriber | None = None,
        *,
        min_fast_text_chars: int = 50,
        signed_url_ttl_seconds: int = 600,
        fast_timeout_seconds: float = 30.0,
        smart_timeout_seconds: float = 180.0,
        transcription_timeout_seconds: float = 900.0,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        """Initialize cascade.

        Args:
            object_store: Store used to sign URLs for transcription
            parser: Smart extraction capability (None when not configured)
            transcriber: Transcription capability (None when not configured)
            min_fast_text_chars: Quality gate for the fast strategy
            signed_url_ttl_seconds: Lifetime of URLs handed to the transcriber
            fast_timeout_seconds: Timeout for local parsing
            smart_timeout_seconds: Timeout for the OCR job (upload to result)
            transcription_timeout_seconds: Timeout for transcription
            metrics: Metrics recorder (optional, defaults to no-op)
        """
        self._object_store = object_store
        self._parser = parser
        self._transcriber = transcriber
        self._min_fast_text_chars = min_fast_text_chars
        self._signed_url_ttl = signed_url_ttl_seconds
        self._fast_timeout = fast_timeout_seconds
        self._smart_timeout = smart_timeout_seconds
        self._transcription_timeout = transcription_timeout_seconds
        self._metrics = metrics or PipelineMetrics()

    async def extract(
        self,
        data: bytes,
        kind: MediaKind,
        file_name: str,
        *,
        storage_key: str | None = None,
        language: str = "pt",
    ) -> ExtractionResult:
        """Run the cascade for one file.

        Args:
            data: Raw file bytes (unused for audio/video)
            kind: Declared media kind
            file_name: Display file name (used for format detection)
            storage_key: Object store key (required for audio/video)
            language: Tenant language for OCR/transcription

        Returns:
            ExtractionResult; text may be short or empty, the caller applies
            the final validation gate

        Raises:
            ExtractionError: Transcription failed, or FAST was insufficient and
                SMART is unavailable or failed
        """
        if kind.is_media:
            result = await self._transcribe(storage_key, file_name, language)
        else:
            fast_text = await self._extract_fast(data, file_name)
            fast_len = len(fast_text.strip())

            if fast_len >= self._min_fast_text_chars:
                result = ExtractionResult(text=fast_text, strategy=ExtractionStrategy.FAST)
            else:
                log_event(
                    logger,
                    f"Fast extraction insufficient for {file_name}, escalating to smart",
                    file_name=file_name,
                    fast_chars=fast_len,
                )
                smart_text = await self._extract_smart(data, file_name, language, fast_len)
                result = ExtractionResult(text=smart_text, strategy=ExtractionStrategy.SMART)

        self._metrics.inc_strategy(result.strategy.value)
        log_event(
            logger,
            f"Extraction via {result.strategy.value} for {file_name}",
            file_name=file_name,
            strategy=result.strategy.value,
            chars=len(result.text),
        )
        return result

    async def _extract_fast(self, data: bytes, file_name: str) -> str:
        """FAST strategy. Never raises; failures yield an empty string."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(extract_text_fast, data, file_name),
                timeout=self._fast_timeout,
            )
        except Exception as e:
            logger.warning(f"Fast extraction failed for {file_name}: {type(e).__name__}: {e}")
            return ""

    async def _extract_smart(
        self, data: bytes, file_name: str, language: str, fast_len: int
    ) -> str:
        """SMART strategy (hosted OCR/markdown)."""
        if self._parser is None:
            raise CapabilityUnavailableError(
                f"Fast extraction yielded only {fast_len} characters and smart "
                "extraction (OCR) is not configured"
            )

        try:
            return await asyncio.wait_for(
                self._parser.parse(data, file_name, language),
                timeout=self._smart_timeout,
            )
        except TimeoutError as e:
            raise ExtractionError(
                f"Smart extraction timed out after {self._smart_timeout:.0f}s"
            ) from e
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Smart extraction failed: {e}") from e

    async def _transcribe(
        self, storage_key: str | None, file_name: str, language: str
    ) -> ExtractionResult:
        """TRANSCRIPTION strategy for audio/video."""
        if self._transcriber is None:
            raise CapabilityUnavailableError(
                "Transcription is not configured; audio/video documents cannot be processed"
            )
        if not storage_key:
            raise ExtractionError(f"No storage key for media file {file_name}")

        try:
            audio_url = await self._object_store.signed_url(storage_key, self._signed_url_ttl)
            text = await asyncio.wait_for(
                self._transcriber.transcribe(audio_url, language),
                timeout=self._transcription_timeout,
            )
        except TimeoutError as e:
            raise ExtractionError(
                f"Transcription timed out after {self._transcription_timeout:.0f}s"
            ) from e
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Transcription failed: {e}") from e

        return ExtractionResult(text=text, strategy=ExtractionStrategy.TRANSCRIPTION)
