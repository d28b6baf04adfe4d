"""Document domain models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class MediaKind(str, Enum):
    """Declared media kind of an uploaded file."""

    TEXT = "TEXT"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"

    @property
    def is_media(self) -> bool:
        return self in (MediaKind.AUDIO, MediaKind.VIDEO)


class DocumentStatus(str, Enum):
    """Document lifecycle status."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


class ExtractionStrategy(str, Enum):
    """Strategy that produced a document's text (chunk provenance)."""

    FAST = "FAST"
    SMART = "SMART"
    TRANSCRIPTION = "TRANSCRIPTION"


class UserDocument(BaseModel):
    """Document metadata as seen by the tenant."""

    document_id: UUID
    tenant_id: UUID
    file_name: str
    storage_key: str
    media_kind: MediaKind
    status: DocumentStatus
    access_level: int = 0
    tags: list[str] = Field(default_factory=list)
    char_count: int | None = None
    summary: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class RetrievedChunk(BaseModel):
    """Chunk returned by retrieval with its similarity score (0-1)."""

    chunk_id: UUID
    document_id: UUID
    file_name: str
    content: str
    similarity: float
    source: ExtractionStrategy | None = None
