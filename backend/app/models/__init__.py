"""Models package - re-exports for convenience."""

from backend.app.models.access import AccessPolicy, normalize_tag
from backend.app.models.chat import ChatMessageOut, ChatSessionSummary, ChatTurn
from backend.app.models.documents import (
    DocumentStatus,
    ExtractionStrategy,
    MediaKind,
    RetrievedChunk,
    UserDocument,
)

__all__ = [
    "AccessPolicy",
    "ChatMessageOut",
    "ChatSessionSummary",
    "ChatTurn",
    "DocumentStatus",
    "ExtractionStrategy",
    "MediaKind",
    "RetrievedChunk",
    "UserDocument",
    "normalize_tag",
]
