"""Chat domain models."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

Role = Literal["user", "assistant"]


class ChatTurn(BaseModel):
    """Single message in a conversation history."""

    role: Role
    content: str = Field(..., min_length=1)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, content: str) -> str:
        if not content.strip():
            raise ValueError("content must not be blank")
        return content


class ChatMessageOut(BaseModel):
    """Persisted chat message."""

    message_id: UUID
    session_id: UUID
    role: Role
    content: str
    rating: int | None = None
    created_at: datetime


class ChatSessionSummary(BaseModel):
    """Chat session metadata for listing."""

    session_id: UUID
    tenant_id: UUID
    agent_id: UUID | None = None
    title: str
    created_at: datetime
    updated_at: datetime
