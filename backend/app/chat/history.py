"""Chat history queries - sessions by recency, messages, feedback."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.db.models import ChatMessage, ChatSession
from backend.app.errors import NotFoundError
from backend.app.models.chat import ChatMessageOut, ChatSessionSummary


def _to_summary(chat_session: ChatSession) -> ChatSessionSummary:
    return ChatSessionSummary(
        session_id=chat_session.session_id,
        tenant_id=chat_session.tenant_id,
        agent_id=chat_session.agent_id,
        title=chat_session.title,
        created_at=chat_session.created_at,
        updated_at=chat_session.updated_at,
    )


def _to_message(message: ChatMessage) -> ChatMessageOut:
    return ChatMessageOut(
        message_id=message.message_id,
        session_id=message.session_id,
        role=message.role,  # type: ignore[arg-type]
        content=message.content,
        rating=message.rating,
        created_at=message.created_at,
    )


class ChatHistory:
    """Tenant-scoped read/update access to chat sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_sessions(
        self,
        tenant_id: UUID,
        *,
        user_id: UUID | None = None,
        agent_id: UUID | None = None,
        limit: int = 50,
    ) -> list[ChatSessionSummary]:
        """List sessions, most recently active first."""
        stmt = select(ChatSession).where(ChatSession.tenant_id == tenant_id)
        if user_id is not None:
            stmt = stmt.where(ChatSession.user_id == user_id)
        if agent_id is not None:
            stmt = stmt.where(ChatSession.agent_id == agent_id)
        stmt = stmt.order_by(ChatSession.updated_at.desc()).limit(limit)

        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [_to_summary(chat_session) for chat_session in result.scalars().all()]

    async def get_messages(self, tenant_id: UUID, session_id: UUID) -> list[ChatMessageOut]:
        """Messages of one session in chronological order.

        Raises:
            NotFoundError: If the session does not exist for this tenant
        """
        async with self._session_factory() as db:
            await self._get_owned(db, tenant_id, session_id)
            result = await db.execute(
                select(ChatMessage)
                .where(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.created_at, ChatMessage.role.desc())
            )
            return [_to_message(message) for message in result.scalars().all()]

    async def delete_session(self, tenant_id: UUID, session_id: UUID) -> None:
        """Delete a session and its messages.

        Raises:
            NotFoundError: If the session does not exist for this tenant
        """
        async with self._session_factory() as db:
            chat_session = await self._get_owned(db, tenant_id, session_id)
            # Load messages so the ORM cascade removes them on every dialect
            await db.refresh(chat_session, ["messages"])
            await db.delete(chat_session)
            await db.commit()

    async def rate_message(self, tenant_id: UUID, message_id: UUID, rating: int) -> ChatMessageOut:
        """Record like (1) or dislike (-1) on an assistant message.

        Raises:
            NotFoundError: If the message does not exist for this tenant
            ValueError: If rating is not 1 or -1, or the message is not an answer
        """
        if rating not in (1, -1):
            raise ValueError("rating must be 1 or -1")

        async with self._session_factory() as db:
            message = await db.get(ChatMessage, message_id)
            if message is None:
                raise NotFoundError(f"Message {message_id} not found")
            await self._get_owned(db, tenant_id, message.session_id)
            if message.role != "assistant":
                raise ValueError("only assistant messages can be rated")

            message.rating = rating
            await db.commit()
            return _to_message(message)

    @staticmethod
    async def _get_owned(db: AsyncSession, tenant_id: UUID, session_id: UUID) -> ChatSession:
        chat_session = await db.get(ChatSession, session_id)
        if chat_session is None or chat_session.tenant_id != tenant_id:
            raise NotFoundError(f"Chat session {session_id} not found")
        return chat_session
