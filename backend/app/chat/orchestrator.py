"""Chat orchestrator - session bookkeeping, retrieval and streamed answers.

One turn:
1. Resolve or create the session (title from the first message)
2. Persist the user message before generation starts
3. Retrieve context with the requester's access policy (errors -> empty context)
4. Build the system prompt (persona + context block or placeholder)
5. Stream tokens while accumulating them
6. On completion persist the assistant message and bump session recency together

A failed stream ends with STREAM_ERROR_MARKER and persists nothing.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.db.models import Agent, ChatMessage, ChatSession, Tenant, utcnow
from backend.app.docs.retriever import RetrievalEngine
from backend.app.errors import AccessDeniedError, NotFoundError
from backend.app.llm.client import ChatCompletionClient
from backend.app.models.access import AccessPolicy
from backend.app.models.chat import ChatTurn
from backend.app.models.documents import RetrievedChunk
from backend.app.utils.logging import log_event
from backend.app.utils.metrics import PipelineMetrics

logger = logging.getLogger(__name__)

NEW_SESSION = "new"

STREAM_ERROR_MARKER = "\n\n[ERROR] The response was interrupted. Please try again."

NO_DOCUMENTS_PLACEHOLDER = "No documents were found for this question."

DEFAULT_PERSONA = "You are a helpful assistant for this consultant's students."

GROUNDING_INSTRUCTIONS = (
    "Answer using the context below. If the context does not contain the answer, "
    "say that you could not find it in the available material."
)

TITLE_PROMPT = (
    "Write a short title (at most six words) for a conversation that starts with "
    "the following message. Reply with the title only."
)


@dataclass
class ChatResponse:
    """Resolved session id plus the token stream for one turn."""

    session_id: UUID
    tokens: AsyncIterator[str]
    sources: list[RetrievedChunk] = field(default_factory=list)


def build_system_prompt(persona: str, chunks: Sequence[RetrievedChunk]) -> str:
    """Persona plus a context block; the block is never omitted."""
    if chunks:
        context = "\n\n".join(
            f"[{index}] {chunk.file_name}\n{chunk.content}"
            for index, chunk in enumerate(chunks, start=1)
        )
    else:
        context = NO_DOCUMENTS_PLACEHOLDER

    return f"{persona.strip()}\n\n{GROUNDING_INSTRUCTIONS}\n\n## Context\n{context}"


def fallback_title(message: str, title_chars: int = 30) -> str:
    return message.strip()[:title_chars] + "..."


class ChatOrchestrator:
    """Runs one chat turn end to end."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retriever: RetrievalEngine,
        llm_client: ChatCompletionClient,
        *,
        title_chars: int = 30,
        persist_partial_on_abort: bool = False,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            session_factory: Factory for short-lived sessions (the stream outlives the request)
            retriever: Retrieval engine
            llm_client: Completion client (streaming + short mode)
            title_chars: Characters kept by the fallback session title
            persist_partial_on_abort: Persist accumulated text when the caller aborts
            metrics: Metrics recorder (optional, defaults to no-op)
        """
        self._session_factory = session_factory
        self._retriever = retriever
        self._llm = llm_client
        self._title_chars = title_chars
        self._persist_partial_on_abort = persist_partial_on_abort
        self._metrics = metrics or PipelineMetrics()

    async def respond(
        self,
        *,
        tenant_id: UUID,
        session_id: UUID | str | None,
        prior_messages: Sequence[ChatTurn],
        new_message: str,
        policy: AccessPolicy,
        agent_id: UUID | None = None,
        user_id: UUID | None = None,
    ) -> ChatResponse:
        """Start one turn and return the token stream.

        Everything up to the first token (session, user message, retrieval)
        happens here so the session id is known before streaming.

        Args:
            tenant_id: Tenant owning the session and documents
            session_id: Existing session id, or "new"/None to create one
            prior_messages: Conversation so far (oldest first)
            new_message: The requester's new message
            policy: Requester's access policy
            agent_id: Agent answering (optional)
            user_id: Requester id recorded on new sessions (optional)

        An existing session keeps the agent it was created with; its access
        level is checked again on every turn.

        Raises:
            NotFoundError: Unknown tenant, agent or session
            AccessDeniedError: Agent requires a higher access level
            ValueError: Empty message, or ``agent_id`` differs from the session's agent
        """
        if not new_message.strip():
            raise ValueError("new_message must not be empty")

        creating = session_id is None or session_id == NEW_SESSION
        existing_id = None if creating else _parse_session_id(session_id)

        async with self._session_factory() as db:
            tenant = await db.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFoundError(f"Tenant {tenant_id} not found")

            if existing_id is not None:
                existing = await db.get(ChatSession, existing_id)
                if existing is None or existing.tenant_id != tenant_id:
                    raise NotFoundError(f"Chat session {session_id} not found")
                if agent_id is not None and agent_id != existing.agent_id:
                    raise ValueError(f"Chat session {existing_id} belongs to a different agent")
                agent_id = existing.agent_id

            agent = await self._resolve_agent(db, tenant_id, agent_id, policy)
            persona = (agent.system_prompt if agent else None) or tenant.persona or DEFAULT_PERSONA

        # No connection is held across the title round-trip
        title = await self.generate_title(new_message) if creating else None

        async with self._session_factory() as db:
            if existing_id is None:
                chat_session = ChatSession(
                    tenant_id=tenant_id,
                    agent_id=agent_id,
                    user_id=user_id,
                    title=title,
                )
                db.add(chat_session)
                await db.flush()
                resolved_id = chat_session.session_id
            else:
                resolved_id = existing_id

            # Persisted before generation so a failed stream never loses the input
            db.add(ChatMessage(session_id=resolved_id, role="user", content=new_message))
            await db.commit()

        sources = await self._retrieve(tenant_id, new_message, policy, prior_messages)
        system_prompt = build_system_prompt(persona, sources)
        messages = [*prior_messages, ChatTurn(role="user", content=new_message)]

        log_event(
            logger,
            f"Chat turn started in session {resolved_id}",
            session_id=resolved_id,
            tenant_id=tenant_id,
            agent_id=agent_id,
            new_session=creating,
            context_chunks=len(sources),
        )
        return ChatResponse(
            session_id=resolved_id,
            tokens=self._stream(resolved_id, system_prompt, messages),
            sources=sources,
        )

    async def generate_title(self, first_message: str) -> str:
        """Short title via the completion service; falls back to a truncation."""
        try:
            title = await self._llm.complete(
                system_prompt=TITLE_PROMPT,
                messages=[ChatTurn(role="user", content=first_message)],
                max_tokens=16,
            )
        except Exception as e:
            logger.warning(f"Title generation failed: {type(e).__name__}: {e}")
            title = ""

        title = title.strip().strip('"').strip()
        return title or fallback_title(first_message, self._title_chars)

    async def _resolve_agent(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        agent_id: UUID | None,
        policy: AccessPolicy,
    ) -> Agent | None:
        if agent_id is None:
            return None

        agent = await db.get(Agent, agent_id)
        if agent is None or agent.tenant_id != tenant_id:
            raise NotFoundError(f"Agent {agent_id} not found")
        if agent.access_level > policy.level:
            raise AccessDeniedError(
                f"Agent requires access level {agent.access_level}, requester has {policy.level}"
            )
        return agent

    async def _retrieve(
        self,
        tenant_id: UUID,
        query: str,
        policy: AccessPolicy,
        history: Sequence[ChatTurn],
    ) -> list[RetrievedChunk]:
        """Retrieval is best-effort: failures degrade to an empty context."""
        try:
            return await self._retriever.retrieve(tenant_id, query, policy, history=history)
        except Exception as e:
            self._metrics.inc_retrieval_error()
            log_event(
                logger,
                f"Retrieval failed, answering without context: {e}",
                level=logging.WARNING,
                tenant_id=tenant_id,
                error_type=type(e).__name__,
            )
            return []

    async def _stream(
        self,
        session_id: UUID,
        system_prompt: str,
        messages: list[ChatTurn],
    ) -> AsyncIterator[str]:
        parts: list[str] = []
        outcome = "aborted"
        try:
            try:
                async for token in self._llm.stream_complete(
                    system_prompt=system_prompt, messages=messages
                ):
                    parts.append(token)
                    yield token
            except Exception as e:
                outcome = "error"
                log_event(
                    logger,
                    f"Completion stream failed in session {session_id}: {e}",
                    level=logging.WARNING,
                    session_id=session_id,
                    error_type=type(e).__name__,
                    partial_chars=sum(len(part) for part in parts),
                )
                yield STREAM_ERROR_MARKER
                return

            answer = "".join(parts)
            if not answer.strip():
                outcome = "error"
                logger.warning(f"Completion stream for session {session_id} was empty")
                yield STREAM_ERROR_MARKER
                return

            try:
                await self._persist_reply(session_id, answer)
            except Exception:
                outcome = "error"
                logger.exception(f"Failed to persist assistant reply for session {session_id}")
                yield STREAM_ERROR_MARKER
                return
            outcome = "completed"
        finally:
            if outcome == "aborted" and self._persist_partial_on_abort and parts:
                await asyncio.shield(self._persist_reply(session_id, "".join(parts)))
            self._metrics.inc_chat_stream(outcome)
            log_event(
                logger,
                f"Chat stream {outcome} for session {session_id}",
                session_id=session_id,
                outcome=outcome,
            )

    async def _persist_reply(self, session_id: UUID, content: str) -> None:
        """Assistant message and recency bump in one transaction."""
        async with self._session_factory() as db:
            chat_session = await db.get(ChatSession, session_id)
            if chat_session is None:
                logger.warning(f"Session {session_id} deleted before the reply finished")
                return
            db.add(ChatMessage(session_id=session_id, role="assistant", content=content))
            chat_session.updated_at = utcnow()
            await db.commit()


def _parse_session_id(session_id: UUID | str | None) -> UUID:
    if isinstance(session_id, UUID):
        return session_id
    try:
        return UUID(str(session_id))
    except ValueError as e:
        raise NotFoundError(f"Chat session {session_id} not found") from e
