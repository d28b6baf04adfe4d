"""Chat endpoints - streamed turns, session history, feedback."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator

from backend.app.api.auth import get_access_policy, get_current_context
from backend.app.chat.orchestrator import NEW_SESSION
from backend.app.db.context import RequestContext
from backend.app.errors import AccessDeniedError, NotFoundError
from backend.app.models.access import AccessPolicy
from backend.app.models.chat import ChatMessageOut, ChatSessionSummary, ChatTurn
from backend.app.services import Services, get_services

router = APIRouter(prefix="/chat", tags=["chat"])


class ChatRequest(BaseModel):
    """Request body for POST /chat.

    ``messages`` is the whole conversation; the last entry is the new user
    message and the rest is prior history.
    """

    session_id: str = Field(NEW_SESSION, description='Existing session id or "new"')
    agent_id: UUID | None = None
    messages: list[ChatTurn] = Field(..., min_length=1)

    @field_validator("messages")
    @classmethod
    def _last_message_from_user(cls, messages: list[ChatTurn]) -> list[ChatTurn]:
        if messages[-1].role != "user":
            raise ValueError("last message must come from the user")
        return messages


class SessionListResponse(BaseModel):
    """Response for GET /chat/sessions."""

    sessions: list[ChatSessionSummary]


class MessageListResponse(BaseModel):
    """Response for GET /chat/sessions/{id}/messages."""

    session_id: UUID
    messages: list[ChatMessageOut]


class FeedbackRequest(BaseModel):
    """Request body for POST /chat/feedback."""

    message_id: UUID
    rating: int = Field(..., description="1 (like) or -1 (dislike)")

    @field_validator("rating")
    @classmethod
    def _like_or_dislike(cls, rating: int) -> int:
        if rating not in (1, -1):
            raise ValueError("rating must be 1 or -1")
        return rating


@router.post("")
async def chat(
    request: ChatRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    policy: Annotated[AccessPolicy, Depends(get_access_policy)],
    services: Annotated[Services, Depends(get_services)],
) -> StreamingResponse:
    """Stream an answer as plain text.

    The resolved session id is returned in the ``X-Session-Id`` header so a
    "new" conversation can continue in the same session. A failed stream
    ends with an error marker line.
    """
    try:
        response = await services.orchestrator.respond(
            tenant_id=ctx.tenant_id,
            session_id=request.session_id,
            prior_messages=request.messages[:-1],
            new_message=request.messages[-1].content,
            policy=policy,
            agent_id=request.agent_id,
            user_id=ctx.user_id,
        )
    except AccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return StreamingResponse(
        response.tokens,
        media_type="text/plain; charset=utf-8",
        headers={"X-Session-Id": str(response.session_id)},
    )


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
    agent_id: UUID | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> SessionListResponse:
    """List the requester's sessions, most recently active first."""
    sessions = await services.history.list_sessions(
        ctx.tenant_id, user_id=ctx.user_id, agent_id=agent_id, limit=limit
    )
    return SessionListResponse(sessions=sessions)


@router.get("/sessions/{session_id}/messages", response_model=MessageListResponse)
async def get_session_messages(
    session_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> MessageListResponse:
    """Messages of one session in chronological order."""
    try:
        messages = await services.history.get_messages(ctx.tenant_id, session_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return MessageListResponse(session_id=session_id, messages=messages)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> Response:
    """Delete a session and all of its messages."""
    try:
        await services.history.delete_session(ctx.tenant_id, session_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/feedback", response_model=ChatMessageOut)
async def submit_feedback(
    request: FeedbackRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> ChatMessageOut:
    """Like or dislike an assistant message."""
    try:
        return await services.history.rate_message(
            ctx.tenant_id, request.message_id, request.rating
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
