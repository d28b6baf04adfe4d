"""Document endpoints - registration, status polling, reprocess, delete, search."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from backend.app.api.auth import get_access_policy, get_current_context
from backend.app.db.context import RequestContext
from backend.app.errors import NotFoundError, RetrievalError
from backend.app.models.access import AccessPolicy
from backend.app.models.documents import (
    DocumentStatus,
    MediaKind,
    RetrievedChunk,
    UserDocument,
)
from backend.app.services import Services, get_services

router = APIRouter(prefix="/documents", tags=["documents"])


class RegisterDocumentRequest(BaseModel):
    """Request body for POST /documents/register (file already uploaded)."""

    file_name: str = Field(..., min_length=1, max_length=500)
    storage_key: str = Field(..., min_length=1, description="Object store key of the upload")
    media_kind: MediaKind = MediaKind.TEXT
    access_level: int = Field(0, ge=0)
    tags: list[str] = Field(default_factory=list)


class RegisterDocumentResponse(BaseModel):
    """Response for POST /documents/register and /reprocess."""

    document_id: UUID
    status: DocumentStatus


class ReprocessRequest(BaseModel):
    """Optional access changes applied together with the reindex."""

    access_level: int | None = Field(None, ge=0)
    tags: list[str] | None = None


class DocumentListResponse(BaseModel):
    """Response for GET /documents."""

    documents: list[UserDocument]


class DocumentSearchResponse(BaseModel):
    """Response for GET /documents/search."""

    query: str
    matches: list[RetrievedChunk]


@router.post(
    "/register",
    response_model=RegisterDocumentResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def register_document(
    request: RegisterDocumentRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> RegisterDocumentResponse:
    """Register an uploaded file; processing continues in the background.

    Returns:
        Document id with status PENDING (poll GET /documents/{id})
    """
    try:
        document = await services.lifecycle.register(
            tenant_id=ctx.tenant_id,
            file_name=request.file_name,
            storage_key=request.storage_key,
            media_kind=request.media_kind,
            access_level=request.access_level,
            tags=request.tags,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return RegisterDocumentResponse(document_id=document.document_id, status=document.status)


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> DocumentListResponse:
    """List the tenant's documents, newest first, with status and error message."""
    documents = await services.lifecycle.list_documents(ctx.tenant_id)
    return DocumentListResponse(documents=documents)


@router.get("/search", response_model=DocumentSearchResponse)
async def search_documents(
    q: Annotated[str, Query(min_length=1, description="Search query")],
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    policy: Annotated[AccessPolicy, Depends(get_access_policy)],
    services: Annotated[Services, Depends(get_services)],
    limit: Annotated[int, Query(ge=1, le=20)] = 5,
) -> DocumentSearchResponse:
    """Similarity search within the requester's access scope."""
    try:
        matches = await services.retriever.retrieve(ctx.tenant_id, q, policy, top_k=limit)
    except RetrievalError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)
        ) from e

    return DocumentSearchResponse(query=q, matches=matches)


@router.get("/{document_id}", response_model=UserDocument)
async def get_document(
    document_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> UserDocument:
    """Get one document (status polling)."""
    try:
        return await services.lifecycle.get_document(ctx.tenant_id, document_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.post(
    "/{document_id}/reprocess",
    response_model=RegisterDocumentResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reprocess_document(
    document_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
    request: ReprocessRequest | None = None,
) -> RegisterDocumentResponse:
    """Re-run ingestion, optionally changing access level and tags."""
    changes = request or ReprocessRequest()
    try:
        document = await services.lifecycle.reprocess(
            ctx.tenant_id,
            document_id,
            access_level=changes.access_level,
            tags=changes.tags,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return RegisterDocumentResponse(document_id=document.document_id, status=document.status)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[Services, Depends(get_services)],
) -> Response:
    """Delete a document, its chunks and its stored file."""
    try:
        await services.lifecycle.delete(ctx.tenant_id, document_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return Response(status_code=status.HTTP_204_NO_CONTENT)
