"""FastAPI application - knowledge agent ingestion and chat API."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.app.api.routes.chat import router as chat_router
from backend.app.api.routes.documents import router as documents_router
from backend.app.api.routes.health import router as health_router
from backend.app.api.routes.metrics import router as metrics_router
from backend.app.config import get_settings
from backend.app.services import get_services
from backend.app.utils.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start ingestion workers on startup; stop them and close clients on shutdown."""
    configure_logging(get_settings().log_level)
    services = app.dependency_overrides.get(get_services, get_services)()
    await services.start()
    logger.info("Knowledge Agents API started")
    try:
        yield
    finally:
        await services.aclose()


app = FastAPI(title="Knowledge Agents API", version="0.1.0", lifespan=lifespan)

# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(documents_router, tags=["documents"])
app.include_router(chat_router, tags=["chat"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Knowledge Agents API", "version": "0.1.0"}
