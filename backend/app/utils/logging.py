"""Structured logging helpers for the ingestion and chat pipeline."""

import logging
from typing import Any
from uuid import UUID


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once at startup."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def log_event(
    logger: logging.Logger,
    message: str,
    *,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Log a pipeline event with structured data.

    Fields with value None are dropped. The payload is attached as
    ``record.structured`` for JSON formatters.
    """
    log_data = {
        key: str(value) if isinstance(value, UUID) else value
        for key, value in fields.items()
        if value is not None
    }
    logger.log(level, message, extra={"structured": log_data})
