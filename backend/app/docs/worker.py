"""Ingestion queue - bounded asyncio worker pool plus a stale-processing sweep."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID

from backend.app.utils.logging import log_event

logger = logging.getLogger(__name__)

Handler = Callable[[UUID], Awaitable[Any]]
Sweep = Callable[[], Awaitable[int]]


class IngestionQueue:
    """Runs document processing off the request path.

    At most one job per document is queued or in flight. Submitting an id
    that is already queued is a no-op; submitting one that is in flight runs
    it once more after the current job finishes.
    """

    def __init__(self, workers: int = 2, sweep_interval_seconds: float = 60.0) -> None:
        self._workers = max(1, workers)
        self._sweep_interval = sweep_interval_seconds
        self._queue: asyncio.Queue[UUID] = asyncio.Queue()
        self._queued: set[UUID] = set()
        self._in_flight: set[UUID] = set()
        self._rerun: set[UUID] = set()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def submit(self, document_id: UUID) -> bool:
        """Enqueue a document for processing (non-blocking).

        Returns:
            False if the document is already queued
        """
        if document_id in self._queued:
            logger.info(f"Document {document_id} already queued, skipping")
            return False
        if document_id in self._in_flight:
            logger.info(f"Document {document_id} in flight, will run again when it finishes")
            self._rerun.add(document_id)
            return True
        self._enqueue(document_id)
        return True

    def start(self, handler: Handler, sweep: Sweep | None = None) -> None:
        """Spawn worker tasks (and the sweep task) on the running loop."""
        if self._tasks:
            return
        for index in range(self._workers):
            self._tasks.append(asyncio.create_task(self._work(handler), name=f"ingest-{index}"))
        if sweep is not None:
            self._tasks.append(asyncio.create_task(self._sweep(sweep), name="ingest-sweep"))
        log_event(logger, "Ingestion workers started", workers=self._workers)

    async def stop(self) -> None:
        """Cancel workers; documents left PROCESSING are failed by the next sweep."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        logger.info("Ingestion workers stopped")

    async def join(self) -> None:
        """Wait until every submitted document has been handled."""
        await self._queue.join()

    async def _work(self, handler: Handler) -> None:
        while True:
            document_id = await self._queue.get()
            self._queued.discard(document_id)
            self._in_flight.add(document_id)
            try:
                await handler(document_id)
            except Exception:
                # The handler records failures itself; this only guards the loop
                logger.exception(f"Unhandled error processing document {document_id}")
            finally:
                self._in_flight.discard(document_id)
                if document_id in self._rerun:
                    self._rerun.discard(document_id)
                    self._enqueue(document_id)
                self._queue.task_done()

    def _enqueue(self, document_id: UUID) -> None:
        self._queued.add(document_id)
        self._queue.put_nowait(document_id)

    async def _sweep(self, sweep: Sweep) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await sweep()
            except Exception:
                logger.exception("Stale document sweep failed")
