"""Smart extraction adapter using the LlamaParse REST API (OCR -> markdown)."""

import asyncio
import logging
from typing import Protocol

import httpx

from backend.app.errors import ExtractionError

logger = logging.getLogger(__name__)


class DocumentParser(Protocol):
    """OCR/markdown conversion capability."""

    async def parse(self, data: bytes, file_name: str, language: str) -> str:
        """Convert a file into markdown text.

        Raises:
            ExtractionError: If the service rejects or fails the job
        """
        ...


class LlamaParseClient:
    """LlamaParse upload -> poll job -> fetch markdown result."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.cloud.llamaindex.ai",
        poll_interval_seconds: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = f"{base_url.rstrip('/')}/api/parsing"
        self._headers = {"Authorization": f"Bearer {api_key}", "Accept": "application/json"}
        self._poll_interval = poll_interval_seconds
        self._client = client or httpx.AsyncClient(timeout=60.0)

    async def parse(self, data: bytes, file_name: str, language: str) -> str:
        try:
            job_id = await self._upload(data, file_name, language)
            await self._wait_for_job(job_id)
            return await self._fetch_markdown(job_id)
        except httpx.HTTPError as e:
            raise ExtractionError(f"Smart extraction request failed: {e}") from e

    async def _upload(self, data: bytes, file_name: str, language: str) -> str:
        response = await self._client.post(
            f"{self._base_url}/upload",
            headers=self._headers,
            files={"file": (file_name, data)},
            data={"language": language, "result_type": "markdown"},
        )
        response.raise_for_status()
        job_id: str = response.json()["id"]
        logger.info(f"LlamaParse job {job_id} created for {file_name}")
        return job_id

    async def _wait_for_job(self, job_id: str) -> None:
        # Overall deadline is enforced by the caller's timeout
        while True:
            response = await self._client.get(
                f"{self._base_url}/job/{job_id}", headers=self._headers
            )
            response.raise_for_status()
            status = response.json().get("status", "")

            if status == "SUCCESS":
                return
            if status in ("ERROR", "CANCELED"):
                raise ExtractionError(f"Smart extraction job {job_id} ended with status {status}")

            await asyncio.sleep(self._poll_interval)

    async def _fetch_markdown(self, job_id: str) -> str:
        response = await self._client.get(
            f"{self._base_url}/job/{job_id}/result/markdown", headers=self._headers
        )
        response.raise_for_status()
        return str(response.json().get("markdown", ""))

    async def aclose(self) -> None:
        await self._client.aclose()
