"""Object store adapters (Supabase Storage REST API and in-memory)."""

from typing import Protocol
from urllib.parse import quote

import httpx

from backend.app.errors import ObjectStoreError


class ObjectStore(Protocol):
    """Object store with signed URLs."""

    async def put(self, key: str, data: bytes, content_type: str | None = None) -> None: ...

    async def get(self, key: str) -> bytes: ...

    async def signed_url(self, key: str, ttl_seconds: int) -> str: ...

    async def delete(self, key: str) -> None: ...


class SupabaseObjectStore:
    """Supabase Storage bucket accessed with the service role key."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "documents",
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        """Initialize store.

        Args:
            base_url: Project URL (e.g. https://xyz.supabase.co)
            service_key: Service role key
            bucket: Storage bucket name
            client: Optional httpx client (for testing with mocks)
            timeout_seconds: Per-request timeout
        """
        self._storage_url = f"{base_url.rstrip('/')}/storage/v1"
        self._bucket = bucket
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    def _object_url(self, key: str) -> str:
        return f"{self._storage_url}/object/{self._bucket}/{quote(key)}"

    async def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        headers = {
            **self._headers,
            "Content-Type": content_type or "application/octet-stream",
            "x-upsert": "true",
        }
        response = await self._client.post(self._object_url(key), content=data, headers=headers)
        self._raise_for_status(response, f"upload {key}")

    async def get(self, key: str) -> bytes:
        response = await self._client.get(self._object_url(key), headers=self._headers)
        self._raise_for_status(response, f"download {key}")
        return response.content

    async def signed_url(self, key: str, ttl_seconds: int) -> str:
        response = await self._client.post(
            f"{self._storage_url}/object/sign/{self._bucket}/{quote(key)}",
            json={"expiresIn": ttl_seconds},
            headers=self._headers,
        )
        self._raise_for_status(response, f"sign {key}")
        # Response: {"signedURL": "/object/sign/<bucket>/<key>?token=..."}
        signed_path = response.json()["signedURL"]
        return f"{self._storage_url}{signed_path}"

    async def delete(self, key: str) -> None:
        response = await self._client.request(
            "DELETE",
            f"{self._storage_url}/object/{self._bucket}",
            json={"prefixes": [key]},
            headers=self._headers,
        )
        self._raise_for_status(response, f"delete {key}")

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ObjectStoreError(
                f"Storage {action} failed with HTTP {response.status_code}"
            ) from e


class InMemoryObjectStore:
    """In-memory implementation of ObjectStore (dev/mock mode and tests)."""

    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        self._objects[key] = data

    async def get(self, key: str) -> bytes:
        if key not in self._objects:
            raise ObjectStoreError(f"Storage download {key} failed: object not found")
        return self._objects[key]

    async def signed_url(self, key: str, ttl_seconds: int) -> str:
        if key not in self._objects:
            raise ObjectStoreError(f"Storage sign {key} failed: object not found")
        return f"memory://{quote(key)}?expires_in={ttl_seconds}"

    async def delete(self, key: str) -> None:
        self._objects.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._objects
