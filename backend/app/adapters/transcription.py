"""Transcription adapter using the Deepgram pre-recorded API (URL source)."""

from typing import Protocol

import httpx

from backend.app.errors import ExtractionError


class Transcriber(Protocol):
    """Audio/video transcription capability."""

    async def transcribe(self, audio_url: str, language: str) -> str:
        """Transcribe the media behind ``audio_url``.

        Raises:
            ExtractionError: If the service fails
        """
        ...


class DeepgramTranscriber:
    """Deepgram transcription with punctuation and smart formatting."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.deepgram.com",
        model: str = "nova-2",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/v1/listen"
        self._headers = {"Authorization": f"Token {api_key}"}
        self._model = model
        # Long media can take minutes; the caller applies the strategy timeout
        self._client = client or httpx.AsyncClient(timeout=None)

    async def transcribe(self, audio_url: str, language: str) -> str:
        params = {
            "model": self._model,
            "language": language,
            "punctuate": "true",
            "smart_format": "true",
            "paragraphs": "true",
        }
        try:
            response = await self._client.post(
                self._url, params=params, json={"url": audio_url}, headers=self._headers
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExtractionError(f"Transcription request failed: {e}") from e

        # Response structure: {results: {channels: [{alternatives: [{transcript: ...}]}]}}
        try:
            channels = response.json()["results"]["channels"]
            return "\n".join(channel["alternatives"][0]["transcript"] for channel in channels)
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionError("Transcription response had an unexpected shape") from e

    async def aclose(self) -> None:
        await self._client.aclose()
