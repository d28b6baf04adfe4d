"""Text embedding clients."""

import hashlib
import logging
import math
import re
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from backend.app.config import Settings
from backend.app.errors import EmbeddingError

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+", re.UNICODE)


class Embedder(Protocol):
    """Protocol for embedding implementations."""

    dimension: int

    async def embed(self, text: str) -> list[float]:
        """Embed text into a fixed-length vector of ``dimension`` floats.

        Raises:
            EmbeddingError: If the provider call fails
        """
        ...


class HashingEmbedder:
    """Deterministic bag-of-words embedder (feature hashing, L2-normalized).

    Used in mock mode and tests: texts sharing words get high cosine
    similarity, texts without common words score close to zero.
    """

    def __init__(self, dimension: int = 1536) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        tokens = _TOKEN.findall(text.lower()) or ["<empty>"]
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "big") % self.dimension] += 1.0

        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector]


class OpenAIEmbedder:
    """OpenAI embeddings (text-embedding-3-*)."""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", dimension: int = 1536):
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=text,
                dimensions=self.dimension,
            )
        except OpenAIError as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        return list(response.data[0].embedding)


def get_embedder(settings: Settings) -> Embedder:
    """Factory function to get the embedder for the configured space."""
    api_key = settings.openai_api_key

    if not settings.use_mock_ai and api_key and api_key.get_secret_value():
        logger.info("Using OpenAI embeddings (%s)", settings.openai_embedding_model)
        return OpenAIEmbedder(
            api_key=api_key.get_secret_value(),
            model=settings.openai_embedding_model,
            dimension=settings.embedding_dim,
        )

    logger.warning("No OpenAI API key configured (or mock mode on), using hashing embedder")
    return HashingEmbedder(dimension=settings.embedding_dim)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors (0.0 when either is zero)."""
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)
