"""Query embeddings for the ranked-search RPC.

The search function compares stored title embeddings against a query vector, so
every search call needs one. Vectors come from an OpenAI-compatible embeddings
endpoint and must match the stored dimension (1024 by default).
"""
from __future__ import annotations

from collections import OrderedDict

import openai
from loguru import logger

from billbot.config import settings

CACHE_SIZE = 256


def get_client() -> openai.AsyncOpenAI:
    if not settings.embedding_api_key:
        raise RuntimeError("Embeddings not configured. Set EMBEDDING_API_KEY in .env")
    return openai.AsyncOpenAI(
        api_key=settings.embedding_api_key,
        base_url=settings.embedding_base_url,
    )


class QueryEmbedder:
    """Embeds search queries, remembering recent ones since refinements repeat them."""

    def __init__(
        self,
        *,
        model: str | None = None,
        dimensions: int | None = None,
        client: openai.AsyncOpenAI | None = None,
    ):
        self.model = model or settings.embedding_model
        self.dimensions = dimensions if dimensions is not None else settings.embedding_dimensions
        self._client = client
        self._cache: OrderedDict[str, list[float]] = OrderedDict()

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = get_client()
        return self._client

    async def embed(self, text: str) -> list[float]:
        key = text.strip().lower()
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        kwargs = {"model": self.model, "input": text}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        response = await self.client.embeddings.create(**kwargs)
        vector = [float(v) for v in response.data[0].embedding]
        if self.dimensions and len(vector) != self.dimensions:
            raise ValueError(f"Embedding has {len(vector)} dimensions, expected {self.dimensions}")

        self._cache[key] = vector
        while len(self._cache) > CACHE_SIZE:
            self._cache.popitem(last=False)
        logger.debug(f"Embedded query '{text[:60]}' with {self.model}")
        return vector
