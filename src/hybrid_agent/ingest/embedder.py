"""Embedding abstractions, the cache-assisted runtime embedder and a deterministic baseline."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from hashlib import blake2b, sha256
from math import sqrt
from typing import Literal

from hybrid_agent.cache import BoundedCache
from hybrid_agent.config import CacheConfig
from hybrid_agent.llm.client import GenerationClient


class Embedder(ABC):
    """Embedder interface used by ingestion and local search."""

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed one text."""

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts concurrently; any failure fails the whole batch."""
        return list(await asyncio.gather(*(self.embed_query(text) for text in texts)))


class CachedEmbedder(Embedder):
    """Embeds through the LLM runtime, remembering recent vectors.

    With the default `prefix` key strategy the cache key is the first
    `embedding_cache_prefix_chars` characters of the text, so two long texts
    sharing that prefix share one vector. The `sha256` strategy keys on the
    full text instead.
    """

    def __init__(
        self,
        client: GenerationClient,
        *,
        model: str | None = None,
        cache_config: CacheConfig | None = None,
    ) -> None:
        self.client = client
        self.model = model
        config = cache_config or CacheConfig()
        self.key_strategy: Literal["prefix", "sha256"] = config.embedding_cache_key
        self.prefix_chars = config.embedding_cache_prefix_chars
        self._cache: BoundedCache[str, list[float]] = BoundedCache(config.embedding_cache_size)

    def cache_key(self, text: str) -> str:
        if self.key_strategy == "sha256":
            return sha256(text.encode("utf-8")).hexdigest()
        return text[: self.prefix_chars]

    async def embed_query(self, text: str) -> list[float]:
        key = self.cache_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        vector = await self.client.embed(text, self.model)
        self._cache.set(key, vector)
        return vector

    @property
    def cache_size(self) -> int:
        return len(self._cache)


class HashingEmbedder(Embedder):
    """Deterministic bag-of-tokens embedding without runtime calls.

    Used by tests and for offline development against the in-memory index.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in text.lower().split():
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            vector[idx] += -1.0 if digest[4] % 2 else 1.0

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]
