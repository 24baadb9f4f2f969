"""Nearest-neighbour index contract and concrete adapters."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from math import sqrt
from typing import Any, Protocol

from hybrid_agent.config import KnowledgeStoreConfig
from hybrid_agent.errors import BackendUnavailableError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexHit:
    """One neighbour returned by the index, nearest first."""

    doc_id: str
    document: str
    metadata: dict[str, Any]
    distance: float | None


class VectorIndex(Protocol):
    """Minimal black-box index contract used by the knowledge store."""

    async def ensure_collection(self) -> None:
        """Create the backing collection if it does not exist yet."""

    async def add(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict[str, Any]],
    ) -> None:
        """Insert one batch of embedded documents."""

    async def query(self, embedding: list[float], n_results: int) -> list[IndexHit]:
        """Return up to `n_results` neighbours ordered by increasing distance."""

    async def count(self) -> int:
        """Number of stored documents."""


@dataclass(slots=True)
class _StoredVector:
    doc_id: str
    document: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


class InMemoryVectorIndex:
    """Deterministic cosine-distance index used for tests and offline runs."""

    def __init__(self, collection_name: str = "local_docs") -> None:
        self.collection_name = collection_name
        self.created = False
        self._store: dict[str, _StoredVector] = {}

    async def ensure_collection(self) -> None:
        if not self.created:
            logger.info("Created in-memory collection: %s", self.collection_name)
        self.created = True

    async def add(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict[str, Any]],
    ) -> None:
        if not (len(ids) == len(embeddings) == len(documents) == len(metadatas)):
            raise ValueError("ids, embeddings, documents and metadatas must have the same length")
        for doc_id, embedding, document, metadata in zip(
            ids, embeddings, documents, metadatas, strict=True
        ):
            if doc_id in self._store:
                raise ValueError(f"Duplicate document id: {doc_id}")
            self._store[doc_id] = _StoredVector(
                doc_id=doc_id, document=document, embedding=embedding, metadata=dict(metadata)
            )

    async def query(self, embedding: list[float], n_results: int) -> list[IndexHit]:
        ranked = sorted(
            (
                IndexHit(
                    doc_id=record.doc_id,
                    document=record.document,
                    metadata=dict(record.metadata),
                    distance=_cosine_distance(embedding, record.embedding),
                )
                for record in self._store.values()
            ),
            key=lambda hit: hit.distance if hit.distance is not None else float("inf"),
        )
        return ranked[:n_results]

    async def count(self) -> int:
        return len(self._store)


class ChromaVectorIndex:
    """ChromaDB HTTP adapter using the async client and cosine space."""

    def __init__(self, config: KnowledgeStoreConfig) -> None:
        self.config = config
        self._client: Any | None = None
        self._collection: Any | None = None

    async def ensure_collection(self) -> None:
        import chromadb
        from chromadb.config import Settings

        try:
            if self._client is None:
                self._client = await chromadb.AsyncHttpClient(
                    host=self.config.host,
                    port=self.config.port,
                    ssl=self.config.ssl,
                    settings=Settings(anonymized_telemetry=False),
                )
            self._collection = await self._client.get_or_create_collection(
                name=self.config.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
            count = await self._collection.count()
        except Exception as exc:
            raise BackendUnavailableError(
                f"Vector index unavailable at {self._endpoint}: {exc}"
            ) from exc
        logger.info(
            "Collection %s ready with %d documents", self.config.collection_name, count
        )

    async def add(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict[str, Any]],
    ) -> None:
        collection = self._require_collection()
        try:
            await collection.add(
                ids=ids, embeddings=embeddings, documents=documents, metadatas=metadatas
            )
        except Exception as exc:
            raise BackendUnavailableError(f"Vector index add failed: {exc}") from exc

    async def query(self, embedding: list[float], n_results: int) -> list[IndexHit]:
        collection = self._require_collection()
        try:
            results = await collection.query(
                query_embeddings=[embedding],
                n_results=n_results,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise BackendUnavailableError(f"Vector index query failed: {exc}") from exc

        ids = _first_row(results.get("ids"))
        documents = _first_row(results.get("documents"))
        metadatas = _first_row(results.get("metadatas"))
        distances = _first_row(results.get("distances"))

        hits: list[IndexHit] = []
        for idx, document in enumerate(documents):
            if not document:
                continue
            distance = distances[idx] if idx < len(distances) else None
            hits.append(
                IndexHit(
                    doc_id=str(ids[idx]) if idx < len(ids) else f"hit-{idx}",
                    document=str(document),
                    metadata=dict(metadatas[idx] or {}) if idx < len(metadatas) else {},
                    distance=float(distance) if distance is not None else None,
                )
            )
        return hits

    async def count(self) -> int:
        collection = self._require_collection()
        try:
            return int(await collection.count())
        except Exception as exc:
            raise BackendUnavailableError(f"Vector index count failed: {exc}") from exc

    @property
    def _endpoint(self) -> str:
        scheme = "https" if self.config.ssl else "http"
        return f"{scheme}://{self.config.host}:{self.config.port}"

    def _require_collection(self) -> Any:
        if self._collection is None:
            raise BackendUnavailableError("Chroma collection is not connected")
        return self._collection


def _first_row(rows: Any) -> list[Any]:
    if not rows:
        return []
    return list(rows[0] or [])


def _cosine_distance(a: list[float], b: list[float]) -> float | None:
    if not a or not b or len(a) != len(b):
        return None
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return None
    return 1.0 - numerator / (norm_a * norm_b)
