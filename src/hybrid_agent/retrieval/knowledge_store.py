"""Local knowledge store: embedded documents with similarity search."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

from hybrid_agent.config import KnowledgeStoreConfig
from hybrid_agent.errors import KnowledgeStoreNotInitializedError
from hybrid_agent.ingest.embedder import Embedder
from hybrid_agent.retrieval.vector_store import VectorIndex
from hybrid_agent.types import RetrievedSource, SearchResult

logger = logging.getLogger(__name__)

NO_LOCAL_RESULTS = "No relevant documents found in local knowledge base."
_DOCUMENT_SEPARATOR = "\n\n---\n\n"


class LocalKnowledgeStore:
    """Owns a vector index collection of embedded documents.

    Documents are immutable once added and receive ids of the form
    `doc-<timestamp-ms>-<index>`. The timestamp is kept strictly increasing per
    store so repeated batches within one millisecond still get distinct ids.
    """

    def __init__(
        self,
        index: VectorIndex,
        embedder: Embedder,
        config: KnowledgeStoreConfig | None = None,
    ) -> None:
        self.index = index
        self.embedder = embedder
        self.config = config or KnowledgeStoreConfig()
        self._initialized = False
        self._last_batch_ms = 0

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        await self.index.ensure_collection()
        self._initialized = True

    async def add_documents(
        self,
        documents: list[str],
        metadatas: list[dict[str, Any]] | None = None,
    ) -> list[str]:
        """Embed and insert `documents` as one batch, returning the new ids.

        All embeddings are computed before the index is touched, so an
        embedding failure leaves the collection unchanged.
        """

        self._require_initialized()
        if metadatas is not None and len(metadatas) != len(documents):
            raise ValueError("metadatas length must match documents length")
        if not documents:
            return []

        embeddings = await self.embedder.embed_documents(documents)
        batch_ms = self._next_batch_timestamp()
        ids = [f"doc-{batch_ms}-{idx}" for idx in range(len(documents))]
        added_at = datetime.now(timezone.utc).isoformat()
        prepared = [
            _prepare_metadata(idx, added_at, metadatas[idx] if metadatas else None)
            for idx in range(len(documents))
        ]

        await self.index.add(ids, embeddings, documents, prepared)
        logger.info("Added %d documents to %s", len(documents), self.config.collection_name)
        return ids

    async def search(self, query: str) -> SearchResult:
        self._require_initialized()
        query_embedding = await self.embedder.embed_query(query)
        hits = await self.index.query(query_embedding, self.config.top_k)

        sources: list[RetrievedSource] = []
        for hit in hits:
            score = 1.0 - hit.distance if hit.distance is not None else None
            if score is not None and score < self.config.min_similarity:
                continue
            sources.append(
                RetrievedSource(
                    type="local",
                    content=hit.document,
                    score=score,
                    metadata={**hit.metadata, "id": hit.doc_id},
                )
            )

        if not sources:
            return SearchResult(content=NO_LOCAL_RESULTS, sources=[])

        content = _DOCUMENT_SEPARATOR.join(
            f"[{idx}] {source.content}" for idx, source in enumerate(sources, start=1)
        )
        return SearchResult(content=content, sources=sources)

    async def get_collection_count(self) -> int:
        if not self._initialized:
            return 0
        return await self.index.count()

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise KnowledgeStoreNotInitializedError(
                "Local knowledge store used before initialize()"
            )

    def _next_batch_timestamp(self) -> int:
        now_ms = int(time.time() * 1000)
        self._last_batch_ms = max(now_ms, self._last_batch_ms + 1)
        return self._last_batch_ms


def _prepare_metadata(
    index: int, added_at: str, metadata: dict[str, Any] | None
) -> dict[str, Any]:
    prepared: dict[str, Any] = {
        "source": "api",
        "type": "knowledge_base",
        "index": index,
        "added": added_at,
    }
    for key, value in (metadata or {}).items():
        if value is None:
            continue
        prepared[str(key)] = value if isinstance(value, (str, int, float, bool)) else str(value)
    return prepared
