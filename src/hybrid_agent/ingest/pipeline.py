"""Document ingestion: validated batches and bootstrap seeding of an empty collection."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from hybrid_agent.errors import AgentError
from hybrid_agent.retrieval.knowledge_store import LocalKnowledgeStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestResult:
    added: int
    total_documents: int
    ids: list[str]


class IngestPipeline:
    """Coordinates ingestion into the local knowledge store.

    Request-shape validation happens in the API models; this class only
    forwards well-formed batches and reports the resulting collection size.
    """

    def __init__(self, knowledge_store: LocalKnowledgeStore) -> None:
        self._store = knowledge_store

    async def ingest(
        self,
        documents: list[str],
        metadatas: list[dict[str, Any]] | None = None,
    ) -> IngestResult:
        ids = await self._store.add_documents(documents, metadatas)
        total = await self._store.get_collection_count()
        return IngestResult(added=len(ids), total_documents=total, ids=ids)

    async def seed_if_empty(self, path: str | Path) -> int:
        """Load a JSON array of strings into an empty collection.

        Returns the number of seeded documents. An unreadable or malformed
        seed file is logged and leaves the collection empty.
        """

        count = await self._store.get_collection_count()
        if count > 0:
            logger.info("Knowledge collection has %d documents, skipping seed", count)
            return 0

        seed_file = Path(path)
        logger.info("Knowledge collection is empty, loading %s", seed_file)
        try:
            documents = json.loads(seed_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not load seed file %s: %s", seed_file, exc)
            return 0

        if not isinstance(documents, list):
            logger.warning("Seed file %s must contain a JSON array", seed_file)
            return 0
        texts = [doc for doc in documents if isinstance(doc, str) and doc.strip()]
        if not texts:
            logger.warning("Seed file %s has no usable documents", seed_file)
            return 0

        added_at = datetime.now(timezone.utc).isoformat()
        metadatas = [
            {"source": seed_file.name, "type": "knowledge_base", "index": index, "added": added_at}
            for index in range(len(texts))
        ]
        try:
            await self._store.add_documents(texts, metadatas)
        except AgentError as exc:
            logger.warning("Seeding from %s failed, collection stays empty: %s", seed_file, exc)
            return 0
        logger.info("Seeded %d documents from %s", len(texts), seed_file)
        return len(texts)
