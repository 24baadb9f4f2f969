import pytest

from hybrid_agent.config import KnowledgeStoreConfig
from hybrid_agent.errors import GenerationError, KnowledgeStoreNotInitializedError
from hybrid_agent.ingest.embedder import Embedder, HashingEmbedder
from hybrid_agent.retrieval.knowledge_store import NO_LOCAL_RESULTS, LocalKnowledgeStore
from hybrid_agent.retrieval.vector_store import IndexHit, InMemoryVectorIndex


class _FixedHitsIndex:
    def __init__(self, hits: list[IndexHit]) -> None:
        self.hits = hits
        self.requested: list[int] = []

    async def ensure_collection(self) -> None:
        return None

    async def add(self, ids, embeddings, documents, metadatas) -> None:
        raise AssertionError("not used")

    async def query(self, embedding: list[float], n_results: int) -> list[IndexHit]:
        self.requested.append(n_results)
        return self.hits[:n_results]

    async def count(self) -> int:
        return len(self.hits)


class _FailingEmbedder(Embedder):
    async def embed_query(self, text: str) -> list[float]:
        raise GenerationError("runtime down")


async def _store(index=None, embedder=None, **config) -> LocalKnowledgeStore:
    store = LocalKnowledgeStore(
        index or InMemoryVectorIndex(),
        embedder or HashingEmbedder(),
        KnowledgeStoreConfig(**config),
    )
    await store.initialize()
    return store


async def test_low_similarity_hits_are_dropped() -> None:
    index = _FixedHitsIndex(
        [
            IndexHit(doc_id="doc-1-0", document="close match", metadata={"source": "a"}, distance=0.1),
            IndexHit(doc_id="doc-1-1", document="far match", metadata={"source": "b"}, distance=0.9),
        ]
    )
    store = await _store(index, min_similarity=0.3, top_k=5)

    result = await store.search("query")

    assert index.requested == [5]
    assert [source.content for source in result.sources] == ["close match"]
    assert result.sources[0].score == pytest.approx(0.9)
    assert result.sources[0].type == "local"
    assert result.sources[0].metadata["id"] == "doc-1-0"
    assert result.content == "[1] close match"


async def test_hits_without_distance_are_kept() -> None:
    index = _FixedHitsIndex([IndexHit(doc_id="x", document="unscored", metadata={}, distance=None)])
    store = await _store(index)

    result = await store.search("query")

    assert result.sources[0].score is None


async def test_empty_collection_returns_sentinel() -> None:
    store = await _store()

    result = await store.search("anything")

    assert result.content == NO_LOCAL_RESULTS
    assert result.sources == []


async def test_add_and_search_round_trip_with_default_metadata() -> None:
    store = await _store()
    ids = await store.add_documents(
        [
            "Company policy states all employees must encrypt customer data at rest.",
            "Holiday arrangements are documented in the employee handbook.",
        ],
        [{"source": "policy", "tags": ["security", "data"]}, {}],
    )

    result = await store.search("Company policy states all employees must encrypt customer data at rest.")

    assert len(ids) == 2
    assert await store.get_collection_count() == 2
    top = result.sources[0]
    assert top.content.startswith("Company policy")
    assert top.metadata["source"] == "policy"
    assert top.metadata["type"] == "knowledge_base"
    assert top.metadata["index"] == 0
    assert top.metadata["tags"] == "['security', 'data']"
    assert "added" in top.metadata
    assert all(source.content != "Holiday arrangements are documented in the employee handbook."
               for source in result.sources)


async def test_repeated_batches_get_distinct_ids() -> None:
    store = await _store()

    first = await store.add_documents(["alpha", "beta"])
    second = await store.add_documents(["gamma", "delta"])

    assert all(doc_id.startswith("doc-") for doc_id in first + second)
    assert len(set(first + second)) == 4
    assert first[0].endswith("-0") and first[1].endswith("-1")


async def test_same_text_added_twice_is_stored_twice() -> None:
    store = await _store()

    first = await store.add_documents(["same text"])
    second = await store.add_documents(["same text"])

    assert first != second
    assert await store.get_collection_count() == 2


async def test_mismatched_metadata_length_is_rejected() -> None:
    store = await _store()

    with pytest.raises(ValueError):
        await store.add_documents(["one", "two"], [{"source": "x"}])


async def test_embedding_failure_leaves_collection_unchanged() -> None:
    store = await _store(embedder=_FailingEmbedder())

    with pytest.raises(GenerationError):
        await store.add_documents(["one", "two"])
    assert await store.get_collection_count() == 0


async def test_use_before_initialize_is_rejected() -> None:
    store = LocalKnowledgeStore(InMemoryVectorIndex(), HashingEmbedder())

    assert store.initialized is False
    assert await store.get_collection_count() == 0
    with pytest.raises(KnowledgeStoreNotInitializedError):
        await store.search("query")
    with pytest.raises(KnowledgeStoreNotInitializedError):
        await store.add_documents(["text"])
