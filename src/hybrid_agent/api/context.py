"""Application context wiring all services once at startup."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from hybrid_agent.agent.classifier import ToolSelector
from hybrid_agent.agent.orchestrator import RetrievalAgent
from hybrid_agent.agent.registry import ToolRegistry
from hybrid_agent.agent.tools import register_builtin_tools
from hybrid_agent.config import AppConfig
from hybrid_agent.ingest.embedder import CachedEmbedder, Embedder
from hybrid_agent.ingest.pipeline import IngestPipeline
from hybrid_agent.llm.client import GenerationClient
from hybrid_agent.obs.tracing import TraceStore
from hybrid_agent.retrieval.knowledge_store import LocalKnowledgeStore
from hybrid_agent.retrieval.vector_store import ChromaVectorIndex, VectorIndex
from hybrid_agent.retrieval.web_search import WebSearchClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AppContext:
    """Everything a request handler needs, passed by reference."""

    config: AppConfig
    generation: GenerationClient
    knowledge_store: LocalKnowledgeStore
    web_search: WebSearchClient
    registry: ToolRegistry
    agent: RetrievalAgent
    ingest: IngestPipeline
    trace_store: TraceStore

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        generation: GenerationClient | None = None,
        index: VectorIndex | None = None,
        embedder: Embedder | None = None,
        web_search: WebSearchClient | None = None,
    ) -> "AppContext":
        """Assemble the service graph; any collaborator may be substituted."""

        generation = generation or GenerationClient(config.generation)
        embedder = embedder or CachedEmbedder(
            generation,
            model=config.generation.embedding_model,
            cache_config=config.cache,
        )
        knowledge_store = LocalKnowledgeStore(
            index or ChromaVectorIndex(config.knowledge),
            embedder,
            config.knowledge,
        )
        web_search = web_search or WebSearchClient(
            config.web_search, cache_size=config.cache.web_cache_size
        )

        registry = ToolRegistry()
        register_builtin_tools(registry, knowledge_store, web_search)
        trace_store = TraceStore(max_records=config.agent.max_traces)
        selector = ToolSelector(
            generation,
            model=config.generation.decision_model,
            config=config.agent,
            cache_size=config.cache.decision_cache_size,
        )
        agent = RetrievalAgent(
            selector=selector,
            registry=registry,
            generation=generation,
            generate_model=config.generation.generate_model,
            config=config.agent,
            trace_store=trace_store,
        )
        return cls(
            config=config,
            generation=generation,
            knowledge_store=knowledge_store,
            web_search=web_search,
            registry=registry,
            agent=agent,
            ingest=IngestPipeline(knowledge_store),
            trace_store=trace_store,
        )

    async def startup(self) -> None:
        await self.knowledge_store.initialize()
        await self.ingest.seed_if_empty(self.config.knowledge.seed_path)
        if not self.web_search.configured:
            logger.warning("TAVILY_API_KEY not set. Web search is disabled.")
        logger.info("Agent ready")

    async def shutdown(self) -> None:
        await self.web_search.aclose()
