"""Built-in retrieval tools for the agent."""

from __future__ import annotations

from pydantic import BaseModel, Field

from hybrid_agent.agent.registry import ToolRegistry, ToolSpec
from hybrid_agent.retrieval.knowledge_store import LocalKnowledgeStore
from hybrid_agent.retrieval.web_search import WebSearchClient
from hybrid_agent.types import SearchResult

LOCAL_SEARCH_TOOL = "local_search"
WEB_SEARCH_TOOL = "web_search"


class SearchToolInput(BaseModel):
    query: str = Field(min_length=1)


def register_builtin_tools(
    registry: ToolRegistry,
    knowledge_store: LocalKnowledgeStore,
    web_search: WebSearchClient,
) -> None:
    """Register the two retrieval backends.

    Tools:
    - `local_search`: similarity search over the local knowledge store.
    - `web_search`: live web search with AI summary.
    """

    async def _local(input_data: SearchToolInput) -> SearchResult:
        return await knowledge_store.search(input_data.query)

    async def _web(input_data: SearchToolInput) -> SearchResult:
        return await web_search.search(input_data.query)

    registry.register(
        ToolSpec(
            name=LOCAL_SEARCH_TOOL,
            description="Search the local knowledge base by semantic similarity.",
            args_schema=SearchToolInput,
            handler=_local,
            tags=["retrieval", "local"],
        )
    )
    registry.register(
        ToolSpec(
            name=WEB_SEARCH_TOOL,
            description="Search the live web for current information.",
            args_schema=SearchToolInput,
            handler=_web,
            tags=["retrieval", "web"],
        )
    )
