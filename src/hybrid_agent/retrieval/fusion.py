"""Merging of backend search outcomes into one generation context."""

from __future__ import annotations

from hybrid_agent.errors import RetrievalError
from hybrid_agent.types import RetrievalContext, RetrievedSource, SearchResult, ToolDecision

LOCAL_SECTION_LABEL = "**Local Knowledge Base:**"
WEB_SECTION_LABEL = "**Web Search Results:**"
LOCAL_FAILURE_NOTICE = "Local knowledge search failed."
WEB_FAILURE_NOTICE = "Web search failed."

SearchOutcome = SearchResult | BaseException

_CONTEXT_SOURCE = {
    ToolDecision.LOCAL: "local knowledge base",
    ToolDecision.WEB: "web search",
    ToolDecision.BOTH: "both local knowledge and web search",
}


def single_source_context(decision: ToolDecision, result: SearchResult) -> RetrievalContext:
    """Context for `Local` or `Web`: the backend content is the whole context."""

    if decision is ToolDecision.BOTH:
        raise ValueError("use merge_outcomes for Both decisions")
    source_type = "local" if decision is ToolDecision.LOCAL else "web"
    return RetrievalContext(
        decision=decision,
        content=result.content,
        context_source=_CONTEXT_SOURCE[decision],
        sources=_tagged(result.sources, source_type),
        local_result=result if decision is ToolDecision.LOCAL else None,
        web_result=result if decision is ToolDecision.WEB else None,
    )


def merge_outcomes(local: SearchOutcome, web: SearchOutcome) -> RetrievalContext:
    """Merge two independently settled outcomes for a `Both` decision.

    A failed side is replaced by its failure notice and contributes no
    sources. If both sides failed, `RetrievalError` is raised with both causes.
    """

    local_failed = isinstance(local, BaseException)
    web_failed = isinstance(web, BaseException)
    if local_failed and web_failed:
        raise RetrievalError(f"All retrieval backends failed: local: {local}; web: {web}")

    sources: list[RetrievedSource] = []
    local_result = None if local_failed else local
    web_result = None if web_failed else web
    if local_result is not None:
        sources.extend(_tagged(local_result.sources, "local"))
    if web_result is not None:
        sources.extend(_tagged(web_result.sources, "web"))

    local_content = LOCAL_FAILURE_NOTICE if local_result is None else local_result.content
    web_content = WEB_FAILURE_NOTICE if web_result is None else web_result.content
    content = f"{LOCAL_SECTION_LABEL}\n{local_content}\n\n{WEB_SECTION_LABEL}\n{web_content}"

    return RetrievalContext(
        decision=ToolDecision.BOTH,
        content=content,
        context_source=_CONTEXT_SOURCE[ToolDecision.BOTH],
        sources=sources,
        local_result=local_result,
        web_result=web_result,
    )


def _tagged(sources: list[RetrievedSource], source_type: str) -> list[RetrievedSource]:
    return [
        RetrievedSource(
            type=source_type,  # type: ignore[arg-type]
            content=source.content,
            title=source.title,
            url=source.url,
            score=source.score,
            metadata=dict(source.metadata),
        )
        for source in sources
    ]
