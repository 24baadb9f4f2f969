"""Retrieval-augmented answering agent.

Per query the agent classifies the question, consults the local knowledge
store and/or the web search backend, merges what came back into one context
and asks the generation model for a grounded answer. Progress is reported
through a fire-and-forget callback (blocking form) or as events (streaming
form).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Literal

from langchain_core.prompts import PromptTemplate

from hybrid_agent.agent.classifier import ToolSelector
from hybrid_agent.agent.registry import ToolObserver, ToolRegistry
from hybrid_agent.agent.tools import LOCAL_SEARCH_TOOL, WEB_SEARCH_TOOL
from hybrid_agent.config import AgentConfig
from hybrid_agent.llm.client import GenerationClient
from hybrid_agent.obs.tracing import Timer, TraceStatus, TraceStore
from hybrid_agent.retrieval.fusion import merge_outcomes, single_source_context
from hybrid_agent.types import AgentAnswer, RetrievalContext, SearchResult, ToolDecision, ToolTrace

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, list[str]], Any]
EventKind = Literal["tool", "progress", "sources", "message", "done"]

_ANSWER_PROMPT = PromptTemplate.from_template(
    """
You are an intelligent, helpful AI assistant. Provide accurate, comprehensive answers based on the provided context.

CONTEXT SOURCE: {context_source}

INSTRUCTIONS:
1. Answer the user's question directly and thoroughly
2. Use ONLY information from the provided context
3. If the context is insufficient, say so honestly
4. Structure your response with clear paragraphs
5. Be concise but complete
6. Cite sources when they are provided in the context
7. If sources conflict, point out the discrepancy
8. Maintain a professional, friendly tone

CONTEXT:
{context}

USER QUESTION:
{query}

COMPREHENSIVE ANSWER:
""".strip()
)

_WEB_ANSWER_PROMPT = PromptTemplate.from_template(
    """
You are a helpful AI assistant. Provide a comprehensive answer based on the web search results below.

INSTRUCTIONS:
- Answer the user's question directly and thoroughly
- Use ONLY information from the provided web search results
- If the results are insufficient, say so honestly
- Cite sources by their number
- Structure your response with clear paragraphs and Markdown formatting
- Maintain a professional, friendly tone

WEB SEARCH RESULTS:
{context}

USER QUESTION:
{query}

YOUR ANSWER:
""".strip()
)

_LEADING_LABEL = re.compile(
    r"^\s*(?:\*\*)?(?:COMPREHENSIVE ANSWER|YOUR ANSWER|RESPONSE|ANSWER)\s*:(?:\*\*)?\s*",
    flags=re.IGNORECASE,
)
_LABEL_LOOKAHEAD_CHARS = 32

_DECISION_LABEL = {
    ToolDecision.LOCAL: "Local Knowledge",
    ToolDecision.WEB: "Web Search",
    ToolDecision.BOTH: "Local Knowledge + Web Search",
}


@dataclass(slots=True)
class AgentEvent:
    """One frame of the streaming answer protocol."""

    kind: EventKind
    data: dict[str, Any] = field(default_factory=dict)


class RetrievalAgent:
    """Central coordinator between classifier, backends and generation."""

    def __init__(
        self,
        *,
        selector: ToolSelector,
        registry: ToolRegistry,
        generation: GenerationClient,
        generate_model: str,
        config: AgentConfig | None = None,
        trace_store: TraceStore | None = None,
    ) -> None:
        self.selector = selector
        self.registry = registry
        self.generation = generation
        self.generate_model = generate_model
        self.config = config or AgentConfig()
        self.trace_store = trace_store

    async def classify(self, query: str) -> ToolDecision:
        return await self.selector.classify(query)

    async def answer(
        self,
        query: str,
        progress_callback: ProgressCallback | None = None,
        *,
        model: str | None = None,
    ) -> AgentAnswer:
        """Run one full retrieval-then-generation turn.

        Raises when classification's chosen backends all fail, or when the
        final generation fails. A single failed backend in `Both` mode is
        absorbed into the context instead.
        """

        observed: list[ToolTrace] = []
        decision: ToolDecision | None = None
        with Timer() as timer:
            try:
                _notify(progress_callback, "Analyzing your query",
                        ["Understanding your question", "Selecting best search strategy"])
                decision = await self.classify(query)
                logger.info("Selected tool: %s", decision.value)

                context = await self.retrieve(query, decision, progress_callback, observed.append)

                _notify(progress_callback, "Generating AI response",
                        [f"Analyzing context from {context.context_source}",
                         "Crafting comprehensive answer"])
                raw = await self.generation.generate(
                    model or self.generate_model,
                    self.build_answer_prompt(query, context),
                    self.config.answer_temperature,
                )
            except Exception as exc:
                self._record(query, "", decision, [], observed, timer, "error", error=str(exc))
                raise

        result = AgentAnswer(
            answer=strip_answer_label(raw),
            tool=decision,
            sources=context.sources,
            local_result=context.local_result,
            web_result=context.web_result,
        )
        self._record(query, result.answer, decision, [s.content for s in result.sources], observed, timer)
        return result

    async def web_only(self, query: str) -> AgentAnswer:
        """Answer directly with web search content, without classification or generation."""

        observed: list[ToolTrace] = []
        with Timer() as timer:
            try:
                result = await self.registry.execute(
                    WEB_SEARCH_TOOL, {"query": query}, observer=observed.append
                )
            except Exception as exc:
                self._record(query, "", ToolDecision.WEB, [], observed, timer, "error", error=str(exc))
                raise
        context = single_source_context(ToolDecision.WEB, result)
        answer = AgentAnswer(
            answer=result.content,
            tool=ToolDecision.WEB,
            sources=context.sources,
            web_result=result,
        )
        self._record(query, answer.answer, ToolDecision.WEB, [s.content for s in answer.sources], observed, timer)
        return answer

    async def retrieve(
        self,
        query: str,
        decision: ToolDecision,
        progress_callback: ProgressCallback | None = None,
        observer: ToolObserver | None = None,
    ) -> RetrievalContext:
        """Consult the backend(s) named by `decision` and merge their output."""

        if decision is ToolDecision.LOCAL:
            result = await self._search_local(query, progress_callback, observer)
            return single_source_context(decision, result)
        if decision is ToolDecision.WEB:
            result = await self._search_web(query, progress_callback, observer)
            return single_source_context(decision, result)

        _notify(progress_callback, "Fetching from multiple sources",
                ["Searching local knowledge base", "Searching the web"])
        local_outcome, web_outcome = await asyncio.gather(
            self._search_local(query, progress_callback, observer),
            self._search_web(query, progress_callback, observer),
            return_exceptions=True,
        )
        if isinstance(local_outcome, BaseException):
            logger.warning("Local search failed in combined mode: %s", local_outcome)
        if isinstance(web_outcome, BaseException):
            logger.warning("Web search failed in combined mode: %s", web_outcome)
        return merge_outcomes(local_outcome, web_outcome)

    async def stream(
        self,
        query: str,
        *,
        model: str | None = None,
        web_search_only: bool = False,
    ) -> AsyncIterator[AgentEvent]:
        """Yield the streaming answer protocol as `AgentEvent`s.

        Order: progress*, tool, progress*, sources, message*, done. Progress
        events of concurrently running backends may interleave. Failures
        propagate to the caller; closing the iterator stops generation.
        """

        observed: list[ToolTrace] = []
        decision: ToolDecision | None = None
        parts: list[str] = []
        status: TraceStatus = "ok"
        error: str | None = None
        context: RetrievalContext | None = None
        with Timer() as timer:
            try:
                if web_search_only:
                    decision = ToolDecision.WEB
                else:
                    yield _progress("Analyzing your query",
                                    ["Understanding your question", "Selecting best search strategy"])
                    decision = await self.classify(query)
                    logger.info("Selected tool: %s", decision.value)
                yield AgentEvent("tool", {"tool": decision.value})
                yield _progress(f"Using {_DECISION_LABEL[decision]}", ["Preparing to fetch information"])

                queue: asyncio.Queue[AgentEvent] = asyncio.Queue()
                retrieval = asyncio.create_task(
                    self.retrieve(
                        query,
                        decision,
                        lambda status_text, details: queue.put_nowait(_progress(status_text, details)),
                        observed.append,
                    )
                )
                async with aclosing(_drain_until_done(queue, retrieval)) as progress:
                    async for event in progress:
                        yield event
                context = retrieval.result()

                yield AgentEvent("sources", {"sources": [s.to_payload() for s in context.sources]})
                yield _progress("Generating AI response",
                                [f"Analyzing context from {context.context_source}",
                                 "Crafting comprehensive answer"])

                template = _WEB_ANSWER_PROMPT if web_search_only else _ANSWER_PROMPT
                prompt = self.build_answer_prompt(query, context, template=template)
                stripper = LeadingLabelStripper()
                tokens = self.generation.astream(
                    model or self.generate_model, prompt, self.config.answer_temperature
                )
                async with aclosing(tokens):
                    async for token in tokens:
                        text = stripper.feed(token)
                        if text:
                            parts.append(text)
                            yield AgentEvent("message", {"content": text})
                tail = stripper.flush()
                if tail:
                    parts.append(tail)
                    yield AgentEvent("message", {"content": tail})
                yield AgentEvent("done", {"done": True})
            except (asyncio.CancelledError, GeneratorExit):
                status = "cancelled"
                logger.info("Streaming answer cancelled by caller")
                raise
            except Exception as exc:
                status, error = "error", str(exc)
                raise
            finally:
                sources = [s.content for s in context.sources] if context is not None else []
                self._record(query, "".join(parts).strip(), decision, sources, observed, timer,
                             status, streamed=True, error=error)

    def build_answer_prompt(
        self,
        query: str,
        context: RetrievalContext,
        *,
        template: PromptTemplate = _ANSWER_PROMPT,
    ) -> str:
        values = {
            "context_source": context.context_source,
            "context": context.content,
            "query": query,
        }
        return template.format(**{key: values[key] for key in template.input_variables})

    async def _search_local(
        self,
        query: str,
        progress_callback: ProgressCallback | None,
        observer: ToolObserver | None,
    ) -> SearchResult:
        _notify(progress_callback, "Searching local knowledge base",
                ["Converting query to embeddings", "Querying vector database"])
        result = await self.registry.execute(LOCAL_SEARCH_TOOL, {"query": query}, observer=observer)
        _notify(progress_callback, "Local search complete",
                [f"Retrieved {len(result.sources)} relevant documents"])
        return result

    async def _search_web(
        self,
        query: str,
        progress_callback: ProgressCallback | None,
        observer: ToolObserver | None,
    ) -> SearchResult:
        _notify(progress_callback, "Searching the web",
                ["Initializing web search", "Fetching latest information"])
        result = await self.registry.execute(WEB_SEARCH_TOOL, {"query": query}, observer=observer)
        _notify(progress_callback, "Web search complete",
                [f"Retrieved {len(result.sources)} web sources"])
        return result

    def _record(
        self,
        query: str,
        answer: str,
        decision: ToolDecision | None,
        sources: list[str],
        observed: list[ToolTrace],
        timer: Timer,
        status: TraceStatus = "ok",
        *,
        streamed: bool = False,
        error: str | None = None,
    ) -> None:
        if self.trace_store is None:
            return
        self.trace_store.create_record(
            question=query,
            answer=answer,
            tool=decision.value if decision is not None else None,
            sources=sources,
            tool_traces=list(observed),
            latency_ms=timer.elapsed_ms,
            status=status,
            streamed=streamed,
            error=error,
        )


class LeadingLabelStripper:
    """Removes an echoed "ANSWER:"-style label from the start of a token stream.

    The first few characters are held back until a label can be ruled out.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._passthrough = False

    def feed(self, text: str) -> str:
        if self._passthrough:
            return text
        self._buffer += text
        head = self._buffer.lstrip()
        if len(head) < _LABEL_LOOKAHEAD_CHARS and "\n" not in head:
            return ""
        return self._release()

    def flush(self) -> str:
        if self._passthrough:
            return ""
        return self._release()

    def _release(self) -> str:
        self._passthrough = True
        released = _LEADING_LABEL.sub("", self._buffer, count=1).lstrip()
        self._buffer = ""
        return released


def strip_answer_label(text: str) -> str:
    return _LEADING_LABEL.sub("", text, count=1).strip()


def _progress(status: str, details: list[str]) -> AgentEvent:
    return AgentEvent("progress", {"status": status, "details": list(details)})


_pending_callbacks: set[asyncio.Future[Any]] = set()


def _notify(callback: ProgressCallback | None, status: str, details: list[str]) -> None:
    """Invoke `callback` without letting it affect the turn.

    Coroutine callbacks are scheduled on the running loop and not awaited.
    """

    if callback is None:
        return
    try:
        result = callback(status, details)
    except Exception:
        logger.warning("Progress callback failed for %r", status, exc_info=True)
        return
    if inspect.isawaitable(result):
        future = asyncio.ensure_future(result)
        _pending_callbacks.add(future)
        future.add_done_callback(_callback_done)


def _callback_done(future: asyncio.Future[Any]) -> None:
    _pending_callbacks.discard(future)
    if not future.cancelled() and future.exception() is not None:
        logger.warning("Progress callback failed", exc_info=future.exception())


async def _drain_until_done(
    queue: asyncio.Queue[AgentEvent], task: asyncio.Task[Any]
) -> AsyncIterator[AgentEvent]:
    """Yield queued events while `task` runs, then whatever is left."""

    getter: asyncio.Task[AgentEvent] | None = None
    try:
        while not task.done():
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({task, getter}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield getter.result()
            else:
                getter.cancel()
            getter = None
        while not queue.empty():
            yield queue.get_nowait()
    finally:
        if getter is not None:
            getter.cancel()
        if not task.done():
            task.cancel()
