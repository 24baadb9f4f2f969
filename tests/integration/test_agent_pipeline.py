import asyncio

import httpx
import pytest
from langchain_core.messages import AIMessageChunk

from hybrid_agent.errors import RetrievalError
from hybrid_agent.retrieval.fusion import LOCAL_SECTION_LABEL, WEB_FAILURE_NOTICE
from hybrid_agent.types import ToolDecision

POLICY = "Company policy states all employees must encrypt customer data at rest."


def _web_down(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500, text="upstream exploded")


async def test_local_decision_answers_from_knowledge_store(build_context) -> None:
    ctx = build_context(decision='{"tool": "Local"}', seed=[POLICY])
    await ctx.startup()
    progress: list[str] = []

    result = await ctx.agent.answer(POLICY, lambda status, details: progress.append(status))

    assert result.tool is ToolDecision.LOCAL
    assert result.answer == "Paris is the capital of France."
    assert [source.type for source in result.sources] == ["local"]
    assert result.local_result is not None and result.web_result is None
    assert progress == [
        "Analyzing your query",
        "Searching local knowledge base",
        "Local search complete",
        "Generating AI response",
    ]

    trace = ctx.trace_store.list_recent(limit=1)[0]
    assert trace.status == "ok"
    assert trace.tool == "Local"
    assert [tool.name for tool in trace.tool_traces] == ["local_search"]


async def test_both_mode_survives_web_failure(build_context) -> None:
    ctx = build_context(decision='{"tool": "Both"}', web_handler=_web_down, seed=[POLICY])
    await ctx.startup()

    context = await ctx.agent.retrieve(POLICY, ToolDecision.BOTH)
    result = await ctx.agent.answer(POLICY)

    assert context.content.startswith(LOCAL_SECTION_LABEL)
    assert WEB_FAILURE_NOTICE in context.content
    assert result.tool is ToolDecision.BOTH
    assert result.sources and all(source.type == "local" for source in result.sources)
    assert result.web_result is None


async def test_both_mode_fails_when_every_backend_fails(build_context) -> None:
    ctx = build_context(decision='{"tool": "Both"}', web_api_key="")
    # The store is never initialized, so local search fails as well.

    with pytest.raises(RetrievalError):
        await ctx.agent.answer("anything at all")

    trace = ctx.trace_store.list_recent(limit=1)[0]
    assert trace.status == "error"


async def test_failing_progress_callback_does_not_break_the_turn(build_context) -> None:
    ctx = build_context(decision='{"tool": "Web"}')
    await ctx.startup()

    def _broken(status: str, details: list[str]) -> None:
        raise RuntimeError("listener gone")

    result = await ctx.agent.answer("capital of France", _broken)

    assert result.tool is ToolDecision.WEB
    assert result.web_result is not None
    assert result.sources[0].url == "https://en.wikipedia.org/wiki/Paris"


async def test_stream_event_order(build_context) -> None:
    ctx = build_context(decision='{"tool": "Both"}', web_handler=_web_down, seed=[POLICY])
    await ctx.startup()

    events = [event async for event in ctx.agent.stream(POLICY)]
    kinds = [event.kind for event in events]

    assert kinds[0] == "progress"
    assert kinds.count("tool") == 1 and kinds.count("sources") == 1
    assert kinds.index("tool") < kinds.index("sources") < kinds.index("message")
    assert kinds[-1] == "done"
    assert "".join(e.data["content"] for e in events if e.kind == "message") == (
        "Paris is the capital of France."
    )
    statuses = [e.data["status"] for e in events if e.kind == "progress"]
    assert "Fetching from multiple sources" in statuses
    assert "Local search complete" in statuses

    sources = next(e for e in events if e.kind == "sources").data["sources"]
    assert [source["type"] for source in sources] == ["local"]

    trace = ctx.trace_store.list_recent(limit=1)[0]
    assert trace.streamed is True and trace.status == "ok"


async def test_web_only_stream_skips_classification(build_context) -> None:
    ctx = build_context(decision="not json at all")
    await ctx.startup()

    events = [event async for event in ctx.agent.stream("capital of France", web_search_only=True)]

    assert events[0].kind == "tool"
    assert events[0].data == {"tool": "Web"}
    assert next(e for e in events if e.kind == "sources").data["sources"][0]["type"] == "web"


async def test_startup_seeds_empty_collection_once(build_context) -> None:
    ctx = build_context(seed=[POLICY, "  ", 42, "Holiday arrangements are in the handbook."])

    await ctx.startup()
    assert await ctx.knowledge_store.get_collection_count() == 2

    assert await ctx.ingest.seed_if_empty(ctx.config.knowledge.seed_path) == 0
    assert await ctx.knowledge_store.get_collection_count() == 2


async def test_missing_seed_file_leaves_collection_empty(build_context) -> None:
    ctx = build_context()

    await ctx.startup()

    assert ctx.knowledge_store.initialized
    assert await ctx.knowledge_store.get_collection_count() == 0


class _EndlessChat:
    """Streams tokens until closed and records the close."""

    def __init__(self) -> None:
        self.chunks = 0
        self.closed = False

    async def astream(self, messages):
        try:
            while True:
                self.chunks += 1
                yield AIMessageChunk(content="token " * 8)
                await asyncio.sleep(0)
        finally:
            self.closed = True


async def test_closing_the_stream_stops_generation(build_context) -> None:
    chat = _EndlessChat()
    ctx = build_context(answer_chat=chat, seed=[POLICY])
    await ctx.startup()

    stream = ctx.agent.stream(POLICY)
    async for event in stream:
        if event.kind == "message":
            break
    await stream.aclose()

    assert chat.closed is True
    assert chat.chunks == 1
    trace = ctx.trace_store.list_recent(limit=1)[0]
    assert trace.status == "cancelled"
    assert trace.streamed is True


async def test_async_progress_callback_is_scheduled(build_context) -> None:
    ctx = build_context(decision='{"tool": "Local"}', seed=[POLICY])
    await ctx.startup()
    seen: list[str] = []

    async def _listener(status: str, details: list[str]) -> None:
        seen.append(status)

    await ctx.agent.answer(POLICY, _listener)
    for _ in range(3):
        await asyncio.sleep(0)

    assert seen == [
        "Analyzing your query",
        "Searching local knowledge base",
        "Local search complete",
        "Generating AI response",
    ]


async def test_failing_async_progress_callback_does_not_break_the_turn(build_context) -> None:
    ctx = build_context(decision='{"tool": "Local"}', seed=[POLICY])
    await ctx.startup()

    async def _broken(status: str, details: list[str]) -> None:
        raise RuntimeError("listener gone")

    result = await ctx.agent.answer(POLICY, _broken)
    await asyncio.sleep(0)

    assert result.answer == "Paris is the capital of France."


async def test_closing_the_stream_during_retrieval_cancels_the_search(build_context) -> None:
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def _hanging(request: httpx.Request) -> httpx.Response:
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return httpx.Response(200, json={})

    ctx = build_context(decision='{"tool": "Web"}', web_handler=_hanging)
    await ctx.startup()

    stream = ctx.agent.stream("capital of France")
    async for event in stream:
        if event.kind == "progress" and event.data["status"] == "Searching the web":
            break
    await asyncio.wait_for(started.wait(), timeout=1)
    await stream.aclose()

    await asyncio.wait_for(cancelled.wait(), timeout=1)
    assert ctx.trace_store.list_recent(limit=1)[0].status == "cancelled"
