"""Server-Sent Events framing for the streaming answer protocol."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from fastapi.responses import StreamingResponse

from hybrid_agent.agent.orchestrator import AgentEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def rechunk(text: str, size: int) -> list[str]:
    if size <= 0:
        return [text]
    return [text[i : i + size] for i in range(0, len(text), size)]


async def sse_frames(
    events: AsyncIterator[AgentEvent],
    *,
    chunk_size: int = 0,
    chunk_delay_seconds: float = 0.0,
) -> AsyncIterator[str]:
    """Render agent events as SSE frames.

    A failure becomes one terminal `error` frame. Caller disconnects cancel
    the stream and are not reported as errors.
    """

    try:
        async with aclosing(events) as stream:
            async for event in stream:
                if event.kind != "message" or chunk_size <= 0:
                    yield format_sse(event.kind, event.data)
                    continue
                for piece in rechunk(str(event.data.get("content", "")), chunk_size):
                    yield format_sse("message", {"content": piece})
                    if chunk_delay_seconds > 0:
                        await asyncio.sleep(chunk_delay_seconds)
    except asyncio.CancelledError:
        logger.info("SSE stream closed by caller")
        raise
    except Exception as exc:
        logger.error("Agent streaming error", exc_info=True)
        yield format_sse("error", {"error": str(exc) or exc.__class__.__name__})


def sse_response(frames: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)
