import asyncio
import json

from hybrid_agent.agent.orchestrator import AgentEvent, LeadingLabelStripper, strip_answer_label
from hybrid_agent.api.streaming import format_sse, rechunk, sse_frames


async def _events(*events: AgentEvent, fail_with: Exception | None = None):
    for event in events:
        yield event
    if fail_with is not None:
        raise fail_with


def _parse(frame: str) -> tuple[str, dict]:
    event_line, data_line = frame.strip().split("\n")
    return event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: "))


def test_format_sse() -> None:
    assert format_sse("tool", {"tool": "Web"}) == 'event: tool\ndata: {"tool": "Web"}\n\n'


def test_rechunk() -> None:
    assert rechunk("abcdefg", 3) == ["abc", "def", "g"]
    assert rechunk("abc", 0) == ["abc"]


async def test_failure_becomes_terminal_error_frame() -> None:
    frames = [
        frame
        async for frame in sse_frames(
            _events(AgentEvent("tool", {"tool": "Local"}), fail_with=RuntimeError("generation failed"))
        )
    ]

    assert [_parse(frame)[0] for frame in frames] == ["tool", "error"]
    assert _parse(frames[-1])[1] == {"error": "generation failed"}


async def test_messages_are_rechunked() -> None:
    frames = [
        frame
        async for frame in sse_frames(
            _events(AgentEvent("message", {"content": "hello"}), AgentEvent("done", {"done": True})),
            chunk_size=2,
        )
    ]

    parsed = [_parse(frame) for frame in frames]
    assert [data.get("content") for kind, data in parsed if kind == "message"] == ["he", "ll", "o"]
    assert parsed[-1][0] == "done"


async def test_cancellation_is_not_reported_as_error() -> None:
    frames = []

    async def _consume() -> None:
        async for frame in sse_frames(
            _events(AgentEvent("tool", {"tool": "Local"}), fail_with=asyncio.CancelledError())
        ):
            frames.append(frame)

    try:
        await asyncio.create_task(_consume())
    except asyncio.CancelledError:
        pass

    assert [_parse(frame)[0] for frame in frames] == ["tool"]


def test_leading_label_is_stripped_across_tokens() -> None:
    stripper = LeadingLabelStripper()

    released = [stripper.feed(token) for token in ["COMPREHENSIVE ", "ANSWER: ", "Paris is the capital ", "of France."]]
    released.append(stripper.feed(" More."))
    released.append(stripper.flush())

    assert "".join(released) == "Paris is the capital of France. More."


def test_short_answer_is_released_on_flush() -> None:
    stripper = LeadingLabelStripper()

    assert stripper.feed("Yes.") == ""
    assert stripper.flush() == "Yes."


def test_strip_answer_label() -> None:
    assert strip_answer_label("**Answer:** Yes, it is.") == "Yes, it is."
    assert strip_answer_label("YOUR ANSWER:\nParis.") == "Paris."
    assert strip_answer_label("The answer: is 42") == "The answer: is 42"
