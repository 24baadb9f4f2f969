"""Request tracing, latency aggregation and groundedness evaluation."""

from __future__ import annotations

import re
import time
import uuid
from collections import Counter, OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from hybrid_agent.types import ToolTrace

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_CITATION_PATTERN = re.compile(r"\[[^\]]+\]")

TraceStatus = Literal["ok", "error", "cancelled"]


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    question: str
    answer: str
    tool: str | None
    source_count: int
    tool_traces: list[ToolTrace]
    input_tokens: int
    output_tokens: int
    latency_ms: float
    groundedness: float
    status: TraceStatus
    streamed: bool
    error: str | None = None


class GroundednessEvaluator:
    """Estimates how much of an answer is supported by retrieved sources.

    Each answer sentence, with citation markers like `[1]` removed, counts as
    grounded when at least `min_overlap` of its tokens appear in one source.
    The score is the grounded fraction of sentences.
    """

    def __init__(self, min_overlap: float = 0.35) -> None:
        self.min_overlap = min_overlap

    def score(self, answer: str, sources: list[str]) -> float:
        sentences = [part.strip() for part in _SENTENCE_SPLIT.split(answer) if part.strip()]
        if not sentences:
            return 1.0
        if not sources:
            return 0.0

        source_tokens = [set(_tokens(source)) for source in sources]
        grounded = 0
        for sentence in sentences:
            tokens = set(_tokens(_CITATION_PATTERN.sub("", sentence)))
            if not tokens:
                grounded += 1
                continue
            if any(len(tokens & candidate) / len(tokens) >= self.min_overlap for candidate in source_tokens):
                grounded += 1
        return grounded / len(sentences)


class TraceStore:
    """In-memory trace storage holding the most recent `max_records` turns."""

    def __init__(
        self,
        *,
        max_records: int = 1000,
        groundedness_evaluator: GroundednessEvaluator | None = None,
    ) -> None:
        self.max_records = max_records
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()
        self._groundedness = groundedness_evaluator or GroundednessEvaluator()

    def create_record(
        self,
        *,
        question: str,
        answer: str,
        tool: str | None,
        sources: list[str],
        tool_traces: list[ToolTrace],
        latency_ms: float,
        status: TraceStatus = "ok",
        streamed: bool = False,
        error: str | None = None,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            question=question,
            answer=answer,
            tool=tool,
            source_count=len(sources),
            tool_traces=tool_traces,
            input_tokens=estimate_token_count(question),
            output_tokens=estimate_token_count(answer),
            latency_ms=latency_ms,
            groundedness=self._groundedness.score(answer, sources) if status == "ok" else 0.0,
            status=status,
            streamed=streamed,
            error=error,
        )
        self._records[record.trace_id] = record
        while len(self._records) > self.max_records:
            self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        return list(self._records.values())[-limit:]

    def __len__(self) -> int:
        return len(self._records)

    def summary(self) -> dict[str, object]:
        """Aggregate request metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        decisions = Counter(record.tool for record in records if record.tool)
        statuses = Counter(record.status for record in records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_groundedness": 0.0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "decisions": {},
                "statuses": {},
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        completed = [record for record in records if record.status == "ok"]
        avg_groundedness = (
            sum(record.groundedness for record in completed) / len(completed) if completed else 0.0
        )
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_groundedness": avg_groundedness,
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "decisions": dict(decisions),
            "statuses": dict(statuses),
        }


class Timer:
    """Context timer; `elapsed_ms` is live inside the block and final after it."""

    def __init__(self) -> None:
        self._start = 0.0
        self._stop: float | None = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._stop = None
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self._stop = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        end = self._stop if self._stop is not None else time.perf_counter()
        return (end - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))


def _tokens(text: str) -> list[str]:
    return [token.lower() for token in _TOKEN_PATTERN.findall(text)]
