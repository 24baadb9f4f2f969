"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

SourceType = Literal["local", "web"]


class ToolDecision(str, Enum):
    """Which knowledge backend(s) a query should consult."""

    LOCAL = "Local"
    WEB = "Web"
    BOTH = "Both"

    @classmethod
    def parse(cls, raw: object) -> "ToolDecision | None":
        """Map a model-emitted tool name onto a decision, or None if unknown."""
        if not isinstance(raw, str):
            return None
        return _DECISION_ALIASES.get(raw.strip().lower())


_DECISION_ALIASES = {
    "local": ToolDecision.LOCAL,
    "rag": ToolDecision.LOCAL,
    "web": ToolDecision.WEB,
    "websearch": ToolDecision.WEB,
    "web_search": ToolDecision.WEB,
    "both": ToolDecision.BOTH,
}


@dataclass(slots=True)
class RetrievedSource:
    """A normalized, attributable fragment returned by either backend."""

    type: SourceType
    content: str
    title: str | None = None
    url: str | None = None
    score: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "content": self.content}
        if self.title is not None:
            payload["title"] = self.title
        if self.url is not None:
            payload["url"] = self.url
        if self.score is not None:
            payload["score"] = self.score
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


@dataclass(slots=True)
class SearchResult:
    """Rendered context block plus the sources it was built from."""

    content: str
    sources: list[RetrievedSource]
    answer: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "content": self.content,
            "sources": [source.to_payload() for source in self.sources],
        }
        if self.answer is not None:
            payload["answer"] = self.answer
        return payload


@dataclass(slots=True)
class AgentAnswer:
    """Final output of one retrieval-then-generation turn."""

    answer: str
    tool: ToolDecision
    sources: list[RetrievedSource]
    local_result: SearchResult | None = None
    web_result: SearchResult | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "answer": self.answer,
            "tool": self.tool.value,
            "sources": [source.to_payload() for source in self.sources],
        }
        if self.local_result is not None:
            payload["ragResult"] = self.local_result.to_payload()
        if self.web_result is not None:
            payload["webResult"] = self.web_result.to_payload()
        return payload


@dataclass(slots=True)
class RetrievalContext:
    """Merged retrieval output handed to the generation step."""

    decision: ToolDecision
    content: str
    context_source: str
    sources: list[RetrievedSource]
    local_result: SearchResult | None = None
    web_result: SearchResult | None = None


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    error: str | None = None
