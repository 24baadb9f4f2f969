"""Deterministic keyword-scoring tool selection used when the LLM classifier is unavailable."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from hybrid_agent.types import ToolDecision

STRONG_WEIGHT = 3
MEDIUM_WEIGHT = 2
WEAK_WEIGHT = 1
YEAR_BONUS = 4
TEMPORAL_QUESTION_BONUS = 3

_YEAR_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b")
_TEMPORAL_QUESTION_PATTERN = re.compile(
    r"^(what|who|when|where|why|how)\s+(is|are|was|were|has|have)\s+(the\s+)?"
    r"(latest|current|recent)"
)


@dataclass(frozen=True, slots=True)
class Indicators:
    """Keyword sets for one side of the decision, grouped by weight."""

    strong: tuple[str, ...]
    medium: tuple[str, ...]
    weak: tuple[str, ...]


WEB_INDICATORS = Indicators(
    strong=(
        "latest", "current", "today", "yesterday", "tomorrow", "breaking",
        "trending", "live", "real-time", "now", "recent", "recently", "update",
    ),
    medium=("news", "price", "prices", "weather", "stock", "stocks", "market", "release"),
    weak=("compare", "versus", "vs", "difference", "best", "top"),
)

LOCAL_INDICATORS = Indicators(
    strong=("our system", "our documentation", "internal", "knowledge base"),
    medium=(
        "documentation", "docs", "guide", "tutorial", "api",
        "configuration", "configure", "setup", "installation",
    ),
    weak=("explain", "describe", "what is", "how to", "define"),
)


class HeuristicToolSelector:
    """Scores a query against weighted web and local keyword sets.

    Both scores positive and closer than `both_margin` gives `Both`;
    otherwise the strictly higher score wins, and a zero/zero tie defaults
    to `Local`. Keywords match on word boundaries, case-insensitively.
    """

    def __init__(
        self,
        *,
        web_indicators: Indicators = WEB_INDICATORS,
        local_indicators: Indicators = LOCAL_INDICATORS,
        local_entities: Iterable[str] = (),
        both_margin: int = 3,
    ) -> None:
        entities = tuple(entity.strip().lower() for entity in local_entities if entity.strip())
        self._web = _compile(web_indicators)
        self._local = _compile(
            Indicators(
                strong=local_indicators.strong + entities,
                medium=local_indicators.medium,
                weak=local_indicators.weak,
            )
        )
        self.both_margin = both_margin

    def score(self, query: str) -> tuple[int, int]:
        """Return `(web_score, local_score)` for `query`."""

        lower = query.lower().strip()
        web_score = _weighted(self._web, lower)
        local_score = _weighted(self._local, lower)

        if _YEAR_PATTERN.search(lower):
            web_score += YEAR_BONUS
        if _TEMPORAL_QUESTION_PATTERN.search(lower):
            web_score += TEMPORAL_QUESTION_BONUS
        return web_score, local_score

    def decide(self, query: str) -> ToolDecision:
        web_score, local_score = self.score(query)
        if web_score > 0 and local_score > 0 and abs(web_score - local_score) < self.both_margin:
            return ToolDecision.BOTH
        if web_score > local_score:
            return ToolDecision.WEB
        return ToolDecision.LOCAL


def _compile(indicators: Indicators) -> list[tuple[int, list[re.Pattern[str]]]]:
    return [
        (weight, [re.compile(rf"\b{re.escape(keyword)}\b") for keyword in keywords])
        for weight, keywords in (
            (STRONG_WEIGHT, indicators.strong),
            (MEDIUM_WEIGHT, indicators.medium),
            (WEAK_WEIGHT, indicators.weak),
        )
    ]


def _weighted(groups: list[tuple[int, list[re.Pattern[str]]]], text: str) -> int:
    return sum(weight * sum(1 for pattern in patterns if pattern.search(text)) for weight, patterns in groups)
