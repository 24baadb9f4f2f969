"""LLM-backed tool selection with a decision cache and heuristic fallback."""

from __future__ import annotations

import json
import logging
import re

from langchain_core.prompts import PromptTemplate

from hybrid_agent.agent.fallback import HeuristicToolSelector
from hybrid_agent.cache import BoundedCache
from hybrid_agent.config import AgentConfig
from hybrid_agent.llm.client import GenerationClient
from hybrid_agent.types import ToolDecision

logger = logging.getLogger(__name__)

_DECISION_PROMPT = PromptTemplate.from_template(
    """
You are an expert tool selector. Analyze the question and choose the most appropriate tool.

AVAILABLE TOOLS:
1. "Local" - Local Knowledge Base
   Use for questions about:
   - Specific known entities{local_entities}
   - Technical documentation, tutorials, guides
   - Historical or archived information
   - Internal system knowledge and previously stored facts

2. "Web" - Live Internet Search
   Use for questions about:
   - Current events, news, recent happenings
   - Explicit dates or years (2024, 2025, ...)
   - Real-time information (weather, stocks, prices)
   - Latest updates, versions, releases
   - Temporal words: "latest", "current", "today", "recently", "now", "trending"
   - General world knowledge not in the local knowledge base

3. "Both" - Combined Search
   Use when the question needs local context AND current information,
   compares internal knowledge with external updates, or is broad or unclear.

DECISION RULES:
- Specific years or dates -> prefer "Web"
- "latest" or "current" -> prefer "Web"
- Known local entities -> prefer "Local"
- Unclear or needs broad coverage -> "Both"

Respond with ONLY a JSON object, nothing else.
Format: {{"tool": "Local"}} or {{"tool": "Web"}} or {{"tool": "Both"}}

Question: {query}

JSON:
""".strip()
)

_JSON_PATTERN = re.compile(r"\{[^{}]*\"tool\"[^{}]*\}")


class ToolSelector:
    """Classifies a query into `Local`, `Web` or `Both`.

    Classification never fails the request: runtime errors and unparseable
    output fall back to `HeuristicToolSelector`. Every decision is cached by
    normalized query text, so repeated queries skip the runtime.
    """

    def __init__(
        self,
        generation: GenerationClient,
        *,
        model: str,
        config: AgentConfig | None = None,
        cache_size: int = 1024,
        heuristic: HeuristicToolSelector | None = None,
    ) -> None:
        self.generation = generation
        self.model = model
        self.config = config or AgentConfig()
        self.heuristic = heuristic or HeuristicToolSelector(
            local_entities=self.config.local_entities,
            both_margin=self.config.both_margin,
        )
        self._cache: BoundedCache[str, ToolDecision] = BoundedCache(cache_size)

    async def classify(self, query: str) -> ToolDecision:
        key = _normalize(query)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        decision = await self._classify_with_llm(query)
        if decision is None:
            decision = self.heuristic.decide(query)
            logger.info("Heuristic tool decision: %s", decision.value)
        self._cache.set(key, decision)
        return decision

    def build_prompt(self, query: str) -> str:
        entities = self.config.local_entities
        entity_text = f": {', '.join(entities)}" if entities else ""
        return _DECISION_PROMPT.format(query=query, local_entities=entity_text)

    async def _classify_with_llm(self, query: str) -> ToolDecision | None:
        try:
            raw = await self.generation.generate(
                self.model, self.build_prompt(query), self.config.decision_temperature
            )
        except Exception as exc:
            logger.warning("Tool decision via LLM failed, using heuristics: %s", exc)
            return None

        decision = parse_decision(raw)
        if decision is None:
            logger.warning("Unparseable tool decision %r, using heuristics", raw[:120])
        return decision


def parse_decision(raw: str) -> ToolDecision | None:
    """Extract the first `{"tool": ...}` object from free-form model output."""

    match = _JSON_PATTERN.search(raw)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return ToolDecision.parse(parsed.get("tool"))


def _normalize(query: str) -> str:
    return query.lower().strip()
