"""Live web search client with a freshness-window cache and retry policy."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from hybrid_agent.cache import BoundedCache
from hybrid_agent.config import WebSearchConfig
from hybrid_agent.errors import SearchTimeoutError, WebSearchError, WebSearchNotConfiguredError
from hybrid_agent.types import RetrievedSource, SearchResult

logger = logging.getLogger(__name__)

NO_WEB_RESULTS = "No relevant web results found."


class WebSearchClient:
    """Queries the search API and normalizes results into `SearchResult`.

    Retry policy:
    - HTTP 429 waits `rate_limit_cooldown_seconds`, then retries while
      `retry_count < max_rate_limit_retries`.
    - A timeout retries while `retry_count < max_timeout_retries`, then raises
      `SearchTimeoutError`.
    Both share the same `retry_count`, which grows by one per retry.
    """

    def __init__(
        self,
        config: WebSearchConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        cache_size: int = 512,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or WebSearchConfig()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._sleep = sleep
        self._cache: BoundedCache[str, SearchResult] = BoundedCache(
            cache_size, ttl_seconds=self.config.cache_duration_seconds, clock=clock
        )

    @property
    def configured(self) -> bool:
        return self.config.configured

    async def search(self, query: str, retry_count: int = 0) -> SearchResult:
        cache_key = _cache_key(query)
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.info("Using cached web search result")
            return cached

        if not self.configured:
            raise WebSearchNotConfiguredError("Web search API key is not configured")

        # httpx.Timeout bounds each phase; wait_for bounds the whole request and body read.
        try:
            response = await asyncio.wait_for(
                self._http.post(
                    self.config.endpoint,
                    json=self._payload(query),
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                ),
                timeout=self.config.timeout_seconds,
            )
        except (httpx.TimeoutException, TimeoutError) as exc:
            if retry_count < self.config.max_timeout_retries:
                logger.warning("Web search timed out, retrying")
                return await self.search(query, retry_count + 1)
            raise SearchTimeoutError("Web search timed out. Please try again.") from exc
        except httpx.HTTPError as exc:
            raise WebSearchError(f"Web search request failed: {exc}") from exc

        if response.status_code == 429:
            logger.warning(
                "Web search rate limited, waiting %.1fs before retry",
                self.config.rate_limit_cooldown_seconds,
            )
            await self._sleep(self.config.rate_limit_cooldown_seconds)
            if retry_count < self.config.max_rate_limit_retries:
                return await self.search(query, retry_count + 1)

        if not response.is_success:
            raise WebSearchError(
                f"Web search failed: {response.status_code} {response.reason_phrase}. "
                f"{response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise WebSearchError(
                "No results from web search",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(data, dict):
            raise WebSearchError("No results from web search", status_code=response.status_code)

        result = self._parse_response(data)
        self._cache.set(cache_key, result)
        return result

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def _payload(self, query: str) -> dict[str, Any]:
        return {
            "api_key": self.config.api_key,
            "query": query,
            "search_depth": "advanced",
            "max_results": self.config.max_results,
            "include_answer": True,
            "include_raw_content": False,
            "include_domains": [],
            "exclude_domains": [],
        }

    def _parse_response(self, data: dict[str, Any]) -> SearchResult:
        answer: str | None = None
        raw_answer = data.get("answer")
        if isinstance(raw_answer, str) and raw_answer.strip():
            answer = raw_answer.strip()

        sources: list[RetrievedSource] = []
        results = data.get("results")
        if isinstance(results, list):
            for item in results[: self.config.max_results]:
                if not isinstance(item, dict):
                    continue
                raw_score = item.get("score")
                sources.append(
                    RetrievedSource(
                        type="web",
                        title=item.get("title") or "Untitled",
                        url=item.get("url") or "",
                        content=str(item.get("content") or item.get("snippet") or "")[
                            : self.config.max_content_chars
                        ],
                        score=round(float(raw_score) * 100) if raw_score else None,
                    )
                )

        parts: list[str] = []
        if answer:
            parts.append(f"**Summary:** {answer}")
        if sources:
            parts.append("\n**Sources:**")
            for idx, source in enumerate(sources, start=1):
                score_text = f" (relevance: {source.score:.0f}%)" if source.score else ""
                parts.append(
                    f"[{idx}] {source.title}{score_text}\n   {source.url}\n   {source.content}"
                )

        content = "\n\n".join(parts) if parts else NO_WEB_RESULTS
        return SearchResult(content=content, sources=sources, answer=answer)


def _cache_key(query: str) -> str:
    return query.lower().strip()
