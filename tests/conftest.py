from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from hybrid_agent.api.context import AppContext
from hybrid_agent.config import AppConfig, GenerationConfig, KnowledgeStoreConfig, WebSearchConfig
from hybrid_agent.ingest.embedder import HashingEmbedder
from hybrid_agent.llm.client import GenerationClient
from hybrid_agent.retrieval.vector_store import InMemoryVectorIndex
from hybrid_agent.retrieval.web_search import WebSearchClient

DECISION_MODEL = "decider"
ANSWER_MODEL = "writer"

TAVILY_RESPONSE = {
    "answer": "Paris is the capital of France.",
    "results": [
        {
            "title": "Paris - Wikipedia",
            "url": "https://en.wikipedia.org/wiki/Paris",
            "content": "Paris is the capital and largest city of France.",
            "score": 0.91,
        }
    ],
}

WebHandler = Callable[[httpx.Request], httpx.Response]


def tavily_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json=TAVILY_RESPONSE)


def tavily_down(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500, text="upstream exploded")


@pytest.fixture
def build_context(tmp_path) -> Callable[..., AppContext]:
    """Factory for a fully wired context with fake models and no network."""

    def _build(
        *,
        decision: str = '{"tool": "Local"}',
        answer: str = "ANSWER: Paris is the capital of France.",
        web_handler: WebHandler = tavily_ok,
        web_api_key: str = "test-key",
        seed: list[Any] | None = None,
        answer_chat: Any | None = None,
    ) -> AppContext:
        seed_path = tmp_path / "seed.json"
        if seed is not None:
            seed_path.write_text(json.dumps(seed), encoding="utf-8")

        models = {
            DECISION_MODEL: FakeListChatModel(responses=[decision]),
            ANSWER_MODEL: answer_chat or FakeListChatModel(responses=[answer]),
        }
        config = AppConfig(
            generation=GenerationConfig(decision_model=DECISION_MODEL, generate_model=ANSWER_MODEL),
            knowledge=KnowledgeStoreConfig(seed_path=str(seed_path)),
            web_search=WebSearchConfig(api_key=web_api_key),
        )
        generation = GenerationClient(
            config.generation, chat_factory=lambda model, temperature: models[model]
        )
        web_search = WebSearchClient(
            config.web_search,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(web_handler)),
        )
        return AppContext.build(
            config,
            generation=generation,
            index=InMemoryVectorIndex(),
            embedder=HashingEmbedder(),
            web_search=web_search,
        )

    return _build
