"""Configuration models for the hybrid retrieval agent."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, Field


class GenerationConfig(BaseModel):
    """Configures access to the local LLM runtime."""

    base_url: str = "http://localhost:11434"
    api_key: str = "ollama"
    generate_model: str = "granite4:1b-h"
    decision_model: str = "granite4:1b-h"
    embedding_model: str = "embeddinggemma:300m"
    generation_timeout_seconds: float = Field(default=180.0, gt=0.0)
    embedding_timeout_seconds: float = Field(default=120.0, gt=0.0)
    max_tokens: int = Field(default=512, ge=1)
    max_embedding_chars: int = Field(default=2048, ge=1)

    @property
    def openai_base_url(self) -> str:
        return self.base_url.rstrip("/") + "/v1"


class KnowledgeStoreConfig(BaseModel):
    """Configures the vector index connection and similarity filtering."""

    host: str = "localhost"
    port: int = Field(default=8000, ge=1, le=65535)
    ssl: bool = False
    collection_name: str = Field(default="local_docs", min_length=1)
    top_k: int = Field(default=5, ge=1)
    min_similarity: float = Field(default=0.3, ge=-1.0, le=1.0)
    seed_path: str = "data/data.json"


class WebSearchConfig(BaseModel):
    """Configures the live web search backend."""

    api_key: str = ""
    endpoint: str = "https://api.tavily.com/search"
    max_results: int = Field(default=5, ge=1, le=20)
    timeout_seconds: float = Field(default=20.0, gt=0.0)
    cache_duration_seconds: float = Field(default=300.0, ge=0.0)
    rate_limit_cooldown_seconds: float = Field(default=5.0, ge=0.0)
    max_rate_limit_retries: int = Field(default=2, ge=0)
    max_timeout_retries: int = Field(default=1, ge=0)
    max_content_chars: int = Field(default=500, ge=1)

    @property
    def configured(self) -> bool:
        return bool(self.api_key.strip())


class CacheConfig(BaseModel):
    """Bounds for the process-wide caches."""

    decision_cache_size: int = Field(default=1024, ge=1)
    embedding_cache_size: int = Field(default=4096, ge=1)
    embedding_cache_key: Literal["prefix", "sha256"] = "prefix"
    embedding_cache_prefix_chars: int = Field(default=100, ge=1)
    web_cache_size: int = Field(default=512, ge=1)


class AgentConfig(BaseModel):
    """Configures classification, generation and streaming behaviour."""

    decision_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    answer_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    both_margin: int = Field(default=3, ge=0)
    local_entities: list[str] = Field(default_factory=list)
    stream_chunk_size: int = Field(default=0, ge=0)
    stream_chunk_delay_seconds: float = Field(default=0.0, ge=0.0)
    max_traces: int = Field(default=1000, ge=1)


class AppConfig(BaseModel):
    """Top-level configuration assembled from environment-style options."""

    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    knowledge: KnowledgeStoreConfig = Field(default_factory=KnowledgeStoreConfig)
    web_search: WebSearchConfig = Field(default_factory=WebSearchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        """Build configuration from environment variables.

        Durations are given in milliseconds in the environment and stored in
        seconds. Unset variables keep the model defaults.
        """

        env = os.environ if environ is None else environ

        def _ms(name: str, default_seconds: float) -> float:
            raw = env.get(name)
            return default_seconds if raw in (None, "") else float(raw) / 1000.0

        generation_defaults = GenerationConfig()
        knowledge_defaults = KnowledgeStoreConfig()
        web_defaults = WebSearchConfig()
        cache_defaults = CacheConfig()
        agent_defaults = AgentConfig()

        return cls(
            generation=GenerationConfig(
                base_url=env.get("OLLAMA_URL", generation_defaults.base_url),
                api_key=env.get("OLLAMA_API_KEY", generation_defaults.api_key),
                generate_model=env.get("OLLAMA_GENERATE_MODEL", generation_defaults.generate_model),
                decision_model=env.get("OLLAMA_DECISION_MODEL", generation_defaults.decision_model),
                embedding_model=env.get(
                    "OLLAMA_EMBEDDING_MODEL", generation_defaults.embedding_model
                ),
                generation_timeout_seconds=_ms(
                    "OLLAMA_GENERATION_TIMEOUT", generation_defaults.generation_timeout_seconds
                ),
                embedding_timeout_seconds=_ms(
                    "OLLAMA_EMBEDDING_TIMEOUT", generation_defaults.embedding_timeout_seconds
                ),
                max_tokens=int(env.get("OLLAMA_MAX_TOKENS", generation_defaults.max_tokens)),
            ),
            knowledge=KnowledgeStoreConfig(
                host=env.get("CHROMA_HOST", knowledge_defaults.host),
                port=int(env.get("CHROMA_PORT", knowledge_defaults.port)),
                ssl=env.get("CHROMA_SSL", "false").strip().lower() == "true",
                collection_name=env.get("CHROMA_COLLECTION", knowledge_defaults.collection_name),
                top_k=int(env.get("RAG_TOP_K", knowledge_defaults.top_k)),
                min_similarity=float(env.get("RAG_MIN_SIMILARITY", knowledge_defaults.min_similarity)),
                seed_path=env.get("KNOWLEDGE_SEED_PATH", knowledge_defaults.seed_path),
            ),
            web_search=WebSearchConfig(
                api_key=env.get("TAVILY_API_KEY", ""),
                max_results=int(env.get("WEB_SEARCH_MAX_RESULTS", web_defaults.max_results)),
                timeout_seconds=_ms("WEB_SEARCH_TIMEOUT", web_defaults.timeout_seconds),
                cache_duration_seconds=_ms("WEB_SEARCH_CACHE", web_defaults.cache_duration_seconds),
                rate_limit_cooldown_seconds=_ms(
                    "WEB_SEARCH_RATE_LIMIT_COOLDOWN", web_defaults.rate_limit_cooldown_seconds
                ),
            ),
            cache=CacheConfig(
                decision_cache_size=int(
                    env.get("AGENT_DECISION_CACHE_SIZE", cache_defaults.decision_cache_size)
                ),
                embedding_cache_size=int(
                    env.get("EMBEDDING_CACHE_SIZE", cache_defaults.embedding_cache_size)
                ),
                embedding_cache_key=env.get(  # type: ignore[arg-type]
                    "EMBEDDING_CACHE_KEY", cache_defaults.embedding_cache_key
                ),
                web_cache_size=int(env.get("WEB_SEARCH_CACHE_SIZE", cache_defaults.web_cache_size)),
            ),
            agent=AgentConfig(
                local_entities=[
                    entity.strip()
                    for entity in env.get("AGENT_LOCAL_ENTITIES", "").split(",")
                    if entity.strip()
                ],
                stream_chunk_size=int(env.get("STREAM_CHUNK_SIZE", agent_defaults.stream_chunk_size)),
                stream_chunk_delay_seconds=_ms(
                    "STREAM_CHUNK_DELAY", agent_defaults.stream_chunk_delay_seconds
                ),
            ),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
