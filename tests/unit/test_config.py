import pytest
from pydantic import ValidationError

from hybrid_agent.config import AppConfig, GenerationConfig


def test_defaults_without_environment() -> None:
    config = AppConfig.from_env({})

    assert config.generation.openai_base_url == "http://localhost:11434/v1"
    assert config.generation.generation_timeout_seconds == 180.0
    assert config.knowledge.top_k == 5
    assert config.knowledge.min_similarity == 0.3
    assert config.web_search.configured is False
    assert config.cache.embedding_cache_key == "prefix"
    assert config.agent.local_entities == []


def test_millisecond_options_are_converted_to_seconds() -> None:
    config = AppConfig.from_env(
        {
            "OLLAMA_GENERATION_TIMEOUT": "5000",
            "WEB_SEARCH_CACHE": "60000",
            "WEB_SEARCH_RATE_LIMIT_COOLDOWN": "250",
            "STREAM_CHUNK_DELAY": "20",
        }
    )

    assert config.generation.generation_timeout_seconds == 5.0
    assert config.web_search.cache_duration_seconds == 60.0
    assert config.web_search.rate_limit_cooldown_seconds == 0.25
    assert config.agent.stream_chunk_delay_seconds == 0.02


def test_environment_overrides() -> None:
    config = AppConfig.from_env(
        {
            "OLLAMA_URL": "http://runtime:11434/",
            "CHROMA_SSL": "TRUE",
            "TAVILY_API_KEY": "tvly-key",
            "AGENT_LOCAL_ENTITIES": "Acme, Globex ,",
            "EMBEDDING_CACHE_KEY": "sha256",
            "LOG_LEVEL": "debug",
        }
    )

    assert config.generation.openai_base_url == "http://runtime:11434/v1"
    assert config.knowledge.ssl is True
    assert config.web_search.configured is True
    assert config.agent.local_entities == ["Acme", "Globex"]
    assert config.cache.embedding_cache_key == "sha256"
    assert config.log_level == "DEBUG"


def test_invalid_values_fail_validation() -> None:
    with pytest.raises(ValidationError):
        AppConfig.from_env({"RAG_TOP_K": "0"})
    with pytest.raises(ValidationError):
        AppConfig.from_env({"EMBEDDING_CACHE_KEY": "md5"})
    with pytest.raises(ValidationError):
        GenerationConfig(generation_timeout_seconds=0)
