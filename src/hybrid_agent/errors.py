"""Error taxonomy shared across agent components."""

from __future__ import annotations


class AgentError(Exception):
    """Base class for errors raised by the agent and its backends."""


class BackendUnavailableError(AgentError):
    """The vector index or the web search API could not serve a request."""


class WebSearchError(BackendUnavailableError):
    """The web search API answered with a non-success status or a bad body."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class WebSearchNotConfiguredError(BackendUnavailableError):
    """No web search credential is configured."""


class SearchTimeoutError(BackendUnavailableError, TimeoutError):
    """The web search API did not answer within its timeout after retries."""


class KnowledgeStoreNotInitializedError(AgentError, RuntimeError):
    """The local knowledge store was used before `initialize()`."""


class GenerationError(AgentError):
    """The LLM runtime failed to generate text or embeddings."""


class GenerationTimeoutError(GenerationError, TimeoutError):
    """An LLM runtime call exceeded its configured timeout."""


class RetrievalError(AgentError):
    """Every backend chosen for a query failed."""
