"""Thin async wrapper over the local LLM runtime.

The runtime is reached through its OpenAI-compatible endpoint with LangChain's
OpenAI chat and embedding models. Generation and embedding calls carry their
own timeouts, and a timeout surfaces as `GenerationTimeoutError` rather than a
generic transport failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from langchain_core.messages import HumanMessage

from hybrid_agent.cache import BoundedCache
from hybrid_agent.config import GenerationConfig
from hybrid_agent.errors import GenerationError, GenerationTimeoutError

logger = logging.getLogger(__name__)

ChatFactory = Callable[[str, float], Any]
EmbeddingsFactory = Callable[[str], Any]


@dataclass(slots=True)
class StreamCallbacks:
    """Optional hooks for the callback form of streaming generation."""

    on_token: Callable[[str], None] | None = None
    on_complete: Callable[[str], None] | None = None
    on_error: Callable[[Exception], None] | None = None


class GenerationClient:
    """Text generation (blocking and streaming) and embedding computation."""

    def __init__(
        self,
        config: GenerationConfig | None = None,
        *,
        chat_factory: ChatFactory | None = None,
        embeddings_factory: EmbeddingsFactory | None = None,
    ) -> None:
        self.config = config or GenerationConfig()
        self._chat_factory = chat_factory or self._default_chat_factory
        self._embeddings_factory = embeddings_factory or self._default_embeddings_factory
        self._chat_models: BoundedCache[tuple[str, float], Any] = BoundedCache(32)
        self._embedding_models: BoundedCache[str, Any] = BoundedCache(8)

    async def generate(self, model: str, prompt: str, temperature: float = 0.3) -> str:
        """Return one complete, stripped response for `prompt`."""

        chat = self._chat_for(model, temperature)
        try:
            response = await asyncio.wait_for(
                chat.ainvoke([HumanMessage(content=prompt)]),
                timeout=self.config.generation_timeout_seconds,
            )
        except TimeoutError as exc:
            raise GenerationTimeoutError(
                f"Generation with {model} timed out after "
                f"{self.config.generation_timeout_seconds:.0f}s"
            ) from exc
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"Generation failed: {exc}") from exc
        return _message_text(response).strip()

    async def astream(
        self, model: str, prompt: str, temperature: float = 0.3
    ) -> AsyncIterator[str]:
        """Yield response chunks in generation order.

        The generation timeout bounds the whole stream. Closing the iterator
        early (for example on caller cancellation) closes the runtime stream.
        """

        chat = self._chat_for(model, temperature)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.generation_timeout_seconds
        iterator = chat.astream([HumanMessage(content=prompt)]).__aiter__()
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise GenerationTimeoutError(f"Streaming generation with {model} timed out")
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                except TimeoutError as exc:
                    raise GenerationTimeoutError(
                        f"Streaming generation with {model} timed out"
                    ) from exc
                except GenerationError:
                    raise
                except Exception as exc:
                    raise GenerationError(f"Streaming generation failed: {exc}") from exc
                text = _message_text(chunk)
                if text:
                    yield text
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def generate_stream(
        self,
        model: str,
        prompt: str,
        callbacks: StreamCallbacks,
        temperature: float = 0.3,
    ) -> str:
        """Callback form of `astream`; returns the full stripped text."""

        parts: list[str] = []
        try:
            async for token in self.astream(model, prompt, temperature):
                parts.append(token)
                if callbacks.on_token is not None:
                    callbacks.on_token(token)
        except GenerationError as exc:
            if callbacks.on_error is not None:
                callbacks.on_error(exc)
            raise
        full_text = "".join(parts).strip()
        if callbacks.on_complete is not None:
            callbacks.on_complete(full_text)
        return full_text

    async def embed(self, text: str, model: str | None = None) -> list[float]:
        """Embed `text`, truncated to the runtime's input limit."""

        model_name = model or self.config.embedding_model
        embeddings = self._embeddings_for(model_name)
        truncated = text[: self.config.max_embedding_chars]
        try:
            vector = await asyncio.wait_for(
                embeddings.aembed_query(truncated),
                timeout=self.config.embedding_timeout_seconds,
            )
        except TimeoutError as exc:
            raise GenerationTimeoutError(
                f"Embedding with {model_name} timed out after "
                f"{self.config.embedding_timeout_seconds:.0f}s"
            ) from exc
        except Exception as exc:
            raise GenerationError(f"Embedding failed: {exc}") from exc

        if not isinstance(vector, list) or not vector:
            raise GenerationError("Invalid embedding response from runtime")
        return [float(value) for value in vector]

    def _chat_for(self, model: str, temperature: float) -> Any:
        key = (model, round(temperature, 3))
        chat = self._chat_models.get(key)
        if chat is None:
            chat = self._chat_factory(model, temperature)
            self._chat_models.set(key, chat)
        return chat

    def _embeddings_for(self, model: str) -> Any:
        embeddings = self._embedding_models.get(model)
        if embeddings is None:
            embeddings = self._embeddings_factory(model)
            self._embedding_models.set(model, embeddings)
        return embeddings

    def _default_chat_factory(self, model: str, temperature: float) -> Any:
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=model,
            temperature=temperature,
            base_url=self.config.openai_base_url,
            api_key=self.config.api_key,
            max_tokens=self.config.max_tokens,
            top_p=0.9,
            max_retries=0,
        )

    def _default_embeddings_factory(self, model: str) -> Any:
        from langchain_openai import OpenAIEmbeddings

        return OpenAIEmbeddings(
            model=model,
            base_url=self.config.openai_base_url,
            api_key=self.config.api_key,
            check_embedding_ctx_length=False,
            max_retries=0,
        )


def _message_text(message: Any) -> str:
    if isinstance(message, str):
        return message
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return str(content)
