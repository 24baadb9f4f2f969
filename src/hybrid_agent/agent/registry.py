"""Async tool registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from time import perf_counter
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hybrid_agent.types import SearchResult, ToolTrace

ToolObserver = Callable[[ToolTrace], None]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], Awaitable[SearchResult]]
    tags: list[str] = Field(default_factory=list)

    async def invoke(self, payload: dict[str, Any]) -> SearchResult:
        data = self.args_schema.model_validate(payload)
        return await self.handler(data)


class ToolRegistry:
    """Stores retrieval tools and runs them with per-call observation."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    async def execute(
        self,
        name: str,
        payload: dict[str, Any],
        *,
        observer: ToolObserver | None = None,
    ) -> SearchResult:
        """Validate `payload`, run the tool and report a trace to `observer`.

        The observer also sees failed calls (with `error` set) before the
        exception propagates.
        """

        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")

        start = perf_counter()
        try:
            output = await spec.invoke(payload)
        except Exception as exc:
            if observer is not None:
                observer(
                    ToolTrace(
                        name=spec.name,
                        input_payload=payload,
                        output_preview="",
                        latency_ms=(perf_counter() - start) * 1000.0,
                        error=str(exc),
                    )
                )
            raise

        if observer is not None:
            observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=payload,
                    output_preview=output.content[:320],
                    latency_ms=(perf_counter() - start) * 1000.0,
                )
            )
        return output
