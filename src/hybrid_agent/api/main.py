"""FastAPI entrypoint for answer, ingestion, status and trace endpoints."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hybrid_agent.api.context import AppContext
from hybrid_agent.api.streaming import sse_frames, sse_response
from hybrid_agent.config import AppConfig
from hybrid_agent.errors import BackendUnavailableError

logger = logging.getLogger(__name__)


class AgentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(min_length=1)
    stream: bool = False
    web_search_only: bool = Field(default=False, alias="webSearchOnly")
    model: str | None = None

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value


class IngestRequest(BaseModel):
    documents: list[str]
    metadatas: list[dict[str, Any]] | None = None

    @model_validator(mode="after")
    def _lengths_match(self) -> "IngestRequest":
        if self.metadatas is not None and len(self.metadatas) != len(self.documents):
            raise ValueError("metadatas length must match documents length")
        return self


def get_context(request: Request) -> AppContext:
    return request.app.state.context


router = APIRouter()


@router.get("/health")
def health() -> dict[str, Any]:
    return {"status": "ok"}


@router.post("/agent")
async def answer(request: AgentRequest, ctx: AppContext = Depends(get_context)) -> Any:
    if request.stream:
        events = ctx.agent.stream(
            request.query, model=request.model, web_search_only=request.web_search_only
        )
        return sse_response(
            sse_frames(
                events,
                chunk_size=ctx.config.agent.stream_chunk_size,
                chunk_delay_seconds=ctx.config.agent.stream_chunk_delay_seconds,
            )
        )

    try:
        if request.web_search_only:
            result = await ctx.agent.web_only(request.query)
        else:
            result = await ctx.agent.answer(request.query, model=request.model)
    except BackendUnavailableError as exc:
        logger.error("Agent backend unavailable", exc_info=True)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except Exception as exc:
        logger.error("Agent request failed", exc_info=True)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return result.to_payload()


@router.get("/agent")
async def status(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    try:
        count = await ctx.knowledge_store.get_collection_count()
    except BackendUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    generation = ctx.config.generation
    return {
        "status": "ready",
        "config": {
            "generateModel": generation.generate_model,
            "decisionModel": generation.decision_model,
            "embeddingModel": generation.embedding_model,
            "ragDocuments": count,
            "webSearchEnabled": ctx.web_search.configured,
        },
        "tools": ctx.registry.names(),
    }


@router.post("/agent/documents")
async def add_documents(request: IngestRequest, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    try:
        result = await ctx.ingest.ingest(request.documents, request.metadatas)
    except Exception as exc:
        logger.error("Adding documents failed", exc_info=True)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"success": True, "added": result.added, "totalDocuments": result.total_documents}


@router.get("/agent/documents")
async def collection_info(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    try:
        count = await ctx.knowledge_store.get_collection_count()
    except BackendUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    knowledge = ctx.config.knowledge
    return {
        "collection": knowledge.collection_name,
        "documents": count,
        "config": {
            "host": knowledge.host,
            "port": knowledge.port,
            "embeddingModel": ctx.config.generation.embedding_model,
        },
    }


@router.get("/traces")
def traces(limit: int = 20, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    return {"items": [asdict(record) for record in ctx.trace_store.list_recent(limit=limit)]}


@router.get("/traces/{trace_id}")
def trace_detail(trace_id: str, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    try:
        record = ctx.trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@router.get("/metrics")
def metrics(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    return ctx.trace_store.summary()


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid')}"
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "; ".join(messages)})


def create_app(context: AppContext | None = None) -> FastAPI:
    """Build the app; without `context`, services are wired from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        ctx = context or AppContext.build(AppConfig.from_env())
        await ctx.startup()
        app.state.context = ctx
        try:
            yield
        finally:
            await ctx.shutdown()

    app = FastAPI(title="Hybrid Retrieval Agent", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.include_router(router)
    return app


app = create_app()
