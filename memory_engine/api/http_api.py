"""
HTTP API adapter for the memory engine.

Architectural role:
- Expose the consumer-facing engine operations over JSON HTTP.
- Enforce adapter-level input validation through pydantic request schemas.
- Delegate all storage and ranking work to `EnhancedRAGMemoryManager`.
- Normalize engine output (dataclasses, datetimes) to JSON transport contracts.

Endpoint responsibilities:
- `GET /health`: liveness plus readiness of the engine.
- `GET /v1/memory/info`: active backend and embedding mode.
- `POST /v1/memories`: store one memory, return its id.
- `GET /v1/memories/{id}` / `DELETE /v1/memories/{id}`: single-record access.
- `POST /v1/memories/search`: semantic search, optionally recency boosted.
- `GET /v1/memories/type/{type}`: memories of one type, newest first.
- `GET /v1/speakers`, `GET /v1/speakers/{speaker}/stats`: speaker analytics.
- `POST /v1/memories/tags`: tag search (any tag matches).
- `DELETE /v1/memories`: clear every memory on the active backend.

Engine lifecycle:
- One engine per application instance, held on `app.state.engine`.
- `initialize()` runs in the lifespan hook; it is idempotent and never fails on
  backend/embedding degradation (those fall back locally).

Error handling strategy:
- Unknown memory ids -> HTTP 404.
- Unknown speaker for stats -> HTTP 404 (the engine raises `UnknownSpeakerError`).
- Calls before initialization -> HTTP 503.
- External-store failures after startup are not wrapped here and follow FastAPI
  default exception handling.

Side effects:
- Loads environment variables at import time via `load_dotenv()`.
- Writes to the configured storage directory on the local fallback path.
"""

from dotenv import load_dotenv

load_dotenv()

import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from memory_engine.memory.enhanced_rag_memory_manager import EnhancedRAGMemoryManager
from memory_engine.memory.errors import MemoryNotReadyError, UnknownSpeakerError
from memory_engine.memory.types import (
    DEFAULT_IMPORTANCE,
    EnhancedSearchOptions,
    Memory,
    MemorySearchOptions,
    MemorySearchResult,
    MemoryType,
)

API_HOST = os.getenv("MEMORY_API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("MEMORY_API_PORT", "8000"))


# ============================================================
# Request Schemas
# ============================================================

class AddMemoryRequest(BaseModel):
    text: str = Field(min_length=1)
    speaker: str = Field(min_length=1)
    type: MemoryType = MemoryType.CONVERSATION
    persona: str = "default"
    importance: int = Field(DEFAULT_IMPORTANCE, ge=1, le=10)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: Optional[int] = Field(None, ge=1)
    threshold: Optional[float] = Field(None, ge=-1.0, le=1.0)
    speaker: Optional[str] = None
    persona: Optional[str] = None
    type: Optional[MemoryType] = None
    time_boost: bool = False
    importance_threshold: Optional[float] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    tags: Optional[list[str]] = None


class TagSearchRequest(BaseModel):
    tags: list[str] = Field(min_length=1)
    speaker: Optional[str] = None
    persona: Optional[str] = None
    type: Optional[MemoryType] = None
    limit: Optional[int] = Field(None, ge=1)


# ============================================================
# Response Formatting
# ============================================================

def memory_to_json(memory: Memory) -> dict[str, Any]:
    """Transport shape of a memory; embeddings are omitted."""
    return {"id": memory.id, "text": memory.text, "metadata": memory.metadata}


def result_to_json(result: MemorySearchResult) -> dict[str, Any]:
    return {"memory": memory_to_json(result.memory), "score": result.score}


def not_found(detail: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": detail})


# ============================================================
# Application Factory
# ============================================================

def get_engine(request: Request) -> EnhancedRAGMemoryManager:
    return request.app.state.engine


def create_app(engine: Optional[EnhancedRAGMemoryManager] = None) -> FastAPI:
    """Build the HTTP application around `engine` (a fresh engine by default)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.engine.initialize()
        yield

    app = FastAPI(title="Semantic Memory Engine", lifespan=lifespan)
    app.state.engine = engine or EnhancedRAGMemoryManager()

    @app.exception_handler(MemoryNotReadyError)
    async def not_ready_handler(request: Request, exc: MemoryNotReadyError):
        return JSONResponse(status_code=503, content={"error": str(exc)})

    @app.get("/health")
    def health(engine: EnhancedRAGMemoryManager = Depends(get_engine)):
        return {"status": "ok", "ready": engine.is_ready()}

    @app.get("/v1/memory/info")
    def memory_info(engine: EnhancedRAGMemoryManager = Depends(get_engine)):
        return engine.get_storage_info()

    # --------------------------------------------------------
    # Memories
    # --------------------------------------------------------

    @app.post("/v1/memories", status_code=201)
    async def add_memory(
        body: AddMemoryRequest,
        engine: EnhancedRAGMemoryManager = Depends(get_engine),
    ):
        memory_id = await engine.add_memory(
            body.text,
            body.speaker,
            body.type,
            body.persona,
            body.importance,
            body.metadata,
        )
        return {"id": memory_id}

    @app.delete("/v1/memories")
    async def clear_memories(engine: EnhancedRAGMemoryManager = Depends(get_engine)):
        await engine.clear_all_memories()
        return {"cleared": True}

    @app.post("/v1/memories/search")
    async def search_memories(
        body: SearchRequest,
        engine: EnhancedRAGMemoryManager = Depends(get_engine),
    ):
        limit = body.limit or engine.config.search_limit
        threshold = body.threshold if body.threshold is not None else engine.config.search_threshold
        date_range = (body.start, body.end) if body.start and body.end else None

        if body.time_boost or body.importance_threshold is not None or date_range or body.tags:
            options = EnhancedSearchOptions(
                limit=limit,
                threshold=threshold,
                speaker=body.speaker,
                persona=body.persona,
                memory_type=body.type,
                date_range=date_range,
                tags=body.tags,
                time_boost=body.time_boost,
                importance_threshold=body.importance_threshold,
            )
            results = await engine.search_with_time_boost(body.query, options)
        else:
            options = MemorySearchOptions(
                limit=limit,
                threshold=threshold,
                speaker=body.speaker,
                persona=body.persona,
                memory_type=body.type,
            )
            results = await engine.retrieve_relevant_memories(body.query, options)

        return {
            "results": [result_to_json(r) for r in results],
            "context": engine.format_memories_for_context(results),
        }

    @app.post("/v1/memories/tags")
    async def search_tags(
        body: TagSearchRequest,
        engine: EnhancedRAGMemoryManager = Depends(get_engine),
    ):
        memories = await engine.search_by_tags(
            body.tags,
            speaker=body.speaker,
            persona=body.persona,
            memory_type=body.type,
            limit=body.limit,
        )
        return {"memories": [memory_to_json(m) for m in memories]}

    @app.get("/v1/memories/type/{memory_type}")
    async def memories_by_type(
        memory_type: MemoryType,
        engine: EnhancedRAGMemoryManager = Depends(get_engine),
    ):
        memories = await engine.get_memories_by_type(memory_type)
        return {"memories": [memory_to_json(m) for m in memories]}

    @app.get("/v1/memories/{memory_id}")
    async def get_memory(memory_id: str, engine: EnhancedRAGMemoryManager = Depends(get_engine)):
        memory = await engine.get_memory_by_id(memory_id)
        if memory is None:
            return not_found("Memory not found")
        return memory_to_json(memory)

    @app.delete("/v1/memories/{memory_id}")
    async def delete_memory(memory_id: str, engine: EnhancedRAGMemoryManager = Depends(get_engine)):
        if not await engine.delete_memory(memory_id):
            return not_found("Memory not found")
        return {"deleted": True}

    # --------------------------------------------------------
    # Speakers
    # --------------------------------------------------------

    @app.get("/v1/speakers")
    async def speakers(engine: EnhancedRAGMemoryManager = Depends(get_engine)):
        return {"speakers": await engine.get_speakers()}

    @app.get("/v1/speakers/{speaker}/stats")
    async def speaker_stats(speaker: str, engine: EnhancedRAGMemoryManager = Depends(get_engine)):
        try:
            stats = await engine.get_speaker_stats(speaker)
        except UnknownSpeakerError as exc:
            return not_found(str(exc))

        return {
            "speaker": stats.speaker,
            "message_count": stats.message_count,
            "first_seen": stats.first_seen.isoformat(),
            "last_seen": stats.last_seen.isoformat(),
            "average_importance": stats.average_importance,
        }

    return app


app = create_app()


def main():
    """Serve the module-level application with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
