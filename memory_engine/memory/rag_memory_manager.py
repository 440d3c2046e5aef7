"""Memory engine façade: add, retrieve, format and clear memories.

Architectural role:
    Orchestrates `EmbeddingGenerator` and the backend chosen by
    `VectorMemoryManager`. Callers never branch on the backend; both paths expose
    the same option semantics, score direction and inclusive threshold.

Request lifecycle (`add_memory`):
    1. Require initialization (`MemoryNotReadyError` otherwise).
    2. Generate id and creation timestamp.
    3. Embed text (never fails, falls back locally).
    4. Write to the active backend.

Failure model:
    - Calls before `initialize()` raise `MemoryNotReadyError`.
    - External-store failures after startup propagate unchanged; the engine does
      not switch to local mode mid-session.
    - Operations on unknown ids return `False` / `None`.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable

from memory_engine.memory.config import MemoryConfig
from memory_engine.memory.embedding_generator import EmbeddingGenerator
from memory_engine.memory.errors import MemoryNotReadyError
from memory_engine.memory.types import (
    DEFAULT_IMPORTANCE,
    Memory,
    MemorySearchOptions,
    MemorySearchResult,
    MemoryType,
    parse_timestamp,
    type_value,
    utc_now,
)
from memory_engine.memory.vector_memory_manager import VectorMemoryManager


logger = logging.getLogger(__name__)

NO_MEMORIES_TEXT = "No relevant memories found."


def generate_memory_id(now: datetime) -> str:
    """Return `mem_<epoch-ms>_<random suffix>`."""
    return f"mem_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


def _preview(text: str, size: int = 50) -> str:
    return text if len(text) <= size else text[:size] + "..."


class RAGMemoryManager:
    """Consumer-facing memory engine over whichever backend is active."""

    def __init__(
        self,
        config: MemoryConfig | None = None,
        *,
        embedding_generator: EmbeddingGenerator | None = None,
        vector_manager: VectorMemoryManager | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or MemoryConfig()
        self.embedding_generator = embedding_generator or EmbeddingGenerator(self.config)
        self.vector_manager = vector_manager or VectorMemoryManager(self.config)
        self.clock = clock or utc_now
        self.initialized = False

    async def initialize(self) -> None:
        """Initialize embeddings, then storage. A second call is a no-op."""
        if self.initialized:
            logger.info("Memory engine already initialized")
            return

        logger.info("Initializing memory engine...")
        await self.embedding_generator.initialize()
        await self.vector_manager.initialize_database()
        self.initialized = True

        info = self.get_storage_info()
        logger.info(
            "Memory engine initialized with %s storage and %s embeddings",
            info["type"],
            info["embedding_type"],
        )

    # ------------------------------------------------------------------
    def is_ready(self) -> bool:
        return self.initialized and self.vector_manager.is_ready()

    @property
    def using_external(self) -> bool:
        return self.vector_manager.is_using_external()

    @property
    def backend(self):
        return self.vector_manager.backend

    def _require_ready(self):
        if not self.is_ready() or self.backend is None:
            raise MemoryNotReadyError(
                f"{type(self).__name__} not ready. Call initialize() first."
            )
        return self.backend

    # ------------------------------------------------------------------
    async def add_memory(
        self,
        text: str,
        speaker: str,
        memory_type: MemoryType | str,
        persona: str,
        importance: int = DEFAULT_IMPORTANCE,
        extra_metadata: dict[str, Any] | None = None,
    ) -> str:
        """Embed and store one memory; return its id."""
        backend = self._require_ready()

        now = self.clock()
        memory_id = generate_memory_id(now)

        logger.debug("Generating embedding for memory: %r", _preview(text))
        embedding = await self.embedding_generator.generate_embedding(text)

        memory = Memory(
            id=memory_id,
            text=text,
            embedding=embedding,
            metadata={
                "speaker": speaker,
                "timestamp": now.isoformat(),
                "type": type_value(memory_type),
                "persona": persona,
                "importance": importance,
                **(extra_metadata or {}),
            },
        )

        await backend.add(memory)
        logger.info("Memory added: %s", memory_id)
        return memory_id

    async def retrieve_relevant_memories(
        self,
        query: str,
        options: MemorySearchOptions | None = None,
    ) -> list[MemorySearchResult]:
        """Return memories similar to `query`, best first.

        Args:
            query: Free-text query; embedded with the same generator as stored text.
            options: Limit, inclusive threshold and attribute filters. Defaults come
                from `MemoryConfig.search_limit` / `search_threshold`.
        """
        backend = self._require_ready()
        if options is None:
            options = MemorySearchOptions(
                limit=self.config.search_limit,
                threshold=self.config.search_threshold,
            )

        logger.debug("Searching for memories matching: %r", _preview(query))
        query_embedding = await self.embedding_generator.generate_embedding(query)

        try:
            results = await backend.search(query_embedding, options)
        except Exception:
            logger.exception("Memory search failed on %s backend", backend.name)
            raise

        logger.debug("Found %d relevant memories", len(results))
        return results

    @staticmethod
    def format_memories_for_context(results: list[MemorySearchResult]) -> str:
        """Render search results as numbered blocks for prompt assembly."""
        if not results:
            return NO_MEMORIES_TEXT

        blocks = []
        for index, result in enumerate(results, start=1):
            memory = result.memory
            metadata = memory.metadata
            timestamp = metadata.get("timestamp", "")
            try:
                date = parse_timestamp(timestamp).astimezone().strftime("%Y-%m-%d %H:%M:%S")
            except (TypeError, ValueError):
                date = str(timestamp)

            blocks.append(
                f"[Memory {index}] (relevance: {result.score * 100:.1f}%, "
                f"importance: {metadata.get('importance', DEFAULT_IMPORTANCE)}/10)\n"
                f"Speaker: {metadata.get('speaker', '')}\n"
                f"Type: {metadata.get('type', '')}\n"
                f"Date: {date}\n"
                f"Content: {memory.text}"
            )

        return "\n\n".join(blocks)

    # ------------------------------------------------------------------
    async def get_all_memories(self) -> list[Memory]:
        backend = self._require_ready()
        return await backend.get_all()

    async def get_memory_by_id(self, memory_id: str) -> Memory | None:
        backend = self._require_ready()
        return await backend.get_by_id(memory_id)

    async def update_memory(self, memory_id: str, replacement: Memory) -> bool:
        """Replace a stored memory; re-embed when its text changed.

        Returns:
            `False` when `memory_id` is not stored.
        """
        backend = self._require_ready()

        existing = await backend.get_by_id(memory_id)
        if existing is None:
            return False

        updated = replacement.copy()
        updated.id = memory_id
        if updated.text != existing.text or updated.embedding is None:
            updated.embedding = await self.embedding_generator.generate_embedding(updated.text)

        ok = await backend.update(memory_id, updated)
        if ok:
            logger.info("Memory updated: %s", memory_id)
        return ok

    async def delete_memory(self, memory_id: str) -> bool:
        backend = self._require_ready()
        deleted = await backend.delete(memory_id)
        if deleted:
            logger.info("Memory deleted: %s", memory_id)
        return deleted

    async def clear_all_memories(self) -> None:
        backend = self._require_ready()
        try:
            await backend.clear()
        except Exception:
            logger.exception("Failed to clear memories on %s backend", backend.name)
            raise

        if self.using_external:
            self.vector_manager.collection = getattr(backend, "collection", None)
        logger.info("All memories cleared")

    def get_storage_info(self) -> dict[str, Any]:
        return {
            "type": "external" if self.using_external else "local",
            "embedding_type": (
                self.embedding_generator.config.embedding_provider
                if self.embedding_generator.is_remote_available()
                else "fallback"
            ),
            "ready": self.is_ready(),
        }
