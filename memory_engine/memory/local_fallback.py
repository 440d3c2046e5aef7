"""Local brute-force vector index mirrored to durable key-value storage.

Architectural role:
    The fallback backend used when no external vector database is reachable. Holds
    the full list of `Memory` records in process and mirrors it as one JSON blob
    under a single namespace key.

Ranking model:
    - Candidates are filtered by exact `speaker`, `persona` and `type` match and
      must carry an embedding.
    - Score is the cosine similarity between query and memory embeddings.
    - Results with `score >= threshold` are kept, sorted descending by score with a
      stable sort (insertion order breaks ties), and truncated to `limit`.

Persistence failure handling:
    On `StorageQuotaExceededError` the store runs emergency pruning and retries the
    write once. Pruning keeps the `prune_target` most recent records by
    `metadata.timestamp`; when the list is already that small it keeps the newest
    half instead, so the retried blob always shrinks. If the retry fails, the
    pruned list stays the source of truth for the session, the mutation that
    triggered the write is undone, and `MemoryPersistenceError` is raised.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Sequence

import numpy as np

from memory_engine.memory.errors import MemoryPersistenceError, StorageQuotaExceededError
from memory_engine.memory.kv_storage import InMemoryStorage, KeyValueStorage
from memory_engine.memory.types import (
    Memory,
    MemorySearchOptions,
    MemorySearchResult,
    timestamp_to_epoch,
    type_value,
)


logger = logging.getLogger(__name__)

STORAGE_KEY = "personai_vector_memories"
DEFAULT_PRUNE_TARGET = 500


def calculate_cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Return the cosine similarity of two vectors.

    Returns `0.0` when the vectors differ in length or either norm is zero.
    """
    if len(vec_a) != len(vec_b):
        logger.debug("Vector length mismatch: %d != %d", len(vec_a), len(vec_b))
        return 0.0

    a = np.asarray(vec_a, dtype=np.float64)
    b = np.asarray(vec_b, dtype=np.float64)

    norm_a = float(np.sqrt(np.dot(a, a)))
    norm_b = float(np.sqrt(np.dot(b, b)))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(a, b)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, similarity))


class LocalMemoryFallback:
    """In-process memory list with cosine search and JSON persistence."""

    def __init__(
        self,
        storage: KeyValueStorage | None = None,
        storage_key: str = STORAGE_KEY,
        prune_target: int = DEFAULT_PRUNE_TARGET,
    ) -> None:
        self.storage = storage if storage is not None else InMemoryStorage()
        self.storage_key = storage_key
        self.prune_target = prune_target
        self._memories: list[Memory] = []
        self._lock = threading.RLock()
        self.load()

    # ------------------------------------------------------------------
    def load(self) -> None:
        """Load the persisted list; unreadable data starts an empty list."""
        try:
            stored = self.storage.get_item(self.storage_key)
            if stored:
                data = json.loads(stored)
                self._memories = [Memory.from_dict(item) for item in data]
                logger.info("Loaded %d memories from local storage", len(self._memories))
        except Exception:
            logger.exception("Failed to load memories from key %s", self.storage_key)
            self._memories = []

    def _serialize(self) -> str:
        return json.dumps([m.to_dict() for m in self._memories], ensure_ascii=False)

    def save(self) -> None:
        """Write the full list, pruning once under quota pressure.

        Raises:
            MemoryPersistenceError: When the write fails for a non-quota reason, or
                the retry after emergency pruning also fails.
        """
        with self._lock:
            try:
                self.storage.set_item(self.storage_key, self._serialize())
                return
            except StorageQuotaExceededError:
                logger.warning(
                    "Storage quota exceeded with %d memories, pruning",
                    len(self._memories),
                )
            except OSError as exc:
                logger.exception("Failed to save memories")
                raise MemoryPersistenceError("Failed to save memories") from exc

            self.emergency_prune()
            try:
                self.storage.set_item(self.storage_key, self._serialize())
                logger.info("Saved %d memories after emergency pruning", len(self._memories))
            except (StorageQuotaExceededError, OSError) as exc:
                logger.error(
                    "Save failed after emergency pruning; keeping %d memories in process only",
                    len(self._memories),
                )
                raise MemoryPersistenceError("Failed to save memories after pruning") from exc

    def emergency_prune(self) -> int:
        """Drop the oldest memories; return the number removed.

        Keeps `prune_target` records, or half of the list when it already holds
        no more than that.
        """
        with self._lock:
            total = len(self._memories)
            if total == 0:
                return 0
            target = self.prune_target if total > self.prune_target else total // 2

            # Later insertions win timestamp ties.
            newest_first = sorted(
                enumerate(self._memories),
                key=lambda pair: (timestamp_to_epoch(pair[1].metadata.get("timestamp")), pair[0]),
                reverse=True,
            )
            keep = {m.id for _, m in newest_first[:target]}
            removed = len(self._memories) - len(keep)
            self._memories = [m for m in self._memories if m.id in keep]

        logger.warning("Emergency pruning removed %d memories", removed)
        return removed

    # ------------------------------------------------------------------
    def add_memory(self, memory: Memory) -> None:
        with self._lock:
            self._memories.append(memory.copy())
            try:
                self.save()
            except MemoryPersistenceError:
                self._memories = [m for m in self._memories if m.id != memory.id]
                raise
            total = len(self._memories)
        logger.debug("Added memory %s, total: %d", memory.id, total)

    def search_memories(
        self,
        options: MemorySearchOptions,
        query_embedding: Sequence[float],
    ) -> list[MemorySearchResult]:
        """Rank stored memories against `query_embedding`.

        Args:
            options: Limit, threshold and exact-match attribute filters.
            query_embedding: Query vector.

        Returns:
            Results with `score >= options.threshold`, best first, at most
            `options.limit` entries.
        """
        memory_type = type_value(options.memory_type)

        with self._lock:
            candidates = [
                m for m in self._memories
                if m.embedding is not None
                and (not options.speaker or m.metadata.get("speaker") == options.speaker)
                and (not options.persona or m.metadata.get("persona") == options.persona)
                and (not memory_type or m.metadata.get("type") == memory_type)
            ]

        results = []
        for memory in candidates:
            score = calculate_cosine_similarity(query_embedding, memory.embedding)
            if score >= options.threshold:
                results.append(MemorySearchResult(memory=memory.copy(), score=score))

        results.sort(key=lambda r: r.score, reverse=True)
        results = results[: max(0, options.limit)]

        logger.debug("Found %d memories matching criteria", len(results))
        return results

    def calculate_cosine_similarity(self, vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
        return calculate_cosine_similarity(vec_a, vec_b)

    def get_all_memories(self) -> list[Memory]:
        with self._lock:
            return [m.copy() for m in self._memories]

    def get_memory_by_id(self, memory_id: str) -> Memory | None:
        with self._lock:
            for memory in self._memories:
                if memory.id == memory_id:
                    return memory.copy()
        return None

    def update_memory(self, memory_id: str, replacement: Memory) -> bool:
        with self._lock:
            for i, memory in enumerate(self._memories):
                if memory.id == memory_id:
                    updated = replacement.copy()
                    updated.id = memory_id
                    self._memories[i] = updated
                    try:
                        self.save()
                    except MemoryPersistenceError:
                        self._restore(memory)
                        raise
                    return True
        return False

    def delete_memory(self, memory_id: str) -> bool:
        with self._lock:
            for i, memory in enumerate(self._memories):
                if memory.id == memory_id:
                    del self._memories[i]
                    try:
                        self.save()
                    except MemoryPersistenceError:
                        self._memories.insert(min(i, len(self._memories)), memory)
                        raise
                    return True
        return False

    def _restore(self, previous: Memory) -> None:
        for i, memory in enumerate(self._memories):
            if memory.id == previous.id:
                self._memories[i] = previous
                return

    def clear_all_memories(self) -> None:
        with self._lock:
            self._memories = []
            self.save()
        logger.info("Cleared all local memories")

    def __len__(self) -> int:
        with self._lock:
            return len(self._memories)
