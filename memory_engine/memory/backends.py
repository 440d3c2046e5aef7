"""Storage backend interface and its two implementations.

Architectural role:
    The engine talks to exactly one `MemoryBackend`, selected once at startup by
    `VectorMemoryManager`. Both implementations honor the same option semantics so
    results are interchangeable:
    - `limit` caps the result count,
    - `threshold` is inclusive (`score >= threshold`),
    - higher score means more relevant,
    - equal scores keep the order the store produced them in.

External store (`ChromaBackend`):
    Wraps a collection created for cosine space. Distances `d` become scores via
    `score = 1 - d`. Blocking client calls run through `asyncio.to_thread`.
    Metadata values that are not scalars are JSON-encoded on write (their keys are
    listed under `_json_keys`) and decoded on read; `None` values are dropped since
    the store rejects them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Protocol, Sequence

from memory_engine.memory.local_fallback import LocalMemoryFallback
from memory_engine.memory.types import Memory, MemorySearchOptions, MemorySearchResult


logger = logging.getLogger(__name__)

JSON_KEYS_FIELD = "_json_keys"
GET_ALL_LIMIT = 100000


class MemoryBackend(Protocol):
    """Operations the engine needs from a storage backend."""

    name: str

    async def add(self, memory: Memory) -> None: ...

    async def search(
        self, query_embedding: Sequence[float], options: MemorySearchOptions
    ) -> list[MemorySearchResult]: ...

    async def get_all(self) -> list[Memory]: ...

    async def get_by_id(self, memory_id: str) -> Memory | None: ...

    async def update(self, memory_id: str, memory: Memory) -> bool: ...

    async def delete(self, memory_id: str) -> bool: ...

    async def clear(self) -> None: ...


class LocalBackend:
    """Adapter exposing `LocalMemoryFallback` through the backend interface.

    Writes serialize the whole list and search scans it, so both run in a worker
    thread; the fallback's lock serializes them.
    """

    name = "local"

    def __init__(self, fallback: LocalMemoryFallback):
        self.fallback = fallback

    async def add(self, memory: Memory) -> None:
        await asyncio.to_thread(self.fallback.add_memory, memory)

    async def search(self, query_embedding, options):
        return await asyncio.to_thread(self.fallback.search_memories, options, query_embedding)

    async def get_all(self) -> list[Memory]:
        return self.fallback.get_all_memories()

    async def get_by_id(self, memory_id: str) -> Memory | None:
        return self.fallback.get_memory_by_id(memory_id)

    async def update(self, memory_id: str, memory: Memory) -> bool:
        return await asyncio.to_thread(self.fallback.update_memory, memory_id, memory)

    async def delete(self, memory_id: str) -> bool:
        return await asyncio.to_thread(self.fallback.delete_memory, memory_id)

    async def clear(self) -> None:
        await asyncio.to_thread(self.fallback.clear_all_memories)


def encode_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Flatten metadata into the scalar-only shape the external store accepts."""
    encoded: dict[str, Any] = {}
    json_keys = []
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, (str, int, float, bool)):
            encoded[key] = value
        else:
            encoded[key] = json.dumps(value, ensure_ascii=False)
            json_keys.append(key)
    if json_keys:
        encoded[JSON_KEYS_FIELD] = ",".join(json_keys)
    return encoded


def decode_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    decoded = dict(metadata or {})
    json_keys = decoded.pop(JSON_KEYS_FIELD, "")
    for key in filter(None, str(json_keys).split(",")):
        if isinstance(decoded.get(key), str):
            try:
                decoded[key] = json.loads(decoded[key])
            except ValueError:
                logger.warning("Could not decode metadata key %s", key)
    return decoded


def build_where(options: MemorySearchOptions) -> dict[str, Any] | None:
    """Translate attribute filters into the store's equality filter map."""
    where = options.where()
    if not where:
        return None
    if len(where) == 1:
        return where
    return {"$and": [{key: value} for key, value in where.items()]}


def _column(result: dict[str, Any], name: str) -> list[Any]:
    value = result.get(name)
    return list(value) if value is not None else []


def _first_row(result: dict[str, Any], name: str) -> list[Any]:
    rows = _column(result, name)
    if not rows or rows[0] is None:
        return []
    return list(rows[0])


def _vector(embeddings: list[Any], index: int) -> list[float] | None:
    if index >= len(embeddings) or embeddings[index] is None:
        return None
    return [float(x) for x in embeddings[index]]


class ChromaBackend:
    """Backend over an external vector-database collection."""

    name = "external"

    def __init__(self, client: Any, collection_name: str):
        self.client = client
        self.collection_name = collection_name
        self.collection = None

    async def open(self) -> None:
        """Open or create the collection configured for cosine similarity."""
        self.collection = await asyncio.to_thread(
            self.client.get_or_create_collection,
            name=self.collection_name,
            metadata={
                "hnsw:space": "cosine",
                "description": "Semantic memory storage with similarity search",
            },
        )

    def _to_memory(self, memory_id, document, metadata, embedding) -> Memory:
        return Memory(
            id=str(memory_id),
            text=document or "",
            embedding=embedding,
            metadata=decode_metadata(metadata),
        )

    def _records(self, result: dict[str, Any]) -> list[Memory]:
        ids = _column(result, "ids")
        documents = _column(result, "documents")
        metadatas = _column(result, "metadatas")
        embeddings = _column(result, "embeddings")
        return [
            self._to_memory(
                ids[i],
                documents[i] if i < len(documents) else "",
                metadatas[i] if i < len(metadatas) else {},
                _vector(embeddings, i),
            )
            for i in range(len(ids))
        ]

    async def add(self, memory: Memory) -> None:
        await asyncio.to_thread(
            self.collection.add,
            ids=[memory.id],
            embeddings=[memory.embedding],
            documents=[memory.text],
            metadatas=[encode_metadata(memory.metadata)],
        )

    async def search(self, query_embedding, options):
        params: dict[str, Any] = {
            "query_embeddings": [list(query_embedding)],
            "n_results": options.limit,
            "include": ["documents", "metadatas", "distances"],
        }
        where = build_where(options)
        if where:
            params["where"] = where

        raw = await asyncio.to_thread(self.collection.query, **params)
        return self.process_query_results(raw, options.threshold)

    def process_query_results(self, raw: dict[str, Any], threshold: float) -> list[MemorySearchResult]:
        """Convert nearest-neighbor output into scored results.

        Rows of the first (only) query are converted with `score = 1 - distance`,
        entries under `threshold` are dropped, and a stable descending sort is
        applied so equal scores keep the store's order.
        """
        ids = _column(raw, "ids")
        if not ids or not ids[0]:
            return []

        row_ids = list(ids[0])
        documents = _first_row(raw, "documents")
        metadatas = _first_row(raw, "metadatas")
        distances = _first_row(raw, "distances")

        results = []
        for i, memory_id in enumerate(row_ids):
            distance = distances[i] if i < len(distances) and distances[i] is not None else 0.0
            score = 1.0 - float(distance)
            if score < threshold:
                continue
            memory = self._to_memory(
                memory_id,
                documents[i] if i < len(documents) else "",
                metadatas[i] if i < len(metadatas) else {},
                None,
            )
            results.append(MemorySearchResult(memory=memory, score=score))

        results.sort(key=lambda r: r.score, reverse=True)
        return results

    async def get_all(self) -> list[Memory]:
        result = await asyncio.to_thread(
            self.collection.get,
            limit=GET_ALL_LIMIT,
            include=["embeddings", "documents", "metadatas"],
        )
        return self._records(result)

    async def get_by_id(self, memory_id: str) -> Memory | None:
        result = await asyncio.to_thread(
            self.collection.get,
            ids=[memory_id],
            include=["embeddings", "documents", "metadatas"],
        )
        records = self._records(result)
        return records[0] if records else None

    async def update(self, memory_id: str, memory: Memory) -> bool:
        if await self.get_by_id(memory_id) is None:
            return False
        await asyncio.to_thread(
            self.collection.update,
            ids=[memory_id],
            embeddings=[memory.embedding],
            documents=[memory.text],
            metadatas=[encode_metadata(memory.metadata)],
        )
        return True

    async def delete(self, memory_id: str) -> bool:
        if await self.get_by_id(memory_id) is None:
            return False
        await asyncio.to_thread(self.collection.delete, ids=[memory_id])
        return True

    async def clear(self) -> None:
        """Delete and recreate the collection."""
        await asyncio.to_thread(self.client.delete_collection, name=self.collection_name)
        await self.open()
        logger.info("External collection %s cleared and recreated", self.collection_name)
