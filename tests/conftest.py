"""Shared fixtures: fixed clock, fake embedding client, fake vector-database client."""

import copy
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from memory_engine.memory.config import MemoryConfig
from memory_engine.memory.embedding_generator import EmbeddingGenerator, fallback_embedding
from memory_engine.memory.enhanced_rag_memory_manager import EnhancedRAGMemoryManager
from memory_engine.memory.errors import StorageQuotaExceededError
from memory_engine.memory.kv_storage import InMemoryStorage
from memory_engine.memory.vector_memory_manager import VectorMemoryManager


NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def set(self, **delta):
        """Move to `NOW - delta`."""
        self.now = NOW - timedelta(**delta)

    def reset(self):
        self.now = NOW


class DummyEmbeddingsClient:
    """Embeds through the local vectorizer, counting calls."""

    model = "dummy-embedder"

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        if self.fail:
            raise ConnectionError("embedding service unreachable")
        return fallback_embedding(text, 16)


class FlakyStorage(InMemoryStorage):
    """In-memory storage whose next `fail_next` writes hit the quota."""

    def __init__(self):
        super().__init__()
        self.fail_next = 0
        self.writes = 0

    def set_item(self, key, value):
        self.writes += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            raise StorageQuotaExceededError("quota exceeded")
        super().set_item(key, value)


def _matches(metadata, where):
    if not where:
        return True
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


def _cosine_distance(a, b):
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 1.0
    return 1.0 - float(np.dot(a, b) / denom)


class FakeCollection:
    """Minimal in-process stand-in for a cosine-space vector collection."""

    def __init__(self, name, metadata=None):
        self.name = name
        self.metadata = metadata or {}
        self.records = {}
        self.fail_queries = False

    def add(self, ids, embeddings, documents, metadatas):
        for i, record_id in enumerate(ids):
            self.records[record_id] = {
                "embedding": list(embeddings[i]),
                "document": documents[i],
                "metadata": copy.deepcopy(metadatas[i]),
            }

    def update(self, ids, embeddings, documents, metadatas):
        for i, record_id in enumerate(ids):
            self.records[record_id] = {
                "embedding": list(embeddings[i]),
                "document": documents[i],
                "metadata": copy.deepcopy(metadatas[i]),
            }

    def delete(self, ids):
        for record_id in ids:
            self.records.pop(record_id, None)

    def query(self, query_embeddings, n_results, include, where=None):
        if self.fail_queries:
            raise ConnectionError("vector database went away")

        query = query_embeddings[0]
        rows = [
            (record_id, record, _cosine_distance(query, record["embedding"]))
            for record_id, record in self.records.items()
            if _matches(record["metadata"], where)
        ]
        rows.sort(key=lambda row: row[2])
        rows = rows[:n_results]
        return {
            "ids": [[r[0] for r in rows]],
            "documents": [[r[1]["document"] for r in rows]],
            "metadatas": [[copy.deepcopy(r[1]["metadata"]) for r in rows]],
            "distances": [[r[2] for r in rows]],
        }

    def get(self, ids=None, limit=None, include=None):
        selected = [
            (record_id, record)
            for record_id, record in self.records.items()
            if ids is None or record_id in ids
        ]
        if limit is not None:
            selected = selected[:limit]
        return {
            "ids": [r[0] for r in selected],
            "documents": [r[1]["document"] for r in selected],
            "metadatas": [copy.deepcopy(r[1]["metadata"]) for r in selected],
            "embeddings": [list(r[1]["embedding"]) for r in selected],
        }


class FakeChromaClient:
    def __init__(self, fail_on_open=False):
        self.fail_on_open = fail_on_open
        self.collections = {}
        self.deleted = []

    def get_or_create_collection(self, name, metadata=None):
        if self.fail_on_open:
            raise ConnectionError("cannot reach vector database")
        if name not in self.collections:
            self.collections[name] = FakeCollection(name, metadata)
        return self.collections[name]

    def delete_collection(self, name):
        self.deleted.append(name)
        self.collections.pop(name, None)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def config(tmp_path):
    return MemoryConfig(
        storage_dir=str(tmp_path / "memory"),
        storage_quota_bytes=0,
        chroma_host="",
        chroma_path="",
        embedding_provider="none",
        embedding_verify_on_start=False,
    )


def build_engine(config, clock, chroma=None, embeddings_client=None):
    return EnhancedRAGMemoryManager(
        config,
        embedding_generator=EmbeddingGenerator(config, client=embeddings_client),
        vector_manager=VectorMemoryManager(config, client=chroma, client_factory=lambda _: None),
        clock=clock,
    )


@pytest.fixture
async def local_engine(config, clock):
    engine = build_engine(config, clock)
    await engine.initialize()
    return engine


@pytest.fixture
async def external_engine(config, clock):
    engine = build_engine(config, clock, chroma=FakeChromaClient())
    await engine.initialize()
    return engine


@pytest.fixture(params=["local", "external"])
async def engine(request, config, clock):
    chroma = FakeChromaClient() if request.param == "external" else None
    engine = build_engine(config, clock, chroma=chroma)
    await engine.initialize()
    return engine
