"""Text-to-vector generation with a bounded cache and total local fallback.

Architectural role:
    Turns text into fixed-length vectors for the engine. A remote or in-process
    embeddings client is used when available; otherwise (or on any failure) a
    deterministic local vectorization is used, so embedding generation never fails.

Cache:
    Keyed by a 32-bit polynomial string hash. Entries keep the source text, and a
    hit whose text differs (hash collision) is treated as a miss. Eviction drops the
    oldest inserted entry once `cache_size` is exceeded.

Fallback vectorization:
    Fixed dimensionality (768 by default). Accumulates a per-character weighted
    hash and a per-word weighted hash into the vector, then L2-normalizes. The
    result is reproducible across calls and process restarts but is not a semantic
    embedding; its similarity scores are lower quality.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum

import numpy as np

from memory_engine.llm.embeddings_client import (
    EmbeddingsClientProtocol,
    create_embeddings_client,
)
from memory_engine.memory.config import MemoryConfig


logger = logging.getLogger(__name__)

PROBE_TEXT = "ping"


class EmbeddingSource(str, Enum):
    CACHE = "cache"
    REMOTE = "remote"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class EmbeddingResult:
    vector: list[float]
    source: EmbeddingSource


def hash_string(text: str) -> int:
    """Return the signed 32-bit polynomial hash (`h * 31 + code`) of `text`."""
    value = 0
    for ch in text:
        value = (value * 31 + ord(ch)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def fallback_embedding(text: str, dimension: int = 768) -> list[float]:
    """Deterministic local vectorization used when no embeddings client works.

    Args:
        text: Input text. Lowercased and stripped before hashing.
        dimension: Output vector size.

    Returns:
        L2-normalized vector; the zero vector for blank input.
    """
    vector = np.zeros(dimension, dtype=np.float64)
    normalized = text.lower().strip()

    for i, ch in enumerate(normalized):
        idx = (ord(ch) * (i + 1)) % dimension
        vector[idx] += 1.0 / (i + 1)

    words = normalized.split()
    count = len(words)
    for word_idx, word in enumerate(words):
        idx = abs(hash_string(word)) % dimension
        vector[idx] += (count - word_idx) / count

    magnitude = float(np.sqrt(np.sum(vector * vector)))
    if magnitude > 0:
        vector /= magnitude

    return vector.tolist()


class EmbeddingGenerator:
    """Embeds text through the configured client with a total local fallback."""

    def __init__(
        self,
        config: MemoryConfig | None = None,
        client: EmbeddingsClientProtocol | None = None,
    ) -> None:
        self.config = config or MemoryConfig()
        self.dimension = self.config.embedding_dimension
        self.cache_size = max(1, self.config.embedding_cache_size)
        self._client = client
        self._remote_available = False
        self._cache: OrderedDict[str, tuple[str, list[float]]] = OrderedDict()
        self._cache_lock = threading.Lock()

    async def initialize(self) -> bool:
        """Probe whether remote-mode embeddings are available.

        Returns:
            `True` when a client exists (credentials present) and, if
            `embedding_verify_on_start` is set, a probe request succeeded.
        """
        try:
            if self._client is None:
                self._client = create_embeddings_client(self.config)

            if self._client is None:
                logger.warning("No embeddings client configured, using fallback embeddings")
                self._remote_available = False
                return False

            if self.config.embedding_verify_on_start:
                await self._client.embed(PROBE_TEXT)

            self._remote_available = True
            logger.info("Embedding generator initialized with model %s", self._client.model)
            return True

        except Exception:
            logger.warning("Embedding handshake failed, using fallback embeddings", exc_info=True)
            self._client = None
            self._remote_available = False
            return False

    def is_remote_available(self) -> bool:
        return self._remote_available and self._client is not None

    async def generate_embedding(self, text: str) -> list[float]:
        result = await self.generate_embedding_result(text)
        return result.vector

    async def generate_embedding_result(self, text: str) -> EmbeddingResult:
        """Embed `text`, reporting which path produced the vector."""
        key = str(hash_string(text))

        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None and cached[0] == text:
            return EmbeddingResult(list(cached[1]), EmbeddingSource.CACHE)

        result = None
        if self.is_remote_available():
            try:
                vector = await self._client.embed(text)
                result = EmbeddingResult([float(v) for v in vector], EmbeddingSource.REMOTE)
            except Exception as exc:
                logger.warning("Remote embedding failed, using fallback: %s", exc)

        if result is None:
            result = EmbeddingResult(
                fallback_embedding(text, self.dimension),
                EmbeddingSource.FALLBACK,
            )

        self._remember(key, text, result.vector)
        return result

    def _remember(self, key: str, text: str, vector: list[float]) -> None:
        with self._cache_lock:
            self._cache[key] = (text, list(vector))
            self._cache.move_to_end(key)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

    def cache_len(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
        logger.info("Embedding cache cleared")
