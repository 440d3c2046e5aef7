"""Runtime configuration for the memory engine.

Architectural role:
    Centralizes storage, backend-discovery and embedding settings consumed by
    `rag_memory_manager`, `vector_memory_manager`, `local_fallback` and
    `embedding_generator`.

Resolution:
    Field defaults are read from environment variables at import time (after
    `load_dotenv()`), so a `.env` file next to the process is honored. Tests and
    embedding applications construct `MemoryConfig(...)` with explicit values.

Relevant environment variables:
    - `MEMORY_COLLECTION_NAME`, `MEMORY_STORAGE_DIR`, `MEMORY_STORAGE_KEY`
    - `MEMORY_STORAGE_QUOTA_BYTES`, `MEMORY_PRUNE_TARGET`
    - `MEMORY_SEARCH_LIMIT`, `MEMORY_SEARCH_THRESHOLD`
    - `CHROMA_HOST`, `CHROMA_PORT`, `CHROMA_PATH`
    - `EMBEDDING_PROVIDER`, `EMBEDDING_MODEL`, `EMBEDDING_DIMENSION`
    - `EMBEDDING_CACHE_SIZE`, `EMBEDDING_TIMEOUT_SECONDS`
    - `EMBEDDING_RETRY_ATTEMPTS`, `EMBEDDING_BACKOFF_SECONDS`
    - `EMBEDDING_VERIFY_ON_START`
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class MemoryConfig:
    """Settings for one engine instance."""

    collection_name: str = os.getenv("MEMORY_COLLECTION_NAME", "personai_memories")
    storage_dir: str = os.getenv("MEMORY_STORAGE_DIR", os.path.join("data", "memory"))
    storage_key: str = os.getenv("MEMORY_STORAGE_KEY", "personai_vector_memories")
    storage_quota_bytes: int = int(os.getenv("MEMORY_STORAGE_QUOTA_BYTES", str(16 * 1024 * 1024)))
    prune_target: int = int(os.getenv("MEMORY_PRUNE_TARGET", "500"))

    search_limit: int = int(os.getenv("MEMORY_SEARCH_LIMIT", "10"))
    search_threshold: float = float(os.getenv("MEMORY_SEARCH_THRESHOLD", "0.7"))

    chroma_host: str = os.getenv("CHROMA_HOST", "").strip()
    chroma_port: int = int(os.getenv("CHROMA_PORT", "8000"))
    chroma_path: str = os.getenv("CHROMA_PATH", "").strip()

    embedding_provider: str = os.getenv("EMBEDDING_PROVIDER", "gemini").strip().lower()
    embedding_model: str = os.getenv("EMBEDDING_MODEL", "text-embedding-004").strip()
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "768"))
    embedding_cache_size: int = int(os.getenv("EMBEDDING_CACHE_SIZE", "1000"))
    embedding_timeout_seconds: float = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "20"))
    embedding_retry_attempts: int = int(os.getenv("EMBEDDING_RETRY_ATTEMPTS", "2"))
    embedding_backoff_seconds: float = float(os.getenv("EMBEDDING_BACKOFF_SECONDS", "0.5"))
    embedding_verify_on_start: bool = _env_bool("EMBEDDING_VERIFY_ON_START", "true")

    @property
    def external_store_configured(self) -> bool:
        """Whether the environment names an external vector database."""
        return bool(self.chroma_host or self.chroma_path)
