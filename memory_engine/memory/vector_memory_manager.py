"""Startup selection between the external vector database and the local fallback.

Architectural role:
    `initialize_database()` is called once at engine startup. When an external
    vector-database client is discoverable (injected, or named by `CHROMA_HOST` /
    `CHROMA_PATH`), it opens a cosine-space collection and marks
    `using_external = True`. When no client is discoverable, or opening the
    collection raises, the local fallback is constructed instead.

Failure model:
    `initialize_database()` never raises. The outcome is reported as a
    `BackendSelection` so callers and tests can see which path was taken and why.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from memory_engine.memory.backends import ChromaBackend, LocalBackend, MemoryBackend
from memory_engine.memory.config import MemoryConfig
from memory_engine.memory.kv_storage import InMemoryStorage, KeyValueStorage, create_storage
from memory_engine.memory.local_fallback import LocalMemoryFallback


logger = logging.getLogger(__name__)

EXTERNAL = "external"
LOCAL = "local"


@dataclass(frozen=True)
class BackendSelection:
    kind: str
    backend: Any
    error: Exception | None = None


def discover_external_client(config: MemoryConfig):
    """Return a vector-database client named by the environment, or `None`."""
    if not config.external_store_configured:
        return None

    import chromadb
    from chromadb.config import Settings

    settings = Settings(anonymized_telemetry=False)
    if config.chroma_host:
        return chromadb.HttpClient(
            host=config.chroma_host,
            port=config.chroma_port,
            settings=settings,
        )
    return chromadb.PersistentClient(path=config.chroma_path, settings=settings)


class VectorMemoryManager:
    """Owns the active backend and the `ready` / `using_external` contract."""

    def __init__(
        self,
        config: MemoryConfig | None = None,
        *,
        client: Any = None,
        client_factory: Callable[[MemoryConfig], Any] | None = None,
        storage: KeyValueStorage | None = None,
    ) -> None:
        self.config = config or MemoryConfig()
        self.client = client
        self.client_factory = client_factory or discover_external_client
        self.storage = storage
        self.collection_name = self.config.collection_name

        self.backend: MemoryBackend | None = None
        self.collection = None
        self.local_fallback: LocalMemoryFallback | None = None
        self.using_external = False
        self.ready = False
        self.selection: BackendSelection | None = None

    async def initialize_database(self) -> BackendSelection:
        try:
            client = self.client if self.client is not None else self.client_factory(self.config)
            if client is None:
                logger.info("No external vector database available, using local fallback")
                selection = self._initialize_fallback()
            else:
                selection = await self._initialize_external(client)
        except Exception as exc:
            logger.warning("External vector database initialization failed: %s", exc)
            logger.info("Falling back to local memory storage")
            selection = self._initialize_fallback(error=exc)

        self.selection = selection
        self.ready = True
        return selection

    async def _initialize_external(self, client: Any) -> BackendSelection:
        backend = ChromaBackend(client, self.collection_name)
        await backend.open()

        self.client = client
        self.backend = backend
        self.collection = backend.collection
        self.local_fallback = None
        self.using_external = True
        logger.info("External vector database initialized (collection %s)", self.collection_name)
        return BackendSelection(EXTERNAL, backend)

    def _initialize_fallback(self, error: Exception | None = None) -> BackendSelection:
        storage = self.storage
        if storage is None:
            try:
                storage = create_storage(self.config)
            except OSError:
                logger.exception("Storage directory %s unusable, keeping memories in process", self.config.storage_dir)
                storage = InMemoryStorage(quota_bytes=self.config.storage_quota_bytes)
            self.storage = storage

        self.local_fallback = LocalMemoryFallback(
            storage=storage,
            storage_key=self.config.storage_key,
            prune_target=self.config.prune_target,
        )
        self.backend = LocalBackend(self.local_fallback)
        self.collection = None
        self.using_external = False
        logger.info("Local memory fallback initialized")
        return BackendSelection(LOCAL, self.backend, error)

    def is_ready(self) -> bool:
        return self.ready

    def is_using_external(self) -> bool:
        return self.using_external

    def get_collection(self):
        return self.collection

    def get_local_fallback(self) -> LocalMemoryFallback | None:
        return self.local_fallback
