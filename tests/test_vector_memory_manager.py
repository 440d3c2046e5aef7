import threading

from memory_engine.memory.backends import (
    ChromaBackend,
    LocalBackend,
    build_where,
    decode_metadata,
    encode_metadata,
)
from memory_engine.memory.kv_storage import InMemoryStorage
from memory_engine.memory.local_fallback import LocalMemoryFallback
from memory_engine.memory.types import Memory, MemorySearchOptions, MemoryType
from memory_engine.memory.vector_memory_manager import EXTERNAL, LOCAL, VectorMemoryManager

from tests.conftest import FakeChromaClient


async def test_without_external_client_selects_local(config):
    manager = VectorMemoryManager(config, client_factory=lambda _: None)
    selection = await manager.initialize_database()

    assert selection.kind == LOCAL
    assert selection.error is None
    assert isinstance(selection.backend, LocalBackend)
    assert manager.is_ready() is True
    assert manager.is_using_external() is False
    assert manager.get_collection() is None
    assert manager.get_local_fallback() is not None


async def test_external_client_opens_cosine_collection(config):
    client = FakeChromaClient()
    manager = VectorMemoryManager(config, client=client)
    selection = await manager.initialize_database()

    assert selection.kind == EXTERNAL
    assert isinstance(selection.backend, ChromaBackend)
    assert manager.is_using_external() is True
    assert manager.get_local_fallback() is None

    collection = manager.get_collection()
    assert collection is client.collections[config.collection_name]
    assert collection.metadata["hnsw:space"] == "cosine"


async def test_external_failure_falls_back_to_local(config):
    manager = VectorMemoryManager(config, client=FakeChromaClient(fail_on_open=True))
    selection = await manager.initialize_database()

    assert selection.kind == LOCAL
    assert isinstance(selection.error, ConnectionError)
    assert manager.is_ready() is True
    assert manager.is_using_external() is False


async def test_client_discovery_error_falls_back_to_local(config):
    def explode(_config):
        raise RuntimeError("bad CHROMA_HOST")

    manager = VectorMemoryManager(config, client_factory=explode)
    selection = await manager.initialize_database()

    assert selection.kind == LOCAL
    assert isinstance(selection.error, RuntimeError)


async def test_unusable_storage_dir_keeps_memories_in_process(tmp_path):
    from memory_engine.memory.config import MemoryConfig

    blocker = tmp_path / "not-a-directory"
    blocker.write_text("occupied")
    config = MemoryConfig(storage_dir=str(blocker), chroma_host="", chroma_path="")

    manager = VectorMemoryManager(config, client_factory=lambda _: None)
    selection = await manager.initialize_database()

    assert selection.kind == LOCAL
    assert isinstance(manager.storage, InMemoryStorage)


def test_metadata_encoding_round_trip():
    metadata = {
        "speaker": "user",
        "type": MemoryType.NOTE,
        "importance": 7,
        "tags": ["work", "urgent"],
        "completedAt": None,
    }
    encoded = encode_metadata(metadata)

    assert encoded["type"] == "note"
    assert encoded["tags"] == '["work", "urgent"]'
    assert "completedAt" not in encoded

    decoded = decode_metadata(encoded)
    assert decoded == {"speaker": "user", "type": "note", "importance": 7, "tags": ["work", "urgent"]}


def test_build_where():
    assert build_where(MemorySearchOptions()) is None
    assert build_where(MemorySearchOptions(speaker="user")) == {"speaker": "user"}
    assert build_where(MemorySearchOptions(speaker="user", memory_type=MemoryType.FACT)) == {
        "$and": [{"speaker": "user"}, {"type": "fact"}]
    }


def test_query_results_become_scores_with_stable_ties():
    backend = ChromaBackend(FakeChromaClient(), "memories")
    raw = {
        "ids": [["a", "b", "c", "d"]],
        "documents": [["A", "B", "C", "D"]],
        "metadatas": [[{"speaker": "x"}, {}, {}, {}]],
        "distances": [[0.1, 0.25, 0.25, 0.6]],
    }

    results = backend.process_query_results(raw, threshold=0.5)

    assert [r.memory.id for r in results] == ["a", "b", "c"]
    assert results[0].score == 1 - 0.1
    assert results[0].memory.text == "A"
    assert results[0].memory.metadata == {"speaker": "x"}


def test_empty_query_result():
    backend = ChromaBackend(FakeChromaClient(), "memories")
    assert backend.process_query_results({"ids": [[]]}, threshold=0.0) == []


async def test_local_backend_writes_off_the_event_loop():
    class ThreadRecordingStorage(InMemoryStorage):
        def __init__(self):
            super().__init__()
            self.threads = []

        def set_item(self, key, value):
            self.threads.append(threading.get_ident())
            super().set_item(key, value)

    storage = ThreadRecordingStorage()
    backend = LocalBackend(LocalMemoryFallback(storage=storage))
    memory = Memory(id="m1", text="hello", embedding=[1.0, 0.0], metadata={"type": "note"})

    await backend.add(memory)
    await backend.update("m1", memory)
    await backend.delete("m1")
    await backend.clear()

    assert len(storage.threads) == 4
    assert threading.get_ident() not in storage.threads
