"""Memory subsystem package.

Architectural role:
    Groups the stateful memory components:
    - `embedding_generator`: text-to-vector with cache and deterministic fallback.
    - `embedding_model`: shared in-process embedding model bootstrap/singleton.
    - `kv_storage` / `local_fallback`: durable JSON blob and brute-force index.
    - `backends` / `vector_memory_manager`: backend interface and startup selection.
    - `rag_memory_manager`: consumer-facing engine (add, retrieve, format, CRUD).
    - `enhanced_rag_memory_manager`: type, speaker, calendar and tag analytics.
    - `tasks_manager`: task CRUD and statistics stored as task memories.

Callers construct one engine per process and pass it explicitly; nothing in this
package keeps a module-level engine instance.
"""
