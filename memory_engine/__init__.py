"""Semantic memory engine.

Architectural role:
    Converts free-text utterances into embeddings, persists them with structured
    metadata, and answers similarity and attribute queries over the accumulated
    history.

Subpackages:
    - `memory`: storage backends, embedding generation, engine and analytics.
    - `llm`: embedding provider configuration and HTTP transport.
    - `api`: HTTP and CLI adapters over the consumer-facing engine API.
"""

__version__ = "0.1.0"
