"""Embedding provider access package.

Architectural role:
    Provides provider configuration and transport adapters used by the embedding
    generator to reach remote embedding backends.

Module split:
    - `provider_config`: environment-driven endpoint map and key resolution.
    - `embeddings_client`: provider-specific HTTP transport and response parsing.
"""
