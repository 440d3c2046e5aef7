"""Memory engine API adapter package.

Architectural role:
- Defines the external interaction boundary for HTTP and CLI interfaces.
- Performs transport-level validation and response shaping.
- Delegates storage and retrieval to `EnhancedRAGMemoryManager`.
"""
