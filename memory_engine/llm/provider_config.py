"""Provider configuration for the embedding transport.

Architectural role:
    Centralizes embedding endpoint selection and credential lookup for
    `memory_engine.llm.embeddings_client`.

Embedding call flow integration:
    - `EmbeddingGenerator.initialize` asks `create_embeddings_client` for a client.
    - `HttpEmbeddingsClient.embed` consumes the endpoint map and key resolution.

Failure behavior:
    Missing key material is represented as `None`; the generator then runs in
    local fallback mode instead of failing startup.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# OpenAI-compatible and provider-specific embedding endpoint map.
EMBEDDING_PROVIDERS = {

    "gemini": {
        "url": "https://generativelanguage.googleapis.com/v1beta/models/{model}:embedContent",
        "key_file": "config/gemini.key"
    },

    "openai": {
        "url": "https://api.openai.com/v1/embeddings",
        "key_file": "config/openai.key"
    },

    "local_http": {
        "url": os.getenv("LOCAL_EMBEDDING_URL", "http://127.0.0.1:8080/v1/embeddings"),
        "key_file": None
    },

}

# Providers that run in-process instead of over HTTP.
IN_PROCESS_PROVIDERS = ("sentence_transformers",)

DISABLED_PROVIDERS = ("", "none", "fallback")


def load_key(path):
    """Resolve an embedding API key.

    `config/openai.key` is looked up first as `OPENAI_API_KEY` in the
    environment, then read from disk. Blank values count as missing.
    """
    if not path:
        return None
    key_name = os.path.splitext(os.path.basename(path))[0].upper() + "_API_KEY"
    env_value = os.getenv(key_name)
    if env_value:
        return env_value.strip()
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip() or None

