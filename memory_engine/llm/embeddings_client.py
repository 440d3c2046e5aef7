"""Provider-specific HTTP transport for embedding requests.

Architectural role:
    Executes embedding requests against the configured provider and normalizes the
    provider response into a plain `list[float]`.

Embedding flow:
    `EmbeddingGenerator.generate_embedding` -> `HttpEmbeddingsClient.embed(text)` ->
    provider branch (Gemini `embedContent` / OpenAI-compatible `/v1/embeddings`) ->
    parsed vector.

Retry behavior:
    Retries transport errors and status codes `429,500,502,503,504` up to
    `retry_attempts` with exponential backoff. Other HTTP errors are raised at once.

Failure handling model:
    Every failure is raised to the caller. The embedding generator is the layer that
    absorbs failures into the local deterministic fallback.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from memory_engine.llm.provider_config import (
    DISABLED_PROVIDERS,
    EMBEDDING_PROVIDERS,
    IN_PROCESS_PROVIDERS,
    load_key,
)


logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class EmbeddingsClientProtocol(Protocol):
    """Minimal async interface required by `EmbeddingGenerator`."""

    model: str

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for `text`."""
        ...


class MalformedEmbeddingResponse(ValueError):
    """Provider answered 2xx but the body carried no usable vector."""


class HttpEmbeddingsClient:
    """Async client for remote embedding endpoints."""

    def __init__(
        self,
        *,
        provider: str,
        model: str,
        url: str,
        api_key: str | None = None,
        timeout_seconds: float = 20.0,
        retry_attempts: int = 2,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.url = url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.backoff_seconds = backoff_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if not self.api_key:
            return headers
        if self.provider == "gemini":
            headers["x-goog-api-key"] = self.api_key
        else:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(self, text: str) -> tuple[str, dict[str, Any]]:
        if self.provider == "gemini":
            url = self.url.format(model=self.model)
            body = {
                "model": f"models/{self.model}",
                "content": {"parts": [{"text": text}]},
            }
            return url, body
        return self.url, {"model": self.model, "input": text}

    def _parse(self, data: Any) -> list[float]:
        """Extract the vector from Gemini or OpenAI-shaped responses."""
        values = None
        if isinstance(data, dict):
            if self.provider == "gemini":
                embedding = data.get("embedding")
                if isinstance(embedding, dict):
                    values = embedding.get("values")
                elif data.get("embeddings"):
                    values = data["embeddings"][0].get("values")
            else:
                items = data.get("data")
                if isinstance(items, list) and items and isinstance(items[0], dict):
                    values = items[0].get("embedding")

        if not isinstance(values, list) or not values:
            raise MalformedEmbeddingResponse(f"No embedding returned from {self.provider}")
        try:
            return [float(v) for v in values]
        except (TypeError, ValueError) as exc:
            raise MalformedEmbeddingResponse(f"Non-numeric embedding from {self.provider}") from exc

    def _backoff(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** attempt)

    async def embed(self, text: str) -> list[float]:
        """Request one embedding with retry/backoff for transient failures.

        Raises:
            httpx.HTTPStatusError/httpx.RequestError: After retry exhaustion or on
                non-retryable status codes.
            MalformedEmbeddingResponse: When the body has no usable vector.
        """
        url, body = self._request(text)
        attempts = max(1, self.retry_attempts)

        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout_seconds,
                    headers=self._headers(),
                    transport=self._transport,
                ) as client:
                    response = await client.post(url, json=body)
                response.raise_for_status()
                return self._parse(response.json())

            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code if exc.response is not None else None
                if status in RETRYABLE_STATUS and attempt < attempts - 1:
                    await asyncio.sleep(self._backoff(attempt))
                    continue
                raise

            except httpx.RequestError:
                if attempt < attempts - 1:
                    await asyncio.sleep(self._backoff(attempt))
                    continue
                raise

        raise RuntimeError(f"Embedding request failed without error details for url={url}")


def create_embeddings_client(config) -> EmbeddingsClientProtocol | None:
    """Build the embeddings client named by `config.embedding_provider`.

    Args:
        config: `MemoryConfig` instance.

    Returns:
        A client, or `None` when the provider is disabled, unknown, or has no
        credentials available.
    """
    provider = config.embedding_provider

    if provider in DISABLED_PROVIDERS:
        return None

    if provider in IN_PROCESS_PROVIDERS:
        from memory_engine.memory.embedding_model import SentenceTransformerEmbeddingsClient
        return SentenceTransformerEmbeddingsClient()

    provider_config = EMBEDDING_PROVIDERS.get(provider)
    if provider_config is None:
        logger.warning("Unknown embedding provider %r, using fallback embeddings", provider)
        return None

    api_key = load_key(provider_config["key_file"])
    if provider_config["key_file"] and not api_key:
        logger.warning("No API key for embedding provider %r", provider)
        return None

    return HttpEmbeddingsClient(
        provider=provider,
        model=config.embedding_model,
        url=provider_config["url"],
        api_key=api_key,
        timeout_seconds=config.embedding_timeout_seconds,
        retry_attempts=config.embedding_retry_attempts,
        backoff_seconds=config.embedding_backoff_seconds,
    )
