"""Embedding generation against an OpenAI-compatible embeddings API.

This module provides:
- ``OpenAIEmbeddingClient``: a thin httpx client that classifies every
  failure as retryable or fatal, for single and batched requests
- ``EmbeddingService``: input validation, retry with backoff, and
  normalization of vectors to unit length

All embeddings are normalized to unit vectors for consistent cosine similarity.

Example usage:
    >>> from assetrecon.config import EmbeddingConfig, RetryConfig
    >>> from assetrecon.intelligence.embeddings import (
    ...     EmbeddingService,
    ...     OpenAIEmbeddingClient,
    ... )
    >>>
    >>> async with OpenAIEmbeddingClient(EmbeddingConfig()) as client:
    ...     service = EmbeddingService(client, RetryConfig())
    ...     vector = await service.generate("Bomba centrifuga 2HP")
"""

from __future__ import annotations

import os
import time
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
import numpy as np
import structlog

from assetrecon.config import EmbeddingConfig, RetryConfig
from assetrecon.errors import FatalProviderError, RetryableProviderError
from assetrecon.intelligence.backoff import ExponentialBackoff

logger = structlog.get_logger(__name__)


class EmbeddingProvider(Protocol):
    """Protocol for embedding provider implementations."""

    async def embed(self, text: str) -> list[float]:
        """Generate the embedding vector for one text."""
        ...

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate embedding vectors for texts, in input order."""
        ...


def is_retryable_status(status_code: int) -> bool:
    """Whether an HTTP status from the provider is worth retrying."""
    return status_code == 429 or 500 <= status_code < 600


class OpenAIEmbeddingClient:
    """OpenAI embeddings API client.

    Attributes:
        api_key: API key (config value, else OPENAI_API_KEY env var)
        model: Embedding model name
        dimensions: Expected vector length
        timeout_seconds: Request timeout in seconds
    """

    def __init__(self, config: EmbeddingConfig) -> None:
        """Initialize the embeddings client.

        Args:
            config: Embedding provider configuration

        Raises:
            ValueError: If no API key is configured and OPENAI_API_KEY is not set
        """
        self.api_key = config.api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Embedding API key required: set embedding.api_key or OPENAI_API_KEY"
            )

        self.base_url = config.base_url
        self.model = config.model
        self.dimensions = config.dimensions
        self.timeout_seconds = config.timeout_seconds
        self._client: httpx.AsyncClient | None = None

        logger.info(
            "openai_embedding_client_initialized",
            model=self.model,
            base_url=self.base_url,
            timeout=self.timeout_seconds,
        )

    async def __aenter__(self) -> OpenAIEmbeddingClient:
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get the active HTTP client."""
        if self._client is None:
            raise RuntimeError(
                "OpenAIEmbeddingClient must be used as async context manager"
            )
        return self._client

    async def _request(self, inputs: str | list[str]) -> list[list[float]]:
        """POST to /embeddings and return vectors ordered by input index.

        Raises:
            RetryableProviderError: On 429, 5xx, timeouts, network errors and
                dropped connections
            FatalProviderError: On any other status or transport error, a
                malformed body, or vectors of the wrong dimension
        """
        client = self._get_client()
        payload: dict[str, Any] = {"input": inputs, "model": self.model}
        expected = 1 if isinstance(inputs, str) else len(inputs)

        try:
            response = await client.post("/embeddings", json=payload)
        except httpx.TimeoutException as e:
            logger.warning("openai_request_timeout", error=str(e))
            raise RetryableProviderError(f"Embedding request timed out: {e}") from e
        except (httpx.NetworkError, httpx.RemoteProtocolError) as e:
            logger.warning("openai_network_error", error=str(e), error_type=type(e).__name__)
            raise RetryableProviderError(f"Embedding request failed: {e}") from e
        except httpx.TransportError as e:
            logger.error("openai_transport_error", error=str(e), error_type=type(e).__name__)
            raise FatalProviderError(f"Embedding request failed: {e}") from e
        except httpx.HTTPError as e:
            logger.error("openai_http_error", error=str(e), error_type=type(e).__name__)
            raise FatalProviderError(f"Embedding request failed: {e}") from e

        if response.status_code >= 400:
            message = f"Embedding API returned HTTP {response.status_code}"
            logger.error(
                "openai_api_error",
                status_code=response.status_code,
                body=response.text[:500],
            )
            if is_retryable_status(response.status_code):
                raise RetryableProviderError(message, status_code=response.status_code)
            raise FatalProviderError(message, status_code=response.status_code)

        try:
            items = response.json()["data"]
            ordered = sorted(items, key=lambda item: item.get("index", 0))
            vectors = [list(item["embedding"]) for item in ordered]
        except (ValueError, KeyError, TypeError) as e:
            raise FatalProviderError(f"Malformed embedding response: {e}") from e

        if len(vectors) != expected:
            raise FatalProviderError(
                f"Embedding API returned {len(vectors)} vectors for {expected} inputs"
            )

        for vector in vectors:
            if len(vector) != self.dimensions:
                logger.error(
                    "openai_dimension_mismatch",
                    expected=self.dimensions,
                    received=len(vector),
                    model=self.model,
                )
                raise FatalProviderError(
                    f"Embedding API returned {len(vector)}-dimensional vectors, "
                    f"expected {self.dimensions}"
                )

        return vectors

    async def embed(self, text: str) -> list[float]:
        """Generate an embedding for a single text.

        Args:
            text: Input text to embed

        Returns:
            Embedding vector as list of floats
        """
        logger.debug("openai_embedding_request", text_length=len(text), model=self.model)
        vectors = await self._request(text)
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate embeddings for several texts in one request.

        Args:
            texts: Input texts to embed

        Returns:
            One vector per input, in input order
        """
        if not texts:
            return []

        logger.debug("openai_embedding_batch_request", batch_size=len(texts), model=self.model)
        return await self._request(list(texts))


class EmbeddingService:
    """Embedding generation with retry and unit normalization.

    Attributes:
        provider: Underlying embedding provider
    """

    def __init__(self, provider: EmbeddingProvider, retry: RetryConfig) -> None:
        """Initialize embedding service.

        Args:
            provider: Embedding provider to call
            retry: Backoff policy applied to retryable provider failures
        """
        self.provider = provider
        self._backoff = ExponentialBackoff(retry)

    @staticmethod
    def _normalize_embedding(embedding: Sequence[float]) -> list[float]:
        """Normalize embedding to unit vector.

        Args:
            embedding: Raw embedding vector

        Returns:
            Normalized embedding vector (L2 norm = 1.0)
        """
        arr = np.asarray(embedding, dtype=np.float32)
        norm = np.linalg.norm(arr)

        if norm == 0:
            logger.warning("embedding_zero_norm", embedding_dim=len(arr))
            return arr.tolist()

        return (arr / norm).tolist()

    async def generate(self, text: str) -> list[float]:
        """Generate a normalized embedding for text.

        Args:
            text: Input text to embed

        Returns:
            Normalized embedding vector

        Raises:
            ValueError: If text is empty or only whitespace
            FatalProviderError: If the provider failed fatally or retries ran out
        """
        if not text or not text.strip():
            raise ValueError("Cannot generate embedding for empty or whitespace text")

        start_time = time.monotonic()
        raw = await self._backoff.retry_call(
            lambda: self.provider.embed(text), "embed"
        )
        normalized = self._normalize_embedding(raw)

        logger.debug(
            "embedding_generated",
            text_length=len(text),
            embedding_dim=len(normalized),
            duration_seconds=round(time.monotonic() - start_time, 3),
        )
        return normalized

    async def generate_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate normalized embeddings for several texts in one call.

        Args:
            texts: Input texts to embed; none may be blank

        Returns:
            One normalized vector per input, in input order

        Raises:
            ValueError: If any text is empty or only whitespace
            FatalProviderError: If the provider failed fatally or retries ran out
        """
        if not texts:
            return []
        if any(not t or not t.strip() for t in texts):
            raise ValueError("Cannot generate embedding for empty or whitespace text")

        batch = list(texts)
        start_time = time.monotonic()
        raw_vectors = await self._backoff.retry_call(
            lambda: self.provider.embed_batch(batch), "embed_batch"
        )
        if len(raw_vectors) != len(batch):
            raise FatalProviderError(
                f"Provider returned {len(raw_vectors)} vectors for {len(batch)} inputs"
            )

        logger.info(
            "embedding_batch_generated",
            batch_size=len(batch),
            duration_seconds=round(time.monotonic() - start_time, 3),
        )
        return [self._normalize_embedding(v) for v in raw_vectors]
