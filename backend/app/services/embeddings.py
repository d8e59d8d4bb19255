"""
Scripture Index Embeddings Service
Turns text into fixed-dimension vectors via Ollama or the Gemini REST API.

Neither adapter retries or caches: pacing and retry policy belong to the
batch indexer.
"""

from __future__ import annotations

import time
from typing import Any, Protocol

import httpx

from ..config import Settings
from ..errors import ProviderError, ValidationError
from ..utils.metrics import EMBEDDING_LATENCY


class EmbeddingProvider(Protocol):
    """Anything that embeds text with a fixed, recorded model identifier."""

    model: str

    async def embed(self, text: str) -> list[float]: ...


class _HttpEmbeddingsService:
    provider_name = "http"

    def __init__(
        self,
        *,
        model: str,
        dim: int | None,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model = model
        self.dim = dim
        self.timeout = timeout
        self._transport = transport

    async def embed(self, text: str) -> list[float]:
        """
        Generate an embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            List of floats representing the embedding vector

        Raises:
            ValidationError: If ``text`` is empty
            ProviderError: On transport, HTTP status, or payload errors
        """
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text")

        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await self._post(client, text)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"{self.provider_name} embedding request failed with status "
                f"{exc.response.status_code}",
                provider=self.provider_name,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(
                f"{self.provider_name} embedding request failed: {exc}",
                provider=self.provider_name,
            ) from exc
        finally:
            EMBEDDING_LATENCY.labels(provider=self.provider_name).observe(
                time.perf_counter() - start
            )

        try:
            vector = self._extract(data)
        except (TypeError, ValueError, IndexError, KeyError) as exc:
            raise ProviderError(
                f"Malformed {self.provider_name} embedding payload: {exc}",
                provider=self.provider_name,
            ) from exc
        if self.dim is not None and len(vector) != self.dim:
            raise ProviderError(
                f"Dimension mismatch from {self.provider_name}: {len(vector)} vs {self.dim}",
                provider=self.provider_name,
            )
        return vector

    async def _post(self, client: httpx.AsyncClient, text: str) -> httpx.Response:
        raise NotImplementedError

    def _extract(self, data: Any) -> list[float]:
        raise NotImplementedError


class OllamaEmbeddingsService(_HttpEmbeddingsService):
    """Service for generating embeddings via Ollama API."""

    provider_name = "ollama"

    def __init__(
        self,
        api_base: str = "http://localhost:11434",
        model: str = "embeddinggemma",
        dim: int | None = 768,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(model=model, dim=dim, timeout=timeout, transport=transport)
        self.api_base = api_base.rstrip("/")

    async def _post(self, client: httpx.AsyncClient, text: str) -> httpx.Response:
        return await client.post(
            f"{self.api_base}/api/embed",
            json={"model": self.model, "input": text},
            timeout=self.timeout,
        )

    def _extract(self, data: Any) -> list[float]:
        # Ollama returns {"embeddings": [[...]]}
        if isinstance(data, dict):
            if data.get("embeddings"):
                return [float(x) for x in data["embeddings"][0]]
            if "embedding" in data:  # Fallback for older API
                return [float(x) for x in data["embedding"]]
        keys = list(data.keys()) if isinstance(data, dict) else type(data).__name__
        raise ProviderError(f"Unexpected Ollama response format: {keys}", provider="ollama")


class GeminiEmbeddingsService(_HttpEmbeddingsService):
    """Service for generating embeddings via the Gemini ``embedContent`` endpoint."""

    provider_name = "gemini"

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        model: str = "text-embedding-004",
        dim: int | None = 768,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(model=model, dim=dim, timeout=timeout, transport=transport)
        self.api_base = api_base.rstrip("/")
        self._api_key = api_key

    async def _post(self, client: httpx.AsyncClient, text: str) -> httpx.Response:
        return await client.post(
            f"{self.api_base}/models/{self.model}:embedContent",
            params={"key": self._api_key},
            json={"model": f"models/{self.model}", "content": {"parts": [{"text": text}]}},
            timeout=self.timeout,
        )

    def _extract(self, data: Any) -> list[float]:
        # Gemini returns {"embedding": {"values": [...]}}
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if isinstance(embedding, dict) and embedding.get("values"):
            return [float(x) for x in embedding["values"]]
        raise ProviderError("Unexpected Gemini response format", provider="gemini")


def build_embedding_provider(
    config: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> OllamaEmbeddingsService | GeminiEmbeddingsService:
    """Construct the provider selected by ``EMBEDDING_PROVIDER``."""

    if config.EMBEDDING_PROVIDER == "gemini":
        if not config.GEMINI_API_KEY:
            raise ValidationError("GEMINI_API_KEY is required for the gemini embedding provider")
        return GeminiEmbeddingsService(
            api_key=config.GEMINI_API_KEY,
            api_base=config.GEMINI_API_BASE,
            model=config.EMBEDDING_MODEL,
            dim=config.EMBEDDING_DIM,
            timeout=config.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )
    return OllamaEmbeddingsService(
        api_base=config.OLLAMA_HOST,
        model=config.EMBEDDING_MODEL,
        dim=config.EMBEDDING_DIM,
        timeout=config.HTTP_TIMEOUT_SECONDS,
        transport=transport,
    )
