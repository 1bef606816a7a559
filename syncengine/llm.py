"""
Embedding provider module for the sync engine.
Provides a unified interface for OpenAI and Ollama embedding backends.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from syncengine.config import Config
from syncengine.errors import EmbeddingError

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    model_name: str = "unknown"

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed.

        Returns:
            List of embedding vectors, one per input text, in order.
        """
        pass

    async def embed(self, text: str) -> list[float]:
        """Generate the embedding for a single text."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def close(self) -> None:
        pass


class OpenAIProvider(EmbeddingProvider):
    """OpenAI embedding provider implementation."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
    ):
        from openai import AsyncOpenAI

        self.client = AsyncOpenAI(
            api_key=api_key or Config.OPENAI_API_KEY,
            base_url=base_url or Config.OPENAI_BASE_URL,
        )
        self.model_name = model or Config.OPENAI_EMBEDDING_MODEL

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        response = await self.client.embeddings.create(
            model=self.model_name,
            input=texts,
        )
        # The API may return items out of order
        data = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in data]

    async def close(self) -> None:
        await self.client.close()


class OllamaProvider(EmbeddingProvider):
    """Ollama local embedding provider implementation."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or Config.OLLAMA_BASE_URL).rstrip("/")
        self.model_name = model or Config.OLLAMA_EMBEDDING_MODEL
        self.client = http_client or httpx.AsyncClient(timeout=120.0)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        response = await self.client.post(
            f"{self.base_url}/api/embed",
            json={"model": self.model_name, "input": texts},
        )
        response.raise_for_status()
        embeddings = response.json().get("embeddings")
        if not isinstance(embeddings, list):
            raise EmbeddingError("Ollama response did not contain 'embeddings'")
        return embeddings

    async def close(self) -> None:
        await self.client.aclose()


_providers: dict[str, type[EmbeddingProvider]] = {
    "openai": OpenAIProvider,
    "ollama": OllamaProvider,
}


def get_embedding_provider(provider_name: Optional[str] = None) -> EmbeddingProvider:
    """
    Build the configured embedding provider.

    Raises:
        ValueError: If the provider is not supported or misconfigured.
    """
    name = (provider_name or Config.EMBEDDING_PROVIDER).lower()

    if name not in _providers:
        raise ValueError(
            f"Unsupported embedding provider: {name}. "
            f"Supported: {', '.join(_providers.keys())}"
        )

    if provider_name is None:
        Config.validate_embedding_config()

    provider = _providers[name]()
    logger.info(f"Initialized embedding provider: {name} ({provider.model_name})")
    return provider
