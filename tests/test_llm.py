"""
Tests for embedding providers.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from syncengine.config import Config
from syncengine.errors import EmbeddingError
from syncengine.llm import OllamaProvider, OpenAIProvider, get_embedding_provider


class TestEmbeddingConfig:
    """Tests for provider configuration validation."""

    def test_openai_missing_key(self, monkeypatch):
        monkeypatch.setattr(Config, "EMBEDDING_PROVIDER", "openai")
        monkeypatch.setattr(Config, "OPENAI_API_KEY", "")

        with pytest.raises(ValueError, match="OPENAI_API_KEY must be set"):
            Config.validate_embedding_config()

    def test_ollama_no_key_needed(self, monkeypatch):
        monkeypatch.setattr(Config, "EMBEDDING_PROVIDER", "ollama")
        monkeypatch.setattr(Config, "OPENAI_API_KEY", "")

        # Should not raise
        Config.validate_embedding_config()

    def test_invalid_provider(self, monkeypatch):
        monkeypatch.setattr(Config, "EMBEDDING_PROVIDER", "unknown_provider")

        with pytest.raises(ValueError, match="EMBEDDING_PROVIDER must be one of"):
            Config.validate_embedding_config()


class TestGetEmbeddingProvider:
    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unsupported embedding provider"):
            get_embedding_provider("gemini")

    def test_configured_provider_is_validated(self, monkeypatch):
        monkeypatch.setattr(Config, "EMBEDDING_PROVIDER", "openai")
        monkeypatch.setattr(Config, "OPENAI_API_KEY", "")

        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            get_embedding_provider()

    def test_ollama(self, monkeypatch):
        monkeypatch.setattr(Config, "EMBEDDING_PROVIDER", "Ollama")

        provider = get_embedding_provider()

        assert isinstance(provider, OllamaProvider)
        assert provider.model_name == Config.OLLAMA_EMBEDDING_MODEL


class TestOpenAIProvider:
    @pytest.mark.asyncio
    async def test_embed_batch_orders_by_index(self):
        with patch("openai.AsyncOpenAI") as mock_cls:
            client = MagicMock()
            client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[
                SimpleNamespace(index=1, embedding=[0.2, 0.2]),
                SimpleNamespace(index=0, embedding=[0.1, 0.1]),
            ]))
            mock_cls.return_value = client

            provider = OpenAIProvider(api_key="test-key", model="text-embedding-3-small")
            vectors = await provider.embed_batch(["first", "second"])

        assert vectors == [[0.1, 0.1], [0.2, 0.2]]
        client.embeddings.create.assert_awaited_once_with(
            model="text-embedding-3-small",
            input=["first", "second"],
        )
        assert mock_cls.call_args.kwargs["api_key"] == "test-key"


class TestOllamaProvider:
    @pytest.mark.asyncio
    async def test_embed_batch(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"embeddings": [[1.0, 2.0], [3.0, 4.0]]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = OllamaProvider(base_url="http://ollama:11434/", model="nomic-embed-text", http_client=client)

        vectors = await provider.embed_batch(["a", "b"])
        single = await provider.embed("a")
        await provider.close()

        assert vectors == [[1.0, 2.0], [3.0, 4.0]]
        assert single == [1.0, 2.0]
        assert str(requests[0].url) == "http://ollama:11434/api/embed"
        assert json.loads(requests[0].content) == {"model": "nomic-embed-text", "input": ["a", "b"]}

    @pytest.mark.asyncio
    async def test_missing_embeddings(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"error": "x"})))
        provider = OllamaProvider(http_client=client)

        with pytest.raises(EmbeddingError):
            await provider.embed_batch(["a"])
        await provider.close()

    @pytest.mark.asyncio
    async def test_http_error(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        provider = OllamaProvider(http_client=client)

        with pytest.raises(httpx.HTTPStatusError):
            await provider.embed_batch(["a"])
        await provider.close()
