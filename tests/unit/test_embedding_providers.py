"""Unit tests for the OpenAI-compatible embedding provider adapter."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import openai
import pytest

from chatiq_kb.config.settings import Settings
from chatiq_kb.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from chatiq_kb.utils.errors import EmbeddingError

_CLIENT_PATH = "chatiq_kb.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI"


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_embedding_model": "",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _response(*vectors: list[float]) -> MagicMock:
    response = MagicMock()
    response.data = [MagicMock(embedding=v) for v in vectors]
    response.usage = MagicMock(total_tokens=10 * len(vectors))
    return response


def _provider(client: AsyncMock, **overrides) -> OpenAIEmbeddingProvider:
    with patch(_CLIENT_PATH, return_value=client):
        return OpenAIEmbeddingProvider(_settings(**overrides))


class TestOpenAIEmbeddingProvider:
    def test_provider_name(self) -> None:
        assert _provider(AsyncMock()).get_provider_name() == "openai_embedding"

    def test_provider_name_with_gateway(self) -> None:
        provider = _provider(AsyncMock(), openai_base_url="http://gateway.local/v1")
        assert provider.get_provider_name() == "openai-compatible_embedding"

    def test_is_available(self) -> None:
        assert _provider(AsyncMock()).is_available() is True
        assert _provider(AsyncMock(), openai_api_key="").is_available() is False

    def test_default_model_dimension(self) -> None:
        assert _provider(AsyncMock()).get_dimension() == 1536

    def test_large_model_dimension(self) -> None:
        provider = _provider(AsyncMock(), openai_embedding_model="text-embedding-3-large")
        assert provider.get_dimension() == 3072

    def test_client_gets_timeout_and_base_url(self) -> None:
        with patch(_CLIENT_PATH) as client_cls:
            OpenAIEmbeddingProvider(
                _settings(openai_base_url="http://gateway.local/v1", embedding_timeout_seconds=7)
            )

        kwargs = client_cls.call_args.kwargs
        assert kwargs["timeout"] == 7
        assert kwargs["base_url"] == "http://gateway.local/v1"

    @pytest.mark.asyncio
    async def test_embed_batch(self) -> None:
        client = AsyncMock()
        client.embeddings.create = AsyncMock(return_value=_response([0.1, 0.2], [0.3, 0.4]))
        provider = _provider(client)

        result = await provider.embed(["hello", "world"])

        assert result == [[0.1, 0.2], [0.3, 0.4]]
        client.embeddings.create.assert_awaited_once_with(
            input=["hello", "world"], model="text-embedding-3-small"
        )

    @pytest.mark.asyncio
    async def test_embed_single(self) -> None:
        client = AsyncMock()
        client.embeddings.create = AsyncMock(return_value=_response([0.5] * 1536))

        result = await _provider(client).embed_single("hello")

        assert len(result) == 1536

    @pytest.mark.asyncio
    async def test_empty_input_skips_api(self) -> None:
        client = AsyncMock()
        assert await _provider(client).embed([]) == []
        client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_large_input_is_split_into_batches(self) -> None:
        client = AsyncMock()
        client.embeddings.create = AsyncMock(
            side_effect=[_response(*([[1.0]] * 2048)), _response([2.0])]
        )

        result = await _provider(client).embed(["t"] * 2049)

        assert len(result) == 2049
        assert client.embeddings.create.await_count == 2

    @pytest.mark.asyncio
    async def test_api_error_becomes_embedding_error(self) -> None:
        client = AsyncMock()
        client.embeddings.create = AsyncMock(
            side_effect=openai.APIError(message="Rate limit", request=MagicMock(), body=None)
        )

        with pytest.raises(EmbeddingError) as exc_info:
            await _provider(client).embed(["test"])

        assert exc_info.value.provider_name == "openai_embedding"

    @pytest.mark.asyncio
    async def test_missing_data_is_malformed(self) -> None:
        client = AsyncMock()
        response = _response()
        client.embeddings.create = AsyncMock(return_value=response)

        with pytest.raises(EmbeddingError):
            await _provider(client).embed(["test"])

    @pytest.mark.asyncio
    async def test_count_mismatch_is_malformed(self) -> None:
        client = AsyncMock()
        client.embeddings.create = AsyncMock(return_value=_response([0.1]))

        with pytest.raises(EmbeddingError):
            await _provider(client).embed(["a", "b"])

    @pytest.mark.asyncio
    async def test_non_list_embedding_is_malformed(self) -> None:
        client = AsyncMock()
        response = MagicMock()
        response.data = [MagicMock(embedding=None)]
        client.embeddings.create = AsyncMock(return_value=response)

        with pytest.raises(EmbeddingError):
            await _provider(client).embed(["test"])
