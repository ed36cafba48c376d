"""Tests for embedding service."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic import SecretStr

from forest_vectors.config import EmbeddingSettings
from forest_vectors.embeddings import (
    EmbeddingResult,
    HashEmbeddingService,
    HTTPEmbeddingService,
    create_embedding_service,
)
from forest_vectors.exceptions import ConfigurationError, EmbeddingError
from forest_vectors.vectorstore import cosine_similarity


def _ok_response(embedding: list[float]) -> MagicMock:
    response = MagicMock()
    response.json.return_value = {"data": [{"embedding": embedding}]}
    response.raise_for_status = MagicMock()
    return response


class TestEmbeddingResult:
    """Tests for EmbeddingResult model."""

    def test_valid_result(self) -> None:
        """Valid embedding result is created."""
        result = EmbeddingResult(
            text="test",
            embedding=[0.1, 0.2, 0.3],
            model="test-model",
            dimensions=3,
        )
        assert result.dimensions == 3
        assert result.matches_request

    def test_dimensions_mismatch_is_reported(self) -> None:
        """A vector of another size is kept and flagged, not rejected here."""
        result = EmbeddingResult(
            text="test",
            embedding=[0.1, 0.2, 0.3],
            model="test-model",
            dimensions=5,
        )
        assert result.dimensions == 5
        assert not result.matches_request

    def test_non_positive_dimensions(self) -> None:
        """The requested size must be positive."""
        with pytest.raises(ValueError):
            EmbeddingResult(text="t", embedding=[0.1], model="m", dimensions=0)


class TestHTTPEmbeddingService:
    """Tests for HTTPEmbeddingService."""

    def test_model_name(self) -> None:
        """Service returns configured model name."""
        service = HTTPEmbeddingService(settings=EmbeddingSettings(model="test-model"))
        assert service.model_name == "test-model"

    @pytest.mark.asyncio
    async def test_embed_sends_dimensions(self) -> None:
        """Requested size is passed through in the payload."""
        settings = EmbeddingSettings(base_url="http://test:8080/v1/", model="test-model")
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.return_value = _ok_response([0.1, 0.2, 0.3])

        service = HTTPEmbeddingService(settings=settings, client=mock_client)
        result = await service.embed("test text", 3)

        assert result.embedding == [0.1, 0.2, 0.3]
        assert result.model == "test-model"
        url = mock_client.post.call_args.args[0]
        payload = mock_client.post.call_args.kwargs["json"]
        assert url == "http://test:8080/v1/embeddings"
        assert payload == {"input": ["test text"], "model": "test-model", "dimensions": 3}

    @pytest.mark.asyncio
    async def test_embed_reports_requested_size(self) -> None:
        """A server ignoring the requested size yields a flagged result."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.return_value = _ok_response([0.1, 0.2])

        service = HTTPEmbeddingService(settings=EmbeddingSettings(), client=mock_client)
        result = await service.embed("test", 4)

        assert result.dimensions == 4
        assert result.embedding == [0.1, 0.2]
        assert not result.matches_request

    @pytest.mark.asyncio
    async def test_embed_http_error(self) -> None:
        """HTTP error raises EmbeddingError."""
        mock_response = MagicMock()
        mock_response.status_code = 500
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "Server error",
            request=MagicMock(),
            response=mock_response,
        )
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.return_value = mock_response

        service = HTTPEmbeddingService(settings=EmbeddingSettings(), client=mock_client)

        with pytest.raises(EmbeddingError) as exc_info:
            await service.embed("test", 3)
        assert exc_info.value.details == {"status_code": 500}

    @pytest.mark.asyncio
    async def test_embed_connection_error(self) -> None:
        """Connection error raises EmbeddingError."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.side_effect = httpx.RequestError("Connection failed")

        service = HTTPEmbeddingService(settings=EmbeddingSettings(), client=mock_client)

        with pytest.raises(EmbeddingError):
            await service.embed("test", 3)

    @pytest.mark.asyncio
    async def test_embed_malformed_response(self) -> None:
        """A response without data raises EmbeddingError."""
        response = MagicMock()
        response.json.return_value = {"unexpected": True}
        response.raise_for_status = MagicMock()
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.return_value = response

        service = HTTPEmbeddingService(settings=EmbeddingSettings(), client=mock_client)

        with pytest.raises(EmbeddingError, match="Invalid response"):
            await service.embed("test", 3)

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        """Service closes owned client."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        service = HTTPEmbeddingService(settings=EmbeddingSettings(), client=mock_client)
        service._owns_client = True

        await service.close()
        mock_client.aclose.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client(self) -> None:
        """An injected client is not closed."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        service = HTTPEmbeddingService(settings=EmbeddingSettings(), client=mock_client)

        await service.close()
        mock_client.aclose.assert_not_called()

    @pytest.mark.asyncio
    async def test_authorization_header(self) -> None:
        """The API key is sent as a bearer token."""
        settings = EmbeddingSettings(api_key=SecretStr("sk-test"))
        service = HTTPEmbeddingService(settings=settings)

        client = await service._get_client()
        try:
            assert client.headers["Authorization"] == "Bearer sk-test"
        finally:
            await service.close()


class TestHashEmbeddingService:
    """Tests for the local hashing embedder."""

    @pytest.mark.asyncio
    async def test_deterministic(self) -> None:
        """The same text always yields the same vector."""
        service = HashEmbeddingService()
        first = await service.embed("learn guitar chords", 64)
        second = await service.embed("learn guitar chords", 64)
        assert first.embedding == second.embedding

    @pytest.mark.asyncio
    async def test_requested_dimension(self) -> None:
        """Vectors have the requested length."""
        result = await HashEmbeddingService().embed("some text", 384)
        assert result.dimensions == 384
        assert len(result.embedding) == 384

    @pytest.mark.asyncio
    async def test_shared_vocabulary_is_closer(self) -> None:
        """Texts sharing words are more similar than unrelated texts."""
        service = HashEmbeddingService()
        base = (await service.embed("practice guitar scales daily", 256)).embedding
        near = (await service.embed("practice guitar scales", 256)).embedding
        far = (await service.embed("quarterly tax filing", 256)).embedding
        assert cosine_similarity(base, near) > cosine_similarity(base, far)

    @pytest.mark.asyncio
    async def test_empty_text(self) -> None:
        """Empty text still produces a unit vector."""
        result = await HashEmbeddingService().embed("", 8)
        assert result.embedding[0] == 1.0

    @pytest.mark.asyncio
    async def test_rejects_non_positive_dimensions(self) -> None:
        """Zero dimensions raise EmbeddingError."""
        with pytest.raises(EmbeddingError):
            await HashEmbeddingService().embed("text", 0)


class TestCreateEmbeddingService:
    """Tests for the embedding factory."""

    def test_http(self) -> None:
        """'http' builds the HTTP client."""
        service = create_embedding_service(EmbeddingSettings(provider="http"))
        assert isinstance(service, HTTPEmbeddingService)

    def test_hash(self) -> None:
        """'hash' builds the local embedder."""
        service = create_embedding_service(EmbeddingSettings(provider="HASH"))
        assert isinstance(service, HashEmbeddingService)

    def test_unknown(self) -> None:
        """Unknown providers raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            create_embedding_service(EmbeddingSettings(provider="bogus"))
