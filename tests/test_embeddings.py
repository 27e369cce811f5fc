"""
Tests for execution/legal_ingest/embeddings.py

Covers: response validation shared by all clients, WebhookEmbeddingClient
        error mapping (timeout, unreachable, non-2xx, malformed body),
        MockEmbeddingClient determinism and the get_embedding_client() factory.

All HTTP calls are mocked.
"""

import math
from unittest.mock import MagicMock

import pytest
import requests


def _client(session=None, **overrides):
    from execution.legal_ingest.embeddings import EmbeddingClientConfig, WebhookEmbeddingClient

    params = {"webhook_url": "https://n8n.test/webhook/embed", "dimensions": 3}
    params.update(overrides)
    return WebhookEmbeddingClient(EmbeddingClientConfig(**params), session=session or MagicMock())


def _response(status=200, payload=None, text="", json_error=False):
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.text = text
    if json_error:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = payload
    return response


VALID_PAYLOAD = {
    "chunks": [
        {"content": "birinci parça", "embedding": [0.1, 0.2, 0.3]},
        {"content": "ikinci parça", "embedding": [0.4, 0.5, 0.6]},
    ],
    "model": "text-embedding-3-small",
}


# ---------------------------------------------------------------------------
# Webhook client
# ---------------------------------------------------------------------------

class TestWebhookEmbeddingClient:

    def test_successful_call(self):
        session = MagicMock()
        session.post.return_value = _response(payload=VALID_PAYLOAD)
        client = _client(session)

        result = client.embed("doc-1", "metin")

        assert [c.content for c in result.chunks] == ["birinci parça", "ikinci parça"]
        assert result.chunks[1].embedding == [0.4, 0.5, 0.6]
        assert result.model == "text-embedding-3-small"
        assert result.dimensions == 3
        assert result.is_mock is False

    def test_request_shape_and_timeout(self):
        from execution.legal_ingest.models import Visibility

        session = MagicMock()
        session.post.return_value = _response(payload=VALID_PAYLOAD)
        client = _client(session, timeout_seconds=42.0, webhook_token="s3cret")

        client.embed("doc-1", "metin", Visibility.PRIVATE)

        args, kwargs = session.post.call_args
        assert args[0] == "https://n8n.test/webhook/embed"
        assert kwargs["json"] == {"docId": "doc-1", "text": "metin", "isPublic": False}
        assert kwargs["timeout"] == 42.0
        assert kwargs["headers"]["Authorization"] == "Bearer s3cret"

    def test_single_attempt_only(self):
        from execution.legal_ingest.errors import ServiceUnavailableError

        session = MagicMock()
        session.post.return_value = _response(status=500, text="boom")
        client = _client(session)

        with pytest.raises(ServiceUnavailableError):
            client.embed("doc-1", "metin")
        assert session.post.call_count == 1

    def test_missing_url_is_unavailable(self):
        from execution.legal_ingest.errors import ServiceUnavailableError

        session = MagicMock()
        client = _client(session, webhook_url=None)

        with pytest.raises(ServiceUnavailableError):
            client.embed("doc-1", "metin")
        session.post.assert_not_called()

    def test_timeout_maps_to_timeout_error(self):
        from execution.legal_ingest.errors import ServiceTimeoutError

        session = MagicMock()
        session.post.side_effect = requests.Timeout("read timed out")
        client = _client(session)

        with pytest.raises(ServiceTimeoutError) as exc_info:
            client.embed("doc-1", "metin")
        assert exc_info.value.code == "timeout"
        assert exc_info.value.status_code == 504

    def test_connection_error_maps_to_unavailable(self):
        from execution.legal_ingest.errors import ServiceUnavailableError

        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        client = _client(session)

        with pytest.raises(ServiceUnavailableError):
            client.embed("doc-1", "metin")

    def test_non_json_body_is_invalid_response(self):
        from execution.legal_ingest.errors import InvalidResponseError

        session = MagicMock()
        session.post.return_value = _response(text="<html>", json_error=True)
        client = _client(session)

        with pytest.raises(InvalidResponseError):
            client.embed("doc-1", "metin")

    def test_error_details_are_bounded(self):
        from execution.legal_ingest.errors import ServiceUnavailableError, MAX_DETAILS_LENGTH

        session = MagicMock()
        session.post.return_value = _response(status=502, text="x" * 5000)
        client = _client(session)

        with pytest.raises(ServiceUnavailableError) as exc_info:
            client.embed("doc-1", "metin")
        assert len(exc_info.value.details) <= MAX_DETAILS_LENGTH

    def test_non_positive_timeout_rejected(self):
        from execution.legal_ingest.errors import InvalidConfigurationError

        with pytest.raises(InvalidConfigurationError):
            _client(timeout_seconds=0)


# ---------------------------------------------------------------------------
# Response validation
# ---------------------------------------------------------------------------

class TestResponseValidation:

    @pytest.mark.parametrize("payload", [
        [],
        {"chunks": []},
        {"chunks": None},
        {"chunks": ["not a dict"]},
        {"chunks": [{"content": "", "embedding": [0.1, 0.2, 0.3]}]},
        {"chunks": [{"content": "ok", "embedding": []}]},
        {"chunks": [{"content": "ok", "embedding": [0.1, "x", 0.3]}]},
        {"chunks": [{"content": "ok", "embedding": [True, False, True]}]},
        {"chunks": [{"content": "ok", "embedding": [0.1, float("nan"), 0.3]}]},
        {"chunks": [{"content": "ok", "embedding": [0.1, 0.2]}]},
    ])
    def test_contract_violations_rejected(self, payload):
        from execution.legal_ingest.errors import InvalidResponseError

        with pytest.raises(InvalidResponseError):
            _client()._parse_response(payload)

    def test_mixed_dimensions_rejected_without_configured_dimension(self):
        from execution.legal_ingest.errors import InvalidResponseError

        payload = {"chunks": [
            {"content": "a", "embedding": [0.1, 0.2]},
            {"content": "b", "embedding": [0.1, 0.2, 0.3]},
        ]}
        with pytest.raises(InvalidResponseError):
            _client(dimensions=None)._parse_response(payload)

    def test_integers_accepted_and_converted(self):
        result = _client()._parse_response(
            {"chunks": [{"content": "a", "embedding": [1, 0, -1]}], "model": "m"}
        )
        assert result.chunks[0].embedding == [1.0, 0.0, -1.0]

    def test_whitespace_only_chunk_accepted(self):
        result = _client()._parse_response(
            {"chunks": [{"content": " " * 2000, "embedding": [0.1, 0.2, 0.3]}]}
        )
        assert result.chunks[0].content == " " * 2000

    def test_missing_model_falls_back(self):
        result = _client(default_model="fallback-model")._parse_response(
            {"chunks": [{"content": "a", "embedding": [0.1, 0.2, 0.3]}]}
        )
        assert result.model == "fallback-model"


# ---------------------------------------------------------------------------
# Mock client
# ---------------------------------------------------------------------------

class TestMockEmbeddingClient:

    def test_pseudo_vector_formula(self):
        from execution.legal_ingest.embeddings import MockEmbeddingClient

        vector = MockEmbeddingClient.pseudo_vector("abcd", 1, 4)
        seed = 4 + 1
        assert vector == [math.sin(seed * (i + 1)) * 0.5 for i in range(4)]

    def test_default_dimensions(self):
        from execution.legal_ingest.embeddings import MockEmbeddingClient

        client = MockEmbeddingClient()
        result = client.embed("doc-1", "a" * 100)
        assert result.dimensions == 1536
        assert result.model == "mock-embedding-model"
        assert result.is_mock is True
        assert result.note

    def test_chunks_follow_chunker(self, long_text):
        from execution.legal_ingest.chunker import chunk_text
        from execution.legal_ingest.embeddings import EmbeddingClientConfig, MockEmbeddingClient

        client = MockEmbeddingClient(EmbeddingClientConfig(dimensions=4))
        result = client.embed("doc-1", long_text)
        assert [c.content for c in result.chunks] == chunk_text(long_text)

    def test_trailing_blank_region_embeds(self):
        from execution.legal_ingest.embeddings import EmbeddingClientConfig, MockEmbeddingClient

        text = "Madde 1. " * 10 + " " * 4000
        result = MockEmbeddingClient(EmbeddingClientConfig(dimensions=4)).embed("doc-1", text)
        assert len(result.chunks) == 3
        assert result.chunks[-1].content.strip() == ""

    def test_deterministic(self):
        from execution.legal_ingest.embeddings import EmbeddingClientConfig, MockEmbeddingClient

        client = MockEmbeddingClient(EmbeddingClientConfig(dimensions=4))
        first = client.embed("doc-1", "aynı metin " * 10)
        second = client.embed("doc-2", "aynı metin " * 10)
        assert [c.embedding for c in first.chunks] == [c.embedding for c in second.chunks]

    def test_payload_shape(self):
        from execution.legal_ingest.embeddings import EmbeddingClientConfig, MockEmbeddingClient

        payload = MockEmbeddingClient(EmbeddingClientConfig(dimensions=2)).build_payload("d", "metin")
        assert set(payload) == {"docId", "chunks", "totalChunks", "model", "note"}
        assert payload["totalChunks"] == 1


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

class TestGetEmbeddingClient:

    def test_webhook_backend(self):
        from execution.legal_ingest.config import IngestionConfig
        from execution.legal_ingest.embeddings import WebhookEmbeddingClient, get_embedding_client

        client = get_embedding_client(IngestionConfig(
            embedding_backend="webhook",
            embedding_webhook_url="https://n8n.test/hook",
            embedding_timeout_seconds=30,
        ))
        assert isinstance(client, WebhookEmbeddingClient)
        assert client.config.timeout_seconds == 30

    def test_mock_backend(self):
        from execution.legal_ingest.config import IngestionConfig
        from execution.legal_ingest.embeddings import MockEmbeddingClient, get_embedding_client

        client = get_embedding_client(IngestionConfig(embedding_backend="mock"))
        assert isinstance(client, MockEmbeddingClient)

    def test_unknown_backend(self):
        from execution.legal_ingest.config import IngestionConfig
        from execution.legal_ingest.embeddings import get_embedding_client
        from execution.legal_ingest.errors import InvalidConfigurationError

        with pytest.raises(InvalidConfigurationError):
            get_embedding_client(IngestionConfig(embedding_backend="openai"))
