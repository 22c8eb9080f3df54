"""Tests for embedding providers."""

from __future__ import annotations

from typing import Any

import pytest
import requests

from grounded_rag.core.config import Settings
from grounded_rag.core.errors import ProviderError
from grounded_rag.ingest.embeddings import (
    HashedEmbeddingProvider,
    HttpEmbeddingProvider,
    build_embedding_provider,
    vector_from_bytes,
    vector_to_bytes,
)


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        return self._payload


class FakeSession:
    def __init__(self, response: FakeResponse) -> None:
        self.response = response
        self.requests: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"url": url, **kwargs})
        return self.response


def test_hashed_embeddings_are_normalized() -> None:
    provider = HashedEmbeddingProvider(dim=32)
    vectors = provider.embed(["hello", "world"])
    assert len(vectors) == 2
    assert all(len(vec) == provider.dim for vec in vectors)
    assert abs(sum(value * value for value in vectors[0]) - 1.0) < 1e-6


def test_hashed_embeddings_are_deterministic() -> None:
    provider = HashedEmbeddingProvider(dim=32)
    assert provider.embed(["same text"]) == provider.embed(["same text"])


def test_http_provider_parses_openai_payload() -> None:
    session = FakeSession(
        FakeResponse({"data": [{"index": 1, "embedding": [0.0, 1.0]}, {"index": 0, "embedding": [1.0, 0.0]}]})
    )
    provider = HttpEmbeddingProvider("http://embed.local/v1/", "m", dim=2, api_key="k", session=session)
    vectors = provider.embed(["first", "second"])
    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    sent = session.requests[0]
    assert sent["url"] == "http://embed.local/v1/embeddings"
    assert sent["json"] == {"model": "m", "input": ["first", "second"]}
    assert sent["headers"]["Authorization"] == "Bearer k"


def test_http_provider_wraps_http_errors() -> None:
    provider = HttpEmbeddingProvider("http://embed.local", "m", dim=2, session=FakeSession(FakeResponse({}, 503)))
    with pytest.raises(ProviderError):
        provider.embed(["text"])


def test_http_provider_rejects_count_mismatch() -> None:
    session = FakeSession(FakeResponse({"data": [[1.0, 0.0]]}))
    provider = HttpEmbeddingProvider("http://embed.local", "m", dim=2, session=session)
    with pytest.raises(ProviderError):
        provider.embed(["one", "two"])


def test_http_provider_rejects_malformed_payload() -> None:
    provider = HttpEmbeddingProvider("http://embed.local", "m", dim=2, session=FakeSession(FakeResponse(["nope"])))
    with pytest.raises(ProviderError):
        provider.embed(["one"])


def test_build_provider_requires_base_url_for_http() -> None:
    with pytest.raises(ValueError):
        build_embedding_provider(Settings(embedding_backend="http"))
    assert isinstance(build_embedding_provider(Settings()), HashedEmbeddingProvider)


def test_vector_bytes_round_trip() -> None:
    restored = vector_from_bytes(vector_to_bytes([0.5, -0.25, 1.0]))
    assert restored == [0.5, -0.25, 1.0]
