"""Embedding providers."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from array import array
from typing import Any, Sequence

import requests

from grounded_rag.core.config import Settings
from grounded_rag.core.errors import ProviderError

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class EmbeddingProvider(ABC):
    """Turns texts into dense vectors of a fixed dimension."""

    model_name: str

    @property
    @abstractmethod
    def dim(self) -> int:
        ...

    @abstractmethod
    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""


class HashedEmbeddingProvider(EmbeddingProvider):
    """Lightweight hashed bag-of-words embeddings with deterministic output."""

    def __init__(self, model_name: str = "hashed", dim: int = 384) -> None:
        self.model_name = model_name
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self._dim
            for token in _tokenize(text):
                vector[_hash_token(token, self._dim)] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return vectors


class HttpEmbeddingProvider(EmbeddingProvider):
    """Client for an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        base_url: str,
        model_name: str,
        dim: int,
        api_key: str = "",
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self._dim = dim
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            resp = self.session.post(
                f"{self.base_url}/embeddings",
                json={"model": self.model_name, "input": list(texts)},
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ProviderError(f"Embedding request failed: {exc}") from exc
        try:
            vectors = _parse_embedding_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"Malformed embedding response: {exc}") from exc
        if len(vectors) != len(texts):
            raise ProviderError(f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts")
        return vectors


def _parse_embedding_payload(payload: Any) -> list[list[float]]:
    # OpenAI style {"data": [{"embedding": [...], "index": n}, ...]} or a bare {"data": [[...]]}
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        items = payload["data"]
        if items and isinstance(items[0], dict):
            ordered = sorted(items, key=lambda item: item.get("index", 0))
            return [list(map(float, item["embedding"])) for item in ordered]
        return [list(map(float, item)) for item in items]
    raise ProviderError("Unrecognised embedding response shape")


def build_embedding_provider(settings: Settings) -> EmbeddingProvider:
    if settings.embedding_backend == "http":
        if not settings.embedding_base_url:
            raise ValueError("embedding_base_url is required for the http embedding backend")
        return HttpEmbeddingProvider(
            base_url=settings.embedding_base_url,
            model_name=settings.embedding_model,
            dim=settings.embedding_dim,
            api_key=settings.embedding_api_key,
            timeout=settings.provider_timeout_seconds,
        )
    return HashedEmbeddingProvider(model_name=settings.embedding_model, dim=settings.embedding_dim)


def vector_to_bytes(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def vector_from_bytes(data: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(data)
    return list(floats)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingProvider",
    "HashedEmbeddingProvider",
    "HttpEmbeddingProvider",
    "build_embedding_provider",
    "vector_to_bytes",
    "vector_from_bytes",
]
