"""Content-hash keyed cache of query embeddings."""

from __future__ import annotations

import threading
import time
from typing import Protocol, Sequence

from grounded_rag.core.logging import get_logger
from grounded_rag.core.metrics import EMBEDDING_CACHE
from grounded_rag.db.sqlite import SQLiteDatabase
from grounded_rag.ingest.embeddings import vector_from_bytes, vector_to_bytes
from grounded_rag.utils.hashing import urlsafe_digest

logger = get_logger(__name__)

WEEK_IN_SECONDS = 7 * 24 * 60 * 60
KEY_PREFIX = "emb:"


class EmbeddingCache(Protocol):
    def get(self, key: str) -> list[float] | None:
        ...

    def put(self, key: str, value: Sequence[float], ttl_seconds: int) -> None:
        ...


class SQLiteEmbeddingCache:
    """Embedding cache stored in the ``embedding_cache`` table."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def get(self, key: str) -> list[float] | None:
        row = self.db.query_one(
            "SELECT value FROM embedding_cache WHERE key = ? AND expires_at > ?",
            [key, int(time.time())],
        )
        return vector_from_bytes(row["value"]) if row else None

    def put(self, key: str, value: Sequence[float], ttl_seconds: int) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO embedding_cache (key, value, expires_at) VALUES (?, ?, ?)",
                [key, vector_to_bytes(value), int(time.time()) + ttl_seconds],
            )


class MemoryEmbeddingCache:
    """Process-local cache honouring TTLs."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[list[float], float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> list[float] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= time.time():
                del self._entries[key]
                return None
            return list(value)

    def put(self, key: str, value: Sequence[float], ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (list(value), time.time() + ttl_seconds)


def cache_key(text: str) -> str:
    return f"{KEY_PREFIX}{urlsafe_digest(text)}"


class QueryEmbeddingCache:
    """Best-effort wrapper: a missing backend or any backend error reads as a miss."""

    def __init__(self, backend: EmbeddingCache | None, ttl_seconds: int = WEEK_IN_SECONDS) -> None:
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    def lookup(self, text: str) -> list[float] | None:
        if self.backend is None:
            logger.debug("Embedding cache disabled, skipping lookup")
            return None
        key = cache_key(text)
        try:
            cached = self.backend.get(key)
        except Exception as exc:
            logger.warning(
                "Embedding cache read failed, falling back",
                extra={"ctx_cache_key_prefix": key[:12], "ctx_error": str(exc)},
            )
            EMBEDDING_CACHE.labels(result="error").inc()
            return None
        EMBEDDING_CACHE.labels(result="hit" if cached else "miss").inc()
        logger.debug("Embedding cache lookup", extra={"ctx_cache_hit": bool(cached), "ctx_cache_key_prefix": key[:12]})
        return cached or None

    def store(self, text: str, vector: Sequence[float]) -> None:
        if self.backend is None:
            return
        key = cache_key(text)
        try:
            self.backend.put(key, vector, self.ttl_seconds)
        except Exception as exc:
            logger.warning(
                "Embedding cache write failed (non-fatal)",
                extra={"ctx_cache_key_prefix": key[:12], "ctx_error": str(exc)},
            )
            EMBEDDING_CACHE.labels(result="write_error").inc()


__all__ = [
    "EmbeddingCache",
    "SQLiteEmbeddingCache",
    "MemoryEmbeddingCache",
    "QueryEmbeddingCache",
    "cache_key",
    "WEEK_IN_SECONDS",
]
