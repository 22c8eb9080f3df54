"""Vector index abstraction."""

from __future__ import annotations

import math
import threading
from abc import ABC, abstractmethod
from typing import Sequence

import orjson

from grounded_rag.core.errors import ProviderError
from grounded_rag.core.metrics import INDEX_SIZE
from grounded_rag.db.sqlite import SQLiteDatabase
from grounded_rag.ingest.embeddings import vector_from_bytes, vector_to_bytes
from grounded_rag.models.entities import VectorMatch, VectorRecord
from grounded_rag.utils.time import now_ms


class VectorIndex(ABC):
    """Nearest-neighbour index keyed by chunk id.

    Scores are cosine similarities, so higher means more similar.
    """

    @abstractmethod
    def upsert(self, records: Sequence[VectorRecord]) -> int:
        """Insert or replace ``records``; return how many were written."""

    @abstractmethod
    def query(self, embedding: Sequence[float], top_k: int, with_metadata: bool = True) -> list[VectorMatch]:
        """Return at most ``top_k`` matches ordered by descending score."""

    @property
    @abstractmethod
    def size(self) -> int:
        ...


class LocalVectorIndex(VectorIndex):
    """In-memory cosine index, optionally mirrored to the ``vectors`` table."""

    def __init__(self, dim: int, db: SQLiteDatabase | None = None) -> None:
        self.dim = dim
        self.db = db
        self._vectors: dict[str, list[float]] = {}
        self._metadata: dict[str, dict] = {}
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return len(self._vectors)

    def upsert(self, records: Sequence[VectorRecord]) -> int:
        if not records:
            return 0
        for record in records:
            if len(record.embedding) != self.dim:
                raise ProviderError(
                    f"Vector dimension mismatch for {record.id}: expected {self.dim}, got {len(record.embedding)}"
                )
        if self.db is not None:
            now = now_ms()
            with self.db.transaction() as cursor:
                cursor.executemany(
                    """
                    INSERT INTO vectors (id, embedding, dim, metadata, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      embedding = excluded.embedding,
                      dim = excluded.dim,
                      metadata = excluded.metadata,
                      updated_at = excluded.updated_at
                    """,
                    [
                        (
                            record.id,
                            vector_to_bytes(record.embedding),
                            self.dim,
                            orjson.dumps(record.metadata).decode("utf-8"),
                            now,
                        )
                        for record in records
                    ],
                )
        with self._lock:
            for record in records:
                self._vectors[record.id] = _unit(record.embedding)
                self._metadata[record.id] = dict(record.metadata)
        INDEX_SIZE.set(self.size)
        return len(records)

    def query(self, embedding: Sequence[float], top_k: int, with_metadata: bool = True) -> list[VectorMatch]:
        if top_k <= 0:
            return []
        if len(embedding) != self.dim:
            raise ProviderError("Query vector dimension mismatch")
        query_vector = _unit(embedding)
        with self._lock:
            scored = [
                (chunk_id, _clamp(_dot(vector, query_vector)))
                for chunk_id, vector in self._vectors.items()
            ]
            metadata = dict(self._metadata) if with_metadata else {}
        scored.sort(key=lambda item: item[1], reverse=True)
        return [
            VectorMatch(
                chunk_id=chunk_id,
                score=score,
                metadata=dict(metadata.get(chunk_id, {})) if with_metadata else None,
            )
            for chunk_id, score in scored[:top_k]
        ]

    def rebuild(self) -> None:
        """Reload every persisted vector of this index's dimension."""
        if self.db is None:
            return
        rows = self.db.query("SELECT id, embedding, metadata FROM vectors WHERE dim = ?", [self.dim])
        with self._lock:
            self._vectors = {row["id"]: _unit(vector_from_bytes(row["embedding"])) for row in rows}
            self._metadata = {row["id"]: orjson.loads(row["metadata"]) if row["metadata"] else {} for row in rows}
        INDEX_SIZE.set(self.size)


def _unit(vector: Sequence[float]) -> list[float]:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return [0.0] * len(vector)
    return [value / norm for value in vector]


def _dot(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


def _clamp(score: float) -> float:
    return max(-1.0, min(1.0, score))


__all__ = ["VectorIndex", "LocalVectorIndex"]
