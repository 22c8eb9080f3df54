"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(slots=True)
class RawDocument:
    """Submitted document as written to the object store."""

    id: str
    title: str
    text: str
    metadata: dict[str, Any]
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class DocumentMetadata:
    id: str
    source_document_id: str
    title: str
    metadata: dict[str, Any]
    created_at: int
    updated_at: int


@dataclass(slots=True)
class Chunk:
    id: str
    document_id: str
    text: str
    chunk_index: int
    metadata: dict[str, Any]
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chunk":
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            text=data["text"],
            chunk_index=int(data["chunk_index"]),
            metadata=dict(data.get("metadata") or {}),
            created_at=int(data["created_at"]),
        )


@dataclass(slots=True)
class ChunkWithDocument:
    """Chunk joined with the document it belongs to."""

    id: str
    document_id: str
    text: str
    chunk_index: int
    metadata: dict[str, Any]
    created_at: int
    title: str
    source_document_id: str
    document_metadata: dict[str, Any]


@dataclass(slots=True)
class VectorRecord:
    """Embedding keyed by the chunk id it was computed from."""

    id: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class VectorMatch:
    chunk_id: str
    score: float
    metadata: dict[str, Any] | None = None


__all__ = [
    "RawDocument",
    "DocumentMetadata",
    "Chunk",
    "ChunkWithDocument",
    "VectorRecord",
    "VectorMatch",
]
