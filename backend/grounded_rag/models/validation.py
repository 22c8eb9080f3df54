"""Input validation for submissions and questions."""

from __future__ import annotations

from typing import Any, Mapping

import orjson
from pydantic import ValidationError as PydanticValidationError

from grounded_rag.core.errors import ValidationError
from grounded_rag.models.dto import IngestionRequest, QueryRequest
from grounded_rag.utils.text import CONTROL_CHARS_RE

MAX_TITLE_LENGTH = 500
MAX_CONTENT_BYTES = 100 * 1024
MAX_METADATA_BYTES = 10 * 1024
MIN_TOP_K = 1
MAX_TOP_K = 20
_FORBIDDEN_METADATA_KEYS = ("__proto__", "constructor", "prototype")


def validate_top_k(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("INVALID_TOP_K", "topK must be a number", field="top_k")
    if value < MIN_TOP_K or value > MAX_TOP_K:
        raise ValidationError(
            "INVALID_TOP_K_RANGE",
            f"topK must be between {MIN_TOP_K} and {MAX_TOP_K}",
            field="top_k",
        )
    return value


def validate_min_similarity(value: float | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("INVALID_MIN_SIMILARITY", "minSimilarity must be a number", field="min_similarity")
    if value < 0 or value > 1:
        raise ValidationError(
            "INVALID_MIN_SIMILARITY_RANGE",
            "minSimilarity must be between 0 and 1",
            field="min_similarity",
        )
    return float(value)


def validate_title(title: str) -> str:
    if not title or not title.strip():
        raise ValidationError("INVALID_TITLE", "Title cannot be empty", field="title")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError("TITLE_TOO_LONG", f"Title must be {MAX_TITLE_LENGTH} characters or less", field="title")
    if CONTROL_CHARS_RE.search(title):
        raise ValidationError("INVALID_TITLE_CHARS", "Title contains invalid control characters", field="title")
    return title


def validate_content(text: str) -> str:
    if not text or not text.strip():
        raise ValidationError("INVALID_CONTENT", "Content cannot be empty", field="text")
    if len(text.encode("utf-8")) > MAX_CONTENT_BYTES:
        raise ValidationError("CONTENT_TOO_LARGE", "Content must be 100KB or less", field="text")
    return text


def validate_metadata(metadata: Any) -> dict[str, Any]:
    if not isinstance(metadata, Mapping):
        raise ValidationError("INVALID_METADATA", "Metadata must be a valid object", field="metadata")
    if any(key in metadata for key in _FORBIDDEN_METADATA_KEYS):
        raise ValidationError("INVALID_METADATA_KEYS", "Metadata contains invalid keys", field="metadata")
    try:
        encoded = orjson.dumps(dict(metadata))
    except TypeError as exc:
        raise ValidationError("INVALID_METADATA_JSON", "Metadata must be valid JSON", field="metadata") from exc
    if len(encoded) > MAX_METADATA_BYTES:
        raise ValidationError("METADATA_TOO_LARGE", "Metadata must be 10KB or less", field="metadata")
    return dict(metadata)


def validate_chunking(
    chunk_size: int | None,
    chunk_overlap: int | None,
    default_size: int,
    default_overlap: int,
) -> tuple[int, int]:
    """Resolve per-submission chunking overrides against the configured defaults."""
    size = default_size if chunk_size is None else chunk_size
    overlap = default_overlap if chunk_overlap is None else chunk_overlap
    if isinstance(size, bool) or not isinstance(size, int) or size < 1:
        raise ValidationError("INVALID_CHUNK_SIZE", "chunkSize must be a positive integer", field="chunk_size")
    if isinstance(overlap, bool) or not isinstance(overlap, int) or overlap < 0:
        raise ValidationError("INVALID_CHUNK_OVERLAP", "chunkOverlap must be a non-negative integer", field="chunk_overlap")
    if overlap >= size:
        raise ValidationError(
            "INVALID_CHUNK_OVERLAP",
            f"chunkOverlap must be smaller than chunkSize ({size})",
            field="chunk_overlap",
        )
    return size, overlap


def build_ingestion_request(title: str, text: str, metadata: Mapping[str, Any] | None = None) -> IngestionRequest:
    """Validate a submission and return it as a request model."""
    return IngestionRequest(
        title=validate_title(title),
        text=validate_content(text),
        metadata=validate_metadata(metadata if metadata is not None else {}),
    )


def build_query_request(question: str, top_k: int, min_similarity: float | None = None) -> QueryRequest:
    """Validate query parameters, translating model errors into ``ValidationError``."""
    if not isinstance(question, str) or not question.strip():
        raise ValidationError("MISSING_QUESTION", "Question is required", field="question")
    validate_top_k(top_k)
    validate_min_similarity(min_similarity)
    try:
        return QueryRequest(question=question, top_k=top_k, min_similarity=min_similarity)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else None
        raise ValidationError("INVALID_QUERY", first.get("msg", "Invalid query"), field=field) from exc


__all__ = [
    "validate_top_k",
    "validate_min_similarity",
    "validate_title",
    "validate_content",
    "validate_metadata",
    "validate_chunking",
    "build_ingestion_request",
    "build_query_request",
]
