"""Pydantic DTOs exchanged with callers of the service facade."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

DEFAULT_PATTERN = "basic"


class QueryRequest(BaseModel):
    question: str
    top_k: int = Field(default=3, ge=1, le=20)
    min_similarity: float | None = Field(default=None, ge=0.0, le=1.0)


class DocumentSource(BaseModel):
    document_id: str
    chunk_id: str
    title: str
    chunk_text: str
    chunk_index: int
    similarity: float


class QueryMetadata(BaseModel):
    pattern: str = DEFAULT_PATTERN
    latency_ms: int
    retrieved_chunks: int
    step_latency_ms: dict[str, int] = Field(default_factory=dict)
    cache_hit: bool = False


class QueryResponse(BaseModel):
    question: str
    answer: str
    sources: list[DocumentSource]
    metadata: QueryMetadata


class IngestionRequest(BaseModel):
    title: str
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class SubmissionReceipt(BaseModel):
    workflow_id: str
    document_id: str


class StepState(BaseModel):
    name: str
    status: Literal["pending", "done", "failed"]
    attempts: int = 0
    error: str | None = None


class IngestionStatus(BaseModel):
    workflow_id: str
    status: Literal["running", "completed", "failed"]
    output: dict[str, Any] | None = None
    steps: list[StepState] = Field(default_factory=list)


__all__ = [
    "QueryRequest",
    "DocumentSource",
    "QueryMetadata",
    "QueryResponse",
    "IngestionRequest",
    "SubmissionReceipt",
    "StepState",
    "IngestionStatus",
]
