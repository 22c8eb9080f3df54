"""Ingestion workflow: raw text to stored, chunked, embedded, indexed data.

Steps run in order through a :class:`StepRunner`, so each one is either
recorded as done or retried from scratch:

1. ``store-raw``        raw document to the object store (content-addressed)
2. ``create-metadata``  document row, yields the document id
3. ``split``            chunker over the raw text
4. ``store-chunks``     chunk rows in one batch (retried once by the store)
5. ``embed``            embeddings in batches of at most ten
6. ``index``            one vector per chunk upserted into the index

Any failure ends the run as :class:`Failed`; completed steps are not
rolled back.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Sequence, Union

from grounded_rag.core.config import MAX_EMBED_BATCH_SIZE
from grounded_rag.core.errors import ProviderError
from grounded_rag.core.logging import get_logger
from grounded_rag.core.metrics import INGEST_DURATION, INGEST_WORKFLOWS
from grounded_rag.db.blobs import raw_document_key
from grounded_rag.ingest.chunker import chunk_document
from grounded_rag.ingest.embeddings import EmbeddingProvider
from grounded_rag.ingest.steps import StepLog, StepResult, StepRunner
from grounded_rag.models.entities import Chunk, RawDocument, VectorRecord
from grounded_rag.utils.hashing import content_digest
from grounded_rag.utils.ids import new_id, stable_id
from grounded_rag.utils.text import word_count
from grounded_rag.utils.time import now_ms

if TYPE_CHECKING:
    from grounded_rag.core.context import PipelineContext

logger = get_logger(__name__)

STEP_NAMES = ("store-raw", "create-metadata", "split", "store-chunks", "embed", "index")


@dataclass(slots=True)
class IngestionParams:
    workflow_id: str
    document_id: str
    source_document_id: str
    title: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    chunk_size: int | None = None
    chunk_overlap: int | None = None
    idempotent: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IngestionParams":
        return cls(**data)


@dataclass(slots=True)
class Completed:
    document_id: str
    chunks_created: int
    vectors_inserted: int
    status: Literal["completed"] = "completed"


@dataclass(slots=True)
class Failed:
    error: str
    status: Literal["failed"] = "failed"


WorkflowOutcome = Union[Completed, Failed]


def new_ingestion_params(
    title: str,
    text: str,
    metadata: dict[str, Any] | None = None,
    idempotent: bool = False,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> IngestionParams:
    """Allocate ids for a submission.

    Idempotent submissions derive every id from the content digest so a
    repeated (title, text) pair maps onto the same document.
    """
    digest = content_digest(title, text)
    if idempotent:
        source_document_id = digest
        document_id = stable_id(digest, prefix="doc")
    else:
        source_document_id = new_id("src")
        document_id = new_id("doc")
    return IngestionParams(
        workflow_id=new_id("wf"),
        document_id=document_id,
        source_document_id=source_document_id,
        title=title,
        text=text,
        metadata=dict(metadata or {}),
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        idempotent=idempotent,
    )


class IngestionWorkflow:
    """Runs the six ingestion steps for one submission."""

    def __init__(self, ctx: "PipelineContext", step_log: StepLog) -> None:
        self.ctx = ctx
        self.step_log = step_log
        self.steps: list[StepResult] = []

    def run(self, params: IngestionParams) -> WorkflowOutcome:
        settings = self.ctx.settings
        log_extra = {"ctx_workflow_id": params.workflow_id, "ctx_title": params.title}
        logger.info("Starting ingestion workflow", extra=log_extra)
        runner = StepRunner(
            params.workflow_id,
            self.step_log,
            retries=settings.workflow_step_retries,
            backoff_seconds=settings.workflow_retry_backoff_seconds,
        )
        started = time.perf_counter()
        try:
            runner.step("store-raw", lambda: self._store_raw(params))
            document_id = runner.step("create-metadata", lambda: self._create_metadata(params))
            pieces = runner.step("split", lambda: self._split(params))
            chunk_dicts = runner.step("store-chunks", lambda: self._store_chunks(params, document_id, pieces))
            chunks = [Chunk.from_dict(item) for item in chunk_dicts]
            embeddings = runner.step("embed", lambda: self._embed([chunk.text for chunk in chunks]))
            indexed = runner.step("index", lambda: self._index(params, chunks, embeddings))
            outcome: WorkflowOutcome = Completed(
                document_id=document_id,
                chunks_created=len(chunks),
                vectors_inserted=indexed["count"],
            )
        except Exception as exc:
            logger.exception("Ingestion workflow failed", extra={**log_extra, "ctx_error": str(exc)})
            outcome = Failed(error=str(exc) or type(exc).__name__)
        finally:
            INGEST_DURATION.observe(time.perf_counter() - started)
        INGEST_WORKFLOWS.labels(status=outcome.status).inc()
        self.steps = runner.steps
        if isinstance(outcome, Completed):
            logger.info("Ingestion workflow completed", extra={**log_extra, "ctx_result": asdict(outcome)})
        return outcome

    # Steps ------------------------------------------------------------

    def _store_raw(self, params: IngestionParams) -> dict[str, Any]:
        key = raw_document_key(content_digest(params.title, params.text))
        if self.ctx.blobs.exists(key):
            logger.debug("Raw document already stored", extra={"ctx_key": key})
            return {"key": key, "written": False}
        raw = RawDocument(
            id=params.source_document_id,
            title=params.title,
            text=params.text,
            metadata={**params.metadata, "word_count": word_count(params.text)},
            created_at=now_ms(),
        )
        self.ctx.blobs.put_json(key, raw.to_dict())
        return {"key": key, "written": True}

    def _create_metadata(self, params: IngestionParams) -> str:
        document = self.ctx.store.create_document(
            document_id=params.document_id,
            source_document_id=params.source_document_id,
            title=params.title,
            metadata=params.metadata,
            upsert=params.idempotent,
        )
        return document.id

    def _split(self, params: IngestionParams) -> list[dict[str, Any]]:
        settings = self.ctx.settings
        pieces = chunk_document(
            params.text,
            params.title,
            chunk_size=params.chunk_size if params.chunk_size is not None else settings.default_chunk_size,
            chunk_overlap=params.chunk_overlap if params.chunk_overlap is not None else settings.default_chunk_overlap,
            enabled=settings.enable_text_splitting,
        )
        if not settings.enable_text_splitting:
            logger.info("Text splitting disabled, using full content as single chunk")
        return [{"text": piece.text, "index": piece.index, "metadata": piece.metadata} for piece in pieces]

    def _store_chunks(self, params: IngestionParams, document_id: str, pieces: Sequence[dict[str, Any]]) -> list[dict]:
        now = now_ms()
        chunks = [
            Chunk(
                id=stable_id(document_id, piece["index"], prefix="chk") if params.idempotent else new_id("chk"),
                document_id=document_id,
                text=piece["text"],
                chunk_index=piece["index"],
                metadata=piece["metadata"],
                created_at=now,
            )
            for piece in pieces
        ]
        logger.info("Storing chunks", extra={"ctx_document_id": document_id, "ctx_count": len(chunks)})
        created = self.ctx.store.create_chunks(chunks, replace_document=params.idempotent)
        return [chunk.to_dict() for chunk in created]

    def _embed(self, texts: Sequence[str]) -> list[list[float]]:
        settings = self.ctx.settings
        batch_size = min(settings.embed_batch_size, MAX_EMBED_BATCH_SIZE)
        batches = [list(texts[i : i + batch_size]) for i in range(0, len(texts), batch_size)]
        logger.info("Generating embeddings", extra={"ctx_count": len(texts), "ctx_batches": len(batches)})
        workers = min(settings.embed_concurrency, len(batches))
        if workers <= 1:
            results = [_embed_batch(self.ctx.embedder, batch) for batch in batches]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="embed") as pool:
                futures = [pool.submit(_embed_batch, self.ctx.embedder, batch) for batch in batches]
                try:
                    results = [future.result() for future in futures]
                except Exception:
                    for future in futures:
                        future.cancel()
                    raise
        vectors = [vector for batch_vectors in results for vector in batch_vectors]
        if len(vectors) != len(texts):
            raise ProviderError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors

    def _index(
        self,
        params: IngestionParams,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Sequence[float]],
    ) -> dict[str, int]:
        records = [
            VectorRecord(
                id=chunk.id,
                embedding=list(embeddings[idx]),
                metadata={
                    "document_id": chunk.document_id,
                    "chunk_id": chunk.id,
                    "chunk_index": chunk.chunk_index,
                    "title": params.title,
                },
            )
            for idx, chunk in enumerate(chunks)
        ]
        count = self.ctx.vector_index.upsert(records)
        return {"count": count}


def _embed_batch(embedder: EmbeddingProvider, batch: Sequence[str]) -> list[list[float]]:
    vectors = embedder.embed(batch)
    if len(vectors) != len(batch):
        raise ProviderError(f"Embedding batch of {len(batch)} texts returned {len(vectors)} vectors")
    return [list(vector) for vector in vectors]


__all__ = [
    "STEP_NAMES",
    "IngestionParams",
    "Completed",
    "Failed",
    "WorkflowOutcome",
    "IngestionWorkflow",
    "new_ingestion_params",
]
