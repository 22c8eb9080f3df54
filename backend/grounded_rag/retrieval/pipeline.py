"""Question answering over the indexed corpus."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Sequence

from grounded_rag.core.errors import ProviderError, ValidationError
from grounded_rag.core.logging import get_logger
from grounded_rag.core.metrics import QUERY_COUNT, QUERY_LATENCY
from grounded_rag.generation.prompts import (
    INSUFFICIENT_INFORMATION_ANSWER,
    UNABLE_TO_GENERATE_ANSWER,
    build_context,
    build_system_prompt,
)
from grounded_rag.models.dto import DocumentSource, QueryMetadata, QueryRequest, QueryResponse
from grounded_rag.models.entities import ChunkWithDocument, VectorMatch
from grounded_rag.utils.text import strip_control_chars
from grounded_rag.utils.time import elapsed_ms

if TYPE_CHECKING:
    from grounded_rag.core.context import PipelineContext

logger = get_logger(__name__)


class QueryPipeline:
    """Embed, retrieve, assemble context and generate a cited answer.

    Steps run strictly in sequence and nothing is retried: any provider or
    store error propagates to the caller and no partial response is built.
    """

    def __init__(self, ctx: "PipelineContext") -> None:
        self.ctx = ctx

    def answer(self, request: QueryRequest) -> QueryResponse:
        started = time.perf_counter()
        question = self._prepare_question(request.question)
        step_latency: dict[str, int] = {}
        log_extra = {"ctx_top_k": request.top_k, "ctx_min_similarity": request.min_similarity}
        logger.info("Answering question", extra={**log_extra, "ctx_question_length": len(question)})

        try:
            step_started = time.perf_counter()
            embedding, cache_hit = self._embed_question(question)
            step_latency["embedding"] = self._observe("embedding", step_started)

            step_started = time.perf_counter()
            matches = self.ctx.vector_index.query(embedding, top_k=request.top_k, with_metadata=True)
            matches = _filter_matches(matches, request.min_similarity)
            step_latency["retrieval"] = self._observe("retrieval", step_started)

            if not matches:
                logger.info("No chunks matched, skipping generation", extra=log_extra)
                QUERY_COUNT.labels(outcome="no_context").inc()
                return self._response(request.question, INSUFFICIENT_INFORMATION_ANSWER, [], started, step_latency, cache_hit)

            step_started = time.perf_counter()
            chunks = self.ctx.store.get_chunks_by_ids([match.chunk_id for match in matches])
            step_latency["fetch"] = self._observe("fetch", step_started)

            step_started = time.perf_counter()
            answer = self._generate(question, chunks)
            step_latency["generation"] = self._observe("generation", step_started)
        except Exception:
            QUERY_COUNT.labels(outcome="error").inc()
            raise

        similarity = {match.chunk_id: match.score for match in matches}
        sources = [
            DocumentSource(
                document_id=chunk.document_id,
                chunk_id=chunk.id,
                title=chunk.title,
                chunk_text=chunk.text,
                chunk_index=chunk.chunk_index,
                similarity=similarity.get(chunk.id, 0.0),
            )
            for chunk in chunks
        ]
        QUERY_COUNT.labels(outcome="answered").inc()
        response = self._response(request.question, answer, sources, started, step_latency, cache_hit)
        logger.info(
            "Question answered",
            extra={
                **log_extra,
                "ctx_sources": len(sources),
                "ctx_latency_ms": response.metadata.latency_ms,
                "ctx_cache_hit": cache_hit,
            },
        )
        return response

    def _prepare_question(self, question: str) -> str:
        if len(question) > self.ctx.settings.max_query_length:
            raise ValidationError(
                "QUESTION_TOO_LONG",
                f"Question must be {self.ctx.settings.max_query_length} characters or less",
                field="question",
            )
        cleaned = strip_control_chars(question).strip()
        if not cleaned:
            raise ValidationError("MISSING_QUESTION", "Question is required", field="question")
        return cleaned

    def _embed_question(self, question: str) -> tuple[list[float], bool]:
        cached = self.ctx.embedding_cache.lookup(question)
        if cached is not None:
            return cached, True
        vectors = self.ctx.embedder.embed([question])
        if not vectors:
            raise ProviderError("Embedding provider returned no vector for the question")
        embedding = list(vectors[0])
        self.ctx.embedding_cache.store(question, embedding)
        return embedding, False

    def _generate(self, question: str, chunks: Sequence[ChunkWithDocument]) -> str:
        system_prompt = build_system_prompt(build_context(chunks))
        generation = self.ctx.generator.generate(
            system=system_prompt,
            user=question,
            temperature=0.0,
            max_tokens=self.ctx.settings.generation_max_tokens,
        )
        text = (generation.text or "").strip()
        if not text:
            logger.warning("Generation returned no text", extra={"ctx_model": generation.model})
            return UNABLE_TO_GENERATE_ANSWER
        return text

    @staticmethod
    def _observe(step: str, step_started: float) -> int:
        QUERY_LATENCY.labels(step=step).observe(time.perf_counter() - step_started)
        return elapsed_ms(step_started)

    @staticmethod
    def _response(
        question: str,
        answer: str,
        sources: list[DocumentSource],
        started: float,
        step_latency: dict[str, int],
        cache_hit: bool,
    ) -> QueryResponse:
        QUERY_LATENCY.labels(step="total").observe(time.perf_counter() - started)
        return QueryResponse(
            question=question,
            answer=answer,
            sources=sources,
            metadata=QueryMetadata(
                latency_ms=elapsed_ms(started),
                retrieved_chunks=len(sources),
                step_latency_ms=step_latency,
                cache_hit=cache_hit,
            ),
        )


def _filter_matches(matches: Sequence[VectorMatch], min_similarity: float | None) -> list[VectorMatch]:
    if min_similarity is None:
        return list(matches)
    return [match for match in matches if match.score >= min_similarity]


__all__ = ["QueryPipeline"]
