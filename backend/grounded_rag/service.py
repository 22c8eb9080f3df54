"""Service facade exposing ingestion and question answering."""

from __future__ import annotations

from typing import Any, Mapping

from grounded_rag.core.config import Settings
from grounded_rag.core.context import PipelineContext, build_context
from grounded_rag.ingest.service import IngestionService
from grounded_rag.models.dto import IngestionStatus, QueryResponse, SubmissionReceipt
from grounded_rag.models.validation import build_query_request
from grounded_rag.retrieval.pipeline import QueryPipeline


class RagService:
    """Entry point for whatever routing layer embeds this package."""

    def __init__(self, ctx: PipelineContext, ingestion: IngestionService | None = None) -> None:
        self.ctx = ctx
        self.ingestion = ingestion or IngestionService(ctx)
        self.pipeline = QueryPipeline(ctx)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RagService":
        return cls(build_context(settings))

    def submit_ingestion(
        self,
        title: str,
        text: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> SubmissionReceipt:
        return self.ingestion.submit_ingestion(title, text, metadata)

    def get_ingestion_status(self, workflow_id: str) -> IngestionStatus:
        return self.ingestion.get_ingestion_status(workflow_id)

    def answer_question(
        self,
        question: str,
        top_k: int | None = None,
        min_similarity: float | None = None,
    ) -> QueryResponse:
        """Validate parameters, then run the query pipeline.

        Range checks happen before any provider call; errors from the
        pipeline propagate unchanged.
        """
        request = build_query_request(
            question,
            top_k if top_k is not None else self.ctx.settings.default_top_k,
            min_similarity,
        )
        return self.pipeline.answer(request)

    def close(self) -> None:
        self.ingestion.shutdown(wait=True)
        self.ctx.close()


__all__ = ["RagService"]
