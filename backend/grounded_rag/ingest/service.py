"""Submission, background execution and status of ingestion workflows."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict
from typing import TYPE_CHECKING, Any, Mapping

import orjson

from grounded_rag.core.errors import WorkflowNotFoundError
from grounded_rag.core.logging import get_logger
from grounded_rag.ingest.steps import SQLiteStepLog
from grounded_rag.ingest.workflow import (
    STEP_NAMES,
    Completed,
    IngestionParams,
    IngestionWorkflow,
    WorkflowOutcome,
    new_ingestion_params,
)
from grounded_rag.models.dto import IngestionStatus, StepState, SubmissionReceipt
from grounded_rag.models.validation import build_ingestion_request, validate_chunking
from grounded_rag.utils.time import now_ms

if TYPE_CHECKING:
    from grounded_rag.core.context import PipelineContext

logger = get_logger(__name__)


class IngestionService:
    """Fire-and-forget ingestion; status is polled by workflow id."""

    def __init__(self, ctx: "PipelineContext", executor: ThreadPoolExecutor | None = None) -> None:
        self.ctx = ctx
        self.step_log = SQLiteStepLog(ctx.db)
        self._executor = executor or ThreadPoolExecutor(
            max_workers=ctx.settings.ingest_workers,
            thread_name_prefix="ingest",
        )
        self._futures: dict[str, Future[WorkflowOutcome]] = {}
        self._lock = threading.Lock()

    def submit_ingestion(
        self,
        title: str,
        text: str,
        metadata: Mapping[str, Any] | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> SubmissionReceipt:
        params = self._prepare(title, text, metadata, chunk_size, chunk_overlap)
        self._schedule(params)
        logger.info("Ingestion workflow started", extra={"ctx_workflow_id": params.workflow_id})
        return SubmissionReceipt(workflow_id=params.workflow_id, document_id=params.document_id)

    def run(
        self,
        title: str,
        text: str,
        metadata: Mapping[str, Any] | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> tuple[SubmissionReceipt, WorkflowOutcome]:
        """Submit and execute on the calling thread."""
        params = self._prepare(title, text, metadata, chunk_size, chunk_overlap)
        outcome = self._execute(params)
        return SubmissionReceipt(workflow_id=params.workflow_id, document_id=params.document_id), outcome

    def get_ingestion_status(self, workflow_id: str) -> IngestionStatus:
        row = self.ctx.db.query_one("SELECT * FROM workflows WHERE id = ?", [workflow_id])
        if row is None:
            raise WorkflowNotFoundError(workflow_id)
        recorded = self.step_log.load(workflow_id)
        steps = [
            StepState(
                name=name,
                status=recorded[name].status.value if name in recorded else "pending",
                attempts=recorded[name].attempts if name in recorded else 0,
                error=recorded[name].error if name in recorded else None,
            )
            for name in STEP_NAMES
        ]
        output: dict[str, Any] | None = orjson.loads(row["output"]) if row["output"] else None
        return IngestionStatus(workflow_id=workflow_id, status=row["status"], output=output, steps=steps)

    def resume(self, workflow_id: str) -> SubmissionReceipt:
        """Re-run a workflow that did not complete; recorded steps are replayed.

        A workflow still running in this process is left alone, and the row
        is claimed with a compare-and-set on its status so at most one run
        is scheduled.
        """
        row = self.ctx.db.query_one("SELECT status, params FROM workflows WHERE id = ?", [workflow_id])
        if row is None:
            raise WorkflowNotFoundError(workflow_id)
        params = IngestionParams.from_dict(orjson.loads(row["params"]))
        receipt = SubmissionReceipt(workflow_id=params.workflow_id, document_id=params.document_id)
        if row["status"] == "completed":
            return receipt
        with self._lock:
            future = self._futures.get(workflow_id)
            if future is not None and not future.done():
                logger.info("Ingestion workflow already in flight", extra={"ctx_workflow_id": workflow_id})
                return receipt
            with self.ctx.db.transaction() as cursor:
                cursor.execute(
                    "UPDATE workflows SET status = 'running', updated_at = ? WHERE id = ? AND status = ?",
                    [now_ms(), workflow_id, row["status"]],
                )
                claimed = cursor.rowcount == 1
            if not claimed:
                return receipt
            self._futures[workflow_id] = self._executor.submit(self._execute, params)
        logger.info("Ingestion workflow resumed", extra={"ctx_workflow_id": workflow_id})
        return receipt

    def wait(self, workflow_id: str, timeout: float | None = None) -> IngestionStatus:
        with self._lock:
            future = self._futures.get(workflow_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.get_ingestion_status(workflow_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # Internal helpers -------------------------------------------------

    def _prepare(
        self,
        title: str,
        text: str,
        metadata: Mapping[str, Any] | None,
        chunk_size: int | None,
        chunk_overlap: int | None,
    ) -> IngestionParams:
        request = build_ingestion_request(title, text, metadata)
        settings = self.ctx.settings
        chunk_size, chunk_overlap = validate_chunking(
            chunk_size,
            chunk_overlap,
            settings.default_chunk_size,
            settings.default_chunk_overlap,
        )
        params = new_ingestion_params(
            request.title,
            request.text,
            request.metadata,
            idempotent=settings.idempotent_ingestion,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
        )
        now = now_ms()
        with self.ctx.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO workflows (id, document_id, status, params, output, error, created_at, updated_at)
                VALUES (?, ?, ?, ?, NULL, NULL, ?, ?)
                """,
                [
                    params.workflow_id,
                    params.document_id,
                    "running",
                    orjson.dumps(params.to_dict()).decode("utf-8"),
                    now,
                    now,
                ],
            )
        return params

    def _schedule(self, params: IngestionParams) -> None:
        with self._lock:
            self._futures[params.workflow_id] = self._executor.submit(self._execute, params)

    def _execute(self, params: IngestionParams) -> WorkflowOutcome:
        workflow = IngestionWorkflow(self.ctx, self.step_log)
        outcome = workflow.run(params)
        status = "completed" if isinstance(outcome, Completed) else "failed"
        error = None if isinstance(outcome, Completed) else outcome.error
        self._set_status(params.workflow_id, status, output=asdict(outcome), error=error)
        return outcome

    def _set_status(
        self,
        workflow_id: str,
        status: str,
        output: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        with self.ctx.db.transaction() as cursor:
            cursor.execute(
                "UPDATE workflows SET status = ?, output = ?, error = ?, updated_at = ? WHERE id = ?",
                [
                    status,
                    orjson.dumps(output).decode("utf-8") if output is not None else None,
                    error,
                    now_ms(),
                    workflow_id,
                ],
            )


__all__ = ["IngestionService"]
