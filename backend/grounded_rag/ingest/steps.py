"""Checkpointed step execution with an explicit, inspectable step log."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Protocol, TypeVar

import orjson

from grounded_rag.core.logging import get_logger
from grounded_rag.core.metrics import WORKFLOW_STEPS
from grounded_rag.db.sqlite import SQLiteDatabase
from grounded_rag.utils.time import now_ms

logger = get_logger(__name__)

T = TypeVar("T")


class StepStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class StepResult:
    name: str
    position: int
    status: StepStatus = StepStatus.PENDING
    output: Any = None
    error: str | None = None
    attempts: int = 0


class StepLog(Protocol):
    def load(self, workflow_id: str) -> dict[str, StepResult]:
        ...

    def record(self, workflow_id: str, result: StepResult) -> None:
        ...


class MemoryStepLog:
    """Step log kept in a dictionary; survives only as long as the object."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, StepResult]] = {}
        self._lock = threading.Lock()

    def load(self, workflow_id: str) -> dict[str, StepResult]:
        with self._lock:
            return dict(self._entries.get(workflow_id, {}))

    def record(self, workflow_id: str, result: StepResult) -> None:
        with self._lock:
            self._entries.setdefault(workflow_id, {})[result.name] = result


class SQLiteStepLog:
    """Step log persisted in the ``workflow_steps`` table."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def load(self, workflow_id: str) -> dict[str, StepResult]:
        rows = self.db.query(
            "SELECT * FROM workflow_steps WHERE workflow_id = ? ORDER BY position ASC",
            [workflow_id],
        )
        return {
            row["name"]: StepResult(
                name=row["name"],
                position=row["position"],
                status=StepStatus(row["status"]),
                output=orjson.loads(row["output"]) if row["output"] is not None else None,
                error=row["error"],
                attempts=row["attempts"],
            )
            for row in rows
        }

    def record(self, workflow_id: str, result: StepResult) -> None:
        output = orjson.dumps(result.output).decode("utf-8") if result.status is StepStatus.DONE else None
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT OR REPLACE INTO workflow_steps
                  (workflow_id, name, position, status, output, error, attempts, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    workflow_id,
                    result.name,
                    result.position,
                    result.status.value,
                    output,
                    result.error,
                    result.attempts,
                    now_ms(),
                ],
            )


class StepRunner:
    """Run named steps at most once to completion per workflow.

    A step already ``done`` in the log returns its recorded output without
    running again. Otherwise it runs from scratch, and a raising step is
    retried up to ``retries`` more times before it is recorded ``failed``
    and the exception propagates. Outputs must be JSON serialisable; the
    value returned is always the JSON round-tripped output so fresh runs
    and replays look the same to the caller.
    """

    def __init__(
        self,
        workflow_id: str,
        step_log: StepLog,
        retries: int = 0,
        backoff_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.workflow_id = workflow_id
        self.step_log = step_log
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._position = 0
        self._recorded = step_log.load(workflow_id)

    @property
    def steps(self) -> list[StepResult]:
        return sorted(self._recorded.values(), key=lambda result: result.position)

    def step(self, name: str, fn: Callable[[], T]) -> Any:
        position = self._position
        self._position += 1
        previous = self._recorded.get(name)
        if previous is not None and previous.status is StepStatus.DONE:
            logger.info("Replaying recorded step", extra={"ctx_workflow_id": self.workflow_id, "ctx_step": name})
            WORKFLOW_STEPS.labels(step=name, status="replayed").inc()
            return previous.output

        attempts = previous.attempts if previous is not None else 0
        result = StepResult(name=name, position=position, attempts=attempts)
        max_attempts = self.retries + 1
        for attempt in range(max_attempts):
            attempts += 1
            try:
                output = orjson.loads(orjson.dumps(fn()))
            except Exception as exc:
                result = replace(result, status=StepStatus.PENDING, error=str(exc), attempts=attempts)
                if attempt + 1 >= max_attempts:
                    result = replace(result, status=StepStatus.FAILED)
                    self._save(result)
                    WORKFLOW_STEPS.labels(step=name, status="failed").inc()
                    raise
                self._save(result)
                delay = self.backoff_seconds * (2**attempt)
                logger.warning(
                    "Step failed, retrying",
                    extra={
                        "ctx_workflow_id": self.workflow_id,
                        "ctx_step": name,
                        "ctx_attempt": attempts,
                        "ctx_error": str(exc),
                        "ctx_delay_s": delay,
                    },
                )
                if delay > 0:
                    self._sleep(delay)
                continue
            result = replace(result, status=StepStatus.DONE, output=output, error=None, attempts=attempts)
            self._save(result)
            WORKFLOW_STEPS.labels(step=name, status="done").inc()
            return output
        raise AssertionError("unreachable")  # pragma: no cover

    def _save(self, result: StepResult) -> None:
        self._recorded[result.name] = result
        self.step_log.record(self.workflow_id, result)


__all__ = ["StepStatus", "StepResult", "StepLog", "MemoryStepLog", "SQLiteStepLog", "StepRunner"]
