"""Exception hierarchy shared by the ingestion and query pipelines."""

from __future__ import annotations


class RagError(Exception):
    """Base class for errors raised by this package."""


class ValidationError(RagError, ValueError):
    """Input rejected before any external call was made."""

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, str | None]:
        return {"code": self.code, "message": self.message, "field": self.field}


class ProviderError(RagError):
    """An embedding, generation or vector index call failed."""


class StoreError(RagError):
    """A relational or object store write failed."""


class WorkflowNotFoundError(RagError, KeyError):
    """No ingestion workflow exists with the requested id."""

    def __str__(self) -> str:
        return f"Workflow {self.args[0]} not found" if self.args else "Workflow not found"


__all__ = [
    "RagError",
    "ValidationError",
    "ProviderError",
    "StoreError",
    "WorkflowNotFoundError",
]
