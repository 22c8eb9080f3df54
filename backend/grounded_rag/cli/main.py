"""CLI entrypoint for Grounded RAG."""

from __future__ import annotations

import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

import orjson
import typer

from grounded_rag.core.config import get_settings
from grounded_rag.core.errors import RagError
from grounded_rag.core.logging import configure_logging
from grounded_rag.core.metrics import render_metrics
from grounded_rag.service import RagService

app = typer.Typer(name="grag", help="Grounded RAG command-line interface")


def _service() -> RagService:
    settings = get_settings()
    configure_logging(settings.log_level, use_json=settings.log_json, stream=sys.stderr)
    return RagService.from_settings(settings)


def _echo(payload: Any) -> None:
    typer.echo(orjson.dumps(payload, option=orjson.OPT_INDENT_2, default=str).decode("utf-8"))


def _fail(exc: Exception) -> None:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


@app.command()
def ingest(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Text file to ingest"),
    title: Optional[str] = typer.Option(None, "--title", help="Document title (defaults to file name)"),
    metadata_json: Optional[str] = typer.Option(None, "--metadata-json", help="Metadata as a JSON object"),
    wait: bool = typer.Option(False, "--wait", help="Run the workflow in the foreground"),
) -> None:
    """Submit a document for ingestion."""
    service = _service()
    try:
        metadata = orjson.loads(metadata_json) if metadata_json else {}
        text = file.read_text(encoding="utf-8")
        doc_title = title or file.stem
        if wait:
            receipt, outcome = service.ingestion.run(doc_title, text, metadata)
            _echo({**receipt.model_dump(), "result": asdict(outcome)})
        else:
            _echo(service.submit_ingestion(doc_title, text, metadata).model_dump())
    except (RagError, orjson.JSONDecodeError, OSError) as exc:
        _fail(exc)
    finally:
        service.close()


@app.command()
def status(workflow_id: str = typer.Argument(..., help="Workflow identifier")) -> None:
    """Show the status of an ingestion workflow."""
    service = _service()
    try:
        _echo(service.get_ingestion_status(workflow_id).model_dump())
    except RagError as exc:
        _fail(exc)
    finally:
        service.close()


@app.command()
def resume(workflow_id: str = typer.Argument(..., help="Workflow identifier")) -> None:
    """Resume a workflow that did not complete and wait for it."""
    service = _service()
    try:
        service.ingestion.resume(workflow_id)
        _echo(service.ingestion.wait(workflow_id).model_dump())
    except RagError as exc:
        _fail(exc)
    finally:
        service.close()


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question to answer"),
    top_k: Optional[int] = typer.Option(None, "--top-k", help="Number of chunks to retrieve (1-20)"),
    min_similarity: Optional[float] = typer.Option(None, "--min-similarity", help="Similarity floor (0-1)"),
) -> None:
    """Answer a question from the ingested documents."""
    service = _service()
    try:
        _echo(service.answer_question(question, top_k=top_k, min_similarity=min_similarity).model_dump())
    except RagError as exc:
        _fail(exc)
    finally:
        service.close()


@app.command()
def metrics() -> None:
    """Print Prometheus metrics for this process."""
    payload, _ = render_metrics()
    typer.echo(payload.decode("utf-8"))


if __name__ == "__main__":
    app()
