"""Test fixtures for Grounded RAG."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from grounded_rag.core.config import Settings, get_settings  # noqa: E402
from grounded_rag.core.context import PipelineContext  # noqa: E402
from grounded_rag.db.blobs import MemoryBlobStore  # noqa: E402
from grounded_rag.db.sqlite import SQLiteDatabase  # noqa: E402
from grounded_rag.db.store import DocumentStore  # noqa: E402
from grounded_rag.generation.providers import Generation, GenerationProvider  # noqa: E402
from grounded_rag.ingest.embeddings import EmbeddingProvider, HashedEmbeddingProvider  # noqa: E402
from grounded_rag.retrieval.cache import MemoryEmbeddingCache, QueryEmbeddingCache  # noqa: E402
from grounded_rag.retrieval.vector_index import LocalVectorIndex  # noqa: E402

SENTENCE = "Artificial intelligence is the study of intelligent agents. "


class CountingEmbedder(EmbeddingProvider):
    """Hashed embeddings that record every batch it was asked for."""

    def __init__(self, dim: int = 64, fail: Exception | None = None) -> None:
        self.model_name = "counting"
        self._inner = HashedEmbeddingProvider(dim=dim)
        self.fail = fail
        self.batches: list[list[str]] = []

    @property
    def dim(self) -> int:
        return self._inner.dim

    @property
    def calls(self) -> int:
        return len(self.batches)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        if self.fail is not None:
            raise self.fail
        return self._inner.embed(texts)


class ScriptedGenerator(GenerationProvider):
    """Returns a fixed answer and records the prompts it received."""

    def __init__(self, answer: str | None = "The answer is in the documents [1].", fail: Exception | None = None) -> None:
        self.model_name = "scripted"
        self.answer = answer
        self.fail = fail
        self.calls: list[dict] = []

    def generate(self, system: str, user: str, temperature: float = 0.0, max_tokens: int = 1024) -> Generation:
        self.calls.append({"system": system, "user": user, "temperature": temperature, "max_tokens": max_tokens})
        if self.fail is not None:
            raise self.fail
        return Generation(text=self.answer, model=self.model_name)


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment and cached settings between tests."""
    for key in list(os.environ):
        if key.startswith("GRAG_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GRAG_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("GRAG_DB_PATH", str(tmp_path / "rag.db"))
    monkeypatch.setenv("GRAG_BLOB_ROOT", str(tmp_path / "blobs"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "rag.db",
        blob_root=tmp_path / "blobs",
        embedding_dim=64,
        workflow_retry_backoff_seconds=0,
        workflow_step_retries=0,
        ingest_workers=1,
        log_json=False,
    )


@pytest.fixture
def embedder() -> CountingEmbedder:
    return CountingEmbedder(dim=64)


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def ctx(settings: Settings, embedder: CountingEmbedder, generator: ScriptedGenerator) -> PipelineContext:
    db = SQLiteDatabase(settings.db_path)
    store = DocumentStore(db)
    store.ensure_schema()
    context = PipelineContext(
        settings=settings,
        db=db,
        store=store,
        blobs=MemoryBlobStore(),
        vector_index=LocalVectorIndex(dim=embedder.dim, db=db),
        embedder=embedder,
        generator=generator,
        embedding_cache=QueryEmbeddingCache(MemoryEmbeddingCache()),
    )
    yield context
    context.close()


@pytest.fixture(scope="session")
def sample_text() -> str:
    """Three paragraphs that chunk into exactly three pieces at 500/100."""
    paragraph = (SENTENCE * 8).strip()
    return "\n\n".join([paragraph, paragraph.replace("agents", "systems"), paragraph.replace("study", "science")])
