"""Dependency bundle handed to every pipeline run."""

from __future__ import annotations

from dataclasses import dataclass

from grounded_rag.core.config import Settings
from grounded_rag.db.blobs import BlobStore, FileBlobStore
from grounded_rag.db.sqlite import SQLiteDatabase
from grounded_rag.db.store import DocumentStore
from grounded_rag.generation.providers import GenerationProvider, build_generation_provider
from grounded_rag.ingest.embeddings import EmbeddingProvider, build_embedding_provider
from grounded_rag.retrieval.cache import QueryEmbeddingCache, SQLiteEmbeddingCache
from grounded_rag.retrieval.vector_index import LocalVectorIndex, VectorIndex


@dataclass(slots=True)
class PipelineContext:
    settings: Settings
    db: SQLiteDatabase
    store: DocumentStore
    blobs: BlobStore
    vector_index: VectorIndex
    embedder: EmbeddingProvider
    generator: GenerationProvider
    embedding_cache: QueryEmbeddingCache

    def close(self) -> None:
        self.db.close()


def build_context(settings: Settings) -> PipelineContext:
    """Wire the SQLite-backed store, index and cache with configured providers."""
    db = SQLiteDatabase(settings.db_path)
    store = DocumentStore(db)
    store.ensure_schema()
    embedder = build_embedding_provider(settings)
    index = LocalVectorIndex(dim=embedder.dim, db=db)
    index.rebuild()
    cache_backend = SQLiteEmbeddingCache(db) if settings.embedding_cache_enabled else None
    return PipelineContext(
        settings=settings,
        db=db,
        store=store,
        blobs=FileBlobStore(settings.blob_root),
        vector_index=index,
        embedder=embedder,
        generator=build_generation_provider(settings),
        embedding_cache=QueryEmbeddingCache(cache_backend, ttl_seconds=settings.embedding_cache_ttl_seconds),
    )


__all__ = ["PipelineContext", "build_context"]
