"""Retrieval components."""

from .vector_index import LocalVectorIndex, VectorIndex
from .cache import MemoryEmbeddingCache, QueryEmbeddingCache, SQLiteEmbeddingCache
from .pipeline import QueryPipeline

__all__ = [
    "VectorIndex",
    "LocalVectorIndex",
    "QueryEmbeddingCache",
    "SQLiteEmbeddingCache",
    "MemoryEmbeddingCache",
    "QueryPipeline",
]
