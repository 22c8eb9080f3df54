"""Tests for the document store and blob stores."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from grounded_rag.core.errors import StoreError
from grounded_rag.db.blobs import FileBlobStore, raw_document_key
from grounded_rag.db.store import DocumentStore
from grounded_rag.models.entities import Chunk


def _chunk(chunk_id: str, document_id: str, index: int, text: str = "text") -> Chunk:
    return Chunk(id=chunk_id, document_id=document_id, text=text, chunk_index=index, metadata={}, created_at=0)


@pytest.fixture
def store(ctx) -> DocumentStore:
    return ctx.store


def test_chunks_fetched_in_index_order(store: DocumentStore) -> None:
    store.create_document("doc-1", "src-1", "Doc", {"lang": "en"})
    store.create_chunks([_chunk(f"c{i}", "doc-1", i, f"part {i}") for i in range(4)])

    fetched = store.get_chunks_by_ids(["c3", "c0", "c2", "missing"])
    assert [chunk.chunk_index for chunk in fetched] == [0, 2, 3]
    assert fetched[0].title == "Doc"
    assert fetched[0].source_document_id == "src-1"
    assert fetched[0].document_metadata == {"lang": "en"}


def test_get_chunks_by_ids_empty(store: DocumentStore) -> None:
    assert store.get_chunks_by_ids([]) == []


def test_duplicate_source_without_upsert_fails(store: DocumentStore) -> None:
    store.create_document("doc-1", "src-1", "Doc", {})
    with pytest.raises(StoreError):
        store.create_document("doc-2", "src-1", "Doc", {})


def test_upsert_updates_existing_document(store: DocumentStore) -> None:
    store.create_document("doc-1", "src-1", "Old", {})
    updated = store.create_document("doc-1", "src-1", "New", {"v": 2}, upsert=True)
    assert updated.id == "doc-1"
    assert updated.title == "New"
    assert store.count_documents() == 1


def test_replace_document_chunks(store: DocumentStore) -> None:
    store.create_document("doc-1", "src-1", "Doc", {})
    store.create_chunks([_chunk("a", "doc-1", 0), _chunk("b", "doc-1", 1)])
    store.create_chunks([_chunk("a", "doc-1", 0, "fresh")], replace_document=True)
    chunks = store.list_chunks("doc-1")
    assert [(chunk.id, chunk.text) for chunk in chunks] == [("a", "fresh")]


def test_chunk_batch_retried_once(store: DocumentStore, monkeypatch: pytest.MonkeyPatch) -> None:
    store.create_document("doc-1", "src-1", "Doc", {})
    original = store._insert_chunk_batch
    attempts = []

    def flaky(rows, replace_ids):
        attempts.append(len(rows))
        if len(attempts) == 1:
            raise sqlite3.OperationalError("database is locked")
        return original(rows, replace_ids)

    monkeypatch.setattr(store, "_insert_chunk_batch", flaky)
    store.create_chunks([_chunk("a", "doc-1", 0)])
    assert attempts == [1, 1]
    assert len(store.list_chunks("doc-1")) == 1


def test_chunk_batch_fails_after_retry(store: DocumentStore, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    def broken(rows, replace_ids):
        calls.append(rows)
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "_insert_chunk_batch", broken)
    with pytest.raises(StoreError):
        store.create_chunks([_chunk("a", "doc-1", 0)])
    assert len(calls) == 2


def test_file_blob_store(tmp_path: Path) -> None:
    blobs = FileBlobStore(tmp_path / "blobs")
    key = raw_document_key("abc")
    assert not blobs.exists(key)
    blobs.put_json(key, {"title": "T"})
    assert blobs.exists(key)
    assert blobs.get_json(key) == {"title": "T"}
    with pytest.raises(ValueError):
        blobs.put_json("../escape.json", {})
