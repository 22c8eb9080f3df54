"""Relational store for document metadata and chunk text."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Sequence

import orjson

from grounded_rag.core.errors import StoreError
from grounded_rag.core.logging import get_logger
from grounded_rag.db.sqlite import SQLiteDatabase
from grounded_rag.models.entities import Chunk, ChunkWithDocument, DocumentMetadata
from grounded_rag.utils.time import now_ms

logger = get_logger(__name__)

MAX_IDS = 1000


class DocumentStore:
    """Persist documents and their ordered chunks in SQLite."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def ensure_schema(self) -> None:
        self.db.ensure_schema()
        fts_sql = Path(__file__).with_name("fts.sql").read_text(encoding="utf-8")
        try:
            self.db.executescript(fts_sql)
        except sqlite3.OperationalError as exc:
            logger.warning("Keyword search table unavailable: %s", exc)

    # Documents --------------------------------------------------------

    def create_document(
        self,
        document_id: str,
        source_document_id: str,
        title: str,
        metadata: dict,
        upsert: bool = False,
    ) -> DocumentMetadata:
        """Insert document metadata.

        With ``upsert`` a row already holding ``source_document_id`` is
        updated in place instead of raising a uniqueness error.
        """
        now = now_ms()
        meta_json = orjson.dumps(metadata).decode("utf-8")
        sql = """
            INSERT INTO documents (id, article_id, title, metadata, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """
        if upsert:
            sql += """
            ON CONFLICT(article_id) DO UPDATE SET
              title = excluded.title,
              metadata = excluded.metadata,
              updated_at = excluded.updated_at
            """
        try:
            with self.db.transaction() as cursor:
                cursor.execute(sql, [document_id, source_document_id, title, meta_json, now, now])
        except sqlite3.Error as exc:
            logger.error("Failed to create document metadata", extra={"ctx_document_id": document_id})
            raise StoreError(f"Failed to create document {document_id}: {exc}") from exc
        stored = self.get_document_by_source(source_document_id) if upsert else None
        if stored is not None:
            return stored
        return DocumentMetadata(
            id=document_id,
            source_document_id=source_document_id,
            title=title,
            metadata=dict(metadata),
            created_at=now,
            updated_at=now,
        )

    def get_document(self, document_id: str) -> DocumentMetadata | None:
        row = self.db.query_one("SELECT * FROM documents WHERE id = ?", [document_id])
        return _row_to_document(row) if row else None

    def get_document_by_source(self, source_document_id: str) -> DocumentMetadata | None:
        row = self.db.query_one("SELECT * FROM documents WHERE article_id = ?", [source_document_id])
        return _row_to_document(row) if row else None

    def count_documents(self) -> int:
        row = self.db.query_one("SELECT COUNT(*) AS count FROM documents")
        return int(row["count"]) if row else 0

    # Chunks -----------------------------------------------------------

    def create_chunks(self, chunks: Sequence[Chunk], replace_document: bool = False) -> list[Chunk]:
        """Insert ``chunks`` as one batch, retrying the whole batch once on failure.

        ``replace_document`` first removes any chunks already stored for the
        batch's document so a re-ingested document keeps contiguous indices.
        """
        if not chunks:
            return []
        rows = [
            (
                chunk.id,
                chunk.document_id,
                chunk.text,
                chunk.chunk_index,
                orjson.dumps(chunk.metadata).decode("utf-8"),
                chunk.created_at,
            )
            for chunk in chunks
        ]
        document_ids = sorted({chunk.document_id for chunk in chunks}) if replace_document else []
        try:
            self._insert_chunk_batch(rows, document_ids)
        except sqlite3.Error as exc:
            logger.warning("Batch insert failed, retrying once", extra={"ctx_error": str(exc), "ctx_count": len(rows)})
            try:
                self._insert_chunk_batch(rows, document_ids)
            except sqlite3.Error as retry_exc:
                logger.error("Failed to create chunks", extra={"ctx_count": len(rows)})
                raise StoreError(f"Failed to create {len(rows)} chunks: {retry_exc}") from retry_exc
        return list(chunks)

    def _insert_chunk_batch(self, rows: Sequence[tuple], replace_document_ids: Sequence[str]) -> None:
        with self.db.transaction() as cursor:
            for document_id in replace_document_ids:
                cursor.execute("DELETE FROM chunks WHERE document_id = ?", [document_id])
            cursor.executemany(
                """
                INSERT INTO chunks (id, document_id, text, chunk_index, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

    def get_chunks_by_ids(self, chunk_ids: Sequence[str]) -> list[ChunkWithDocument]:
        """Fetch chunks joined to their documents, ordered by chunk index.

        Ids that no longer resolve are skipped, so fewer rows than ids may
        come back.
        """
        if not chunk_ids:
            return []
        ids = list(dict.fromkeys(chunk_ids))
        if len(ids) > MAX_IDS:
            logger.warning("Chunk ids exceed maximum", extra={"ctx_requested": len(ids), "ctx_max": MAX_IDS})
            ids = ids[:MAX_IDS]
        placeholders = ",".join("?" for _ in ids)
        rows = self.db.query(
            f"""
            SELECT
              c.id,
              c.document_id,
              c.text,
              c.chunk_index,
              c.metadata AS chunk_metadata,
              c.created_at,
              d.title,
              d.article_id,
              d.metadata AS document_metadata
            FROM chunks c
            JOIN documents d ON c.document_id = d.id
            WHERE c.id IN ({placeholders})
            ORDER BY c.chunk_index ASC, c.document_id ASC
            """,
            ids,
        )
        return [
            ChunkWithDocument(
                id=row["id"],
                document_id=row["document_id"],
                text=row["text"],
                chunk_index=row["chunk_index"],
                metadata=orjson.loads(row["chunk_metadata"]) if row["chunk_metadata"] else {},
                created_at=row["created_at"],
                title=row["title"],
                source_document_id=row["article_id"],
                document_metadata=orjson.loads(row["document_metadata"]) if row["document_metadata"] else {},
            )
            for row in rows
        ]

    def list_chunks(self, document_id: str) -> list[Chunk]:
        rows = self.db.query(
            "SELECT * FROM chunks WHERE document_id = ? ORDER BY chunk_index ASC",
            [document_id],
        )
        return [
            Chunk(
                id=row["id"],
                document_id=row["document_id"],
                text=row["text"],
                chunk_index=row["chunk_index"],
                metadata=orjson.loads(row["metadata"]) if row["metadata"] else {},
                created_at=row["created_at"],
            )
            for row in rows
        ]


def _row_to_document(row: sqlite3.Row) -> DocumentMetadata:
    return DocumentMetadata(
        id=row["id"],
        source_document_id=row["article_id"],
        title=row["title"],
        metadata=orjson.loads(row["metadata"]) if row["metadata"] else {},
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


__all__ = ["DocumentStore", "MAX_IDS"]
