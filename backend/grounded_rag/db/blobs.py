"""Object store for raw submitted documents."""

from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import orjson

from grounded_rag.core.errors import StoreError
from grounded_rag.core.logging import get_logger

logger = get_logger(__name__)


class BlobStore(ABC):
    """Key/value object storage for JSON documents."""

    @abstractmethod
    def put_json(self, key: str, payload: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def get_json(self, key: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...


class FileBlobStore(BlobStore):
    """Store blobs as files below ``root``; writes are atomic renames."""

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser()

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes store root: {key!r}")
        return path

    def put_json(self, key: str, payload: dict[str, Any]) -> None:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
            with os.fdopen(fd, "wb") as fh:
                fh.write(orjson.dumps(payload))
            os.replace(tmp_name, path)
        except OSError as exc:
            raise StoreError(f"Failed to write blob {key}: {exc}") from exc
        logger.debug("Stored blob %s", key)

    def get_json(self, key: str) -> dict[str, Any] | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        return orjson.loads(path.read_bytes())

    def exists(self, key: str) -> bool:
        return self._path_for(key).exists()


class MemoryBlobStore(BlobStore):
    """Dictionary-backed blob store."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    def put_json(self, key: str, payload: dict[str, Any]) -> None:
        self._blobs[key] = orjson.dumps(payload)

    def get_json(self, key: str) -> dict[str, Any] | None:
        data = self._blobs.get(key)
        return orjson.loads(data) if data is not None else None

    def exists(self, key: str) -> bool:
        return key in self._blobs


def raw_document_key(digest: str) -> str:
    """Content-addressed key for a raw document."""
    return f"raw/{digest}.json"


__all__ = ["BlobStore", "FileBlobStore", "MemoryBlobStore", "raw_document_key"]
