"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "GRAG_"
DEFAULT_CONFIG_PATH = Path("~/.config/grounded-rag/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "blob_root"): "blob_root",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "base_url"): "embedding_base_url",
    ("embeddings", "api_key"): "embedding_api_key",
    ("embeddings", "batch_size"): "embed_batch_size",
    ("embeddings", "concurrency"): "embed_concurrency",
    ("embeddings", "cache_enabled"): "embedding_cache_enabled",
    ("embeddings", "cache_ttl_seconds"): "embedding_cache_ttl_seconds",
    ("generation", "backend"): "generation_backend",
    ("generation", "model"): "generation_model",
    ("generation", "base_url"): "generation_base_url",
    ("generation", "api_key"): "generation_api_key",
    ("generation", "max_tokens"): "generation_max_tokens",
    ("chunking", "enabled"): "enable_text_splitting",
    ("chunking", "size"): "default_chunk_size",
    ("chunking", "overlap"): "default_chunk_overlap",
    ("retrieval", "top_k"): "default_top_k",
    ("retrieval", "max_query_length"): "max_query_length",
    ("ingest", "workers"): "ingest_workers",
    ("ingest", "idempotent"): "idempotent_ingestion",
    ("ingest", "step_retries"): "workflow_step_retries",
    ("ingest", "retry_backoff_seconds"): "workflow_retry_backoff_seconds",
    ("logging", "level"): "log_level",
    ("logging", "json"): "log_json",
}

MAX_EMBED_BATCH_SIZE = 10


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".grounded-rag" / "rag.db")
    blob_root: Path = Field(default=Path.home() / ".grounded-rag" / "blobs")

    embedding_backend: Literal["hashed", "http"] = "hashed"
    embedding_model: str = "bge-base-en-v1.5"
    embedding_dim: int = Field(default=384, ge=1)
    embedding_base_url: str = ""
    embedding_api_key: str = ""
    embed_batch_size: int = Field(default=MAX_EMBED_BATCH_SIZE, ge=1, le=MAX_EMBED_BATCH_SIZE)
    embed_concurrency: int = Field(default=1, ge=1)
    embedding_cache_enabled: bool = True
    embedding_cache_ttl_seconds: int = Field(default=7 * 24 * 60 * 60, ge=1)

    generation_backend: Literal["extractive", "http"] = "extractive"
    generation_model: str = "llama-3.1-8b-instruct"
    generation_base_url: str = ""
    generation_api_key: str = ""
    generation_max_tokens: int = Field(default=1024, ge=1)
    provider_timeout_seconds: float | None = None

    enable_text_splitting: bool = True
    default_chunk_size: int = Field(default=500, ge=1)
    default_chunk_overlap: int = Field(default=100, ge=0)
    default_top_k: int = Field(default=3, ge=1, le=20)
    max_query_length: int = Field(default=1000, ge=1)

    ingest_workers: int = Field(default=2, ge=1)
    idempotent_ingestion: bool = False
    workflow_step_retries: int = Field(default=2, ge=0)
    workflow_retry_backoff_seconds: float = Field(default=0.5, ge=0)

    log_level: str = "INFO"
    log_json: bool = True

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "blob_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("path settings must be a path or string")

    @model_validator(mode="after")
    def _check_overlap(self) -> "Settings":
        if self.default_chunk_overlap >= self.default_chunk_size:
            raise ValueError("default_chunk_overlap must be smaller than default_chunk_size")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with GRAG_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings", "MAX_EMBED_BATCH_SIZE"]
