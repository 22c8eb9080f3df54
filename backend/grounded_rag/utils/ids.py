"""ID helpers."""

from __future__ import annotations

import uuid

_NAMESPACE = uuid.UUID("5b0f3a4e-3c1d-4f63-9a57-6f1d2c8e9b10")


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def stable_id(*parts: object, prefix: str | None = None) -> str:
    """Derive a UUID5 string from ``parts`` so equal inputs share an id."""
    name = "\x1f".join(str(part) for part in parts)
    base = uuid.uuid5(_NAMESPACE, name).hex
    return f"{prefix}_{base}" if prefix else base
