"""Hashing utilities."""

from __future__ import annotations

import base64
import hashlib


def content_digest(title: str, text: str) -> str:
    """Stable digest identifying a (title, text) submission."""
    h = hashlib.sha256()
    h.update(title.encode("utf-8"))
    h.update(b"\x00")
    h.update(text.encode("utf-8"))
    return h.hexdigest()


def urlsafe_digest(text: str) -> str:
    """SHA-256 of ``text`` as unpadded base64url."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
