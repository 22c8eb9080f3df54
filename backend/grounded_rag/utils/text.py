"""Text processing helpers."""

from __future__ import annotations

import re

CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]")


def strip_control_chars(text: str) -> str:
    """Drop control characters, keeping tabs and line breaks."""
    return CONTROL_CHARS_RE.sub("", text)


def word_count(text: str) -> int:
    return len(text.split())
