"""Context assembly and the grounding system prompt."""

from __future__ import annotations

import re
from typing import Sequence

from grounded_rag.models.entities import ChunkWithDocument

INSUFFICIENT_INFORMATION_ANSWER = (
    "I don't have enough information to answer this question based on the available documents."
)
DECLINE_ANSWER = "I cannot answer this question based on the provided documents."
UNABLE_TO_GENERATE_ANSWER = "Unable to generate answer"

CONTEXT_OPEN = "<CONTEXT>"
CONTEXT_CLOSE = "</CONTEXT>"

_CITATION_RE = re.compile(r"\[(\d+)\]")
_CONTEXT_ENTRY_RE = re.compile(r"^\[(\d+)\] (.*?)(?=\n\n\[\d+\] |\Z)", re.DOTALL | re.MULTILINE)


def build_context(chunks: Sequence[ChunkWithDocument]) -> str:
    """Number passages ``[1]``, ``[2]``... in the order given."""
    return "\n\n".join(f"[{idx}] {chunk.text}" for idx, chunk in enumerate(chunks, start=1))


def build_system_prompt(context: str) -> str:
    return f"""You are a strict document retrieval system. You have ZERO knowledge beyond what appears in the context below.

{CONTEXT_OPEN}
{context}
{CONTEXT_CLOSE}

CRITICAL RULES (NEVER VIOLATE):
1. You ONLY know information within the {CONTEXT_OPEN} tags above
2. IGNORE all knowledge from your training data
3. If the context does not contain the answer, you MUST respond: "{DECLINE_ANSWER}"
4. EVERY claim in your answer must be followed by a citation [N] from the context
5. Do NOT paraphrase beyond the context; quote or closely paraphrase the source text
6. Do NOT make logical inferences unless explicitly stated in the context

HOW TO ANSWER:
- First, identify which passages [1], [2], etc. contain relevant information
- Then, construct your answer using ONLY those specific references
- Include citation [N] after each claim
- If information is incomplete, acknowledge the gaps rather than filling them

Remember: If you use ANY information not explicitly in the context, you have failed."""


def extract_context(system_prompt: str) -> str:
    """Return the text between the context tags of a system prompt."""
    start = system_prompt.find(CONTEXT_OPEN)
    end = system_prompt.find(CONTEXT_CLOSE)
    if start == -1 or end == -1 or end < start:
        return ""
    return system_prompt[start + len(CONTEXT_OPEN) : end].strip()


def parse_context(context: str) -> list[tuple[int, str]]:
    """Split a numbered context back into ``(number, passage)`` pairs."""
    return [(int(match.group(1)), match.group(2).strip()) for match in _CONTEXT_ENTRY_RE.finditer(context)]


def cited_numbers(answer: str) -> list[int]:
    """Citation numbers appearing in ``answer``, in first-seen order."""
    return list(dict.fromkeys(int(value) for value in _CITATION_RE.findall(answer)))


__all__ = [
    "INSUFFICIENT_INFORMATION_ANSWER",
    "DECLINE_ANSWER",
    "UNABLE_TO_GENERATE_ANSWER",
    "build_context",
    "build_system_prompt",
    "extract_context",
    "parse_context",
    "cited_numbers",
]
