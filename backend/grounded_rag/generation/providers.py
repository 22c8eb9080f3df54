"""Answer generation providers."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import requests

from grounded_rag.core.config import Settings
from grounded_rag.core.errors import ProviderError
from grounded_rag.generation.prompts import DECLINE_ANSWER, extract_context, parse_context

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w+")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]?")
_STOPWORDS = frozenset(
    "a an and are as at be by for from how in is it of on or that the this to was what when where which who why with".split()
)


@dataclass(slots=True)
class Generation:
    text: str | None
    model: str


class GenerationProvider(ABC):
    """Produces an answer from a system prompt and a user message."""

    model_name: str

    @abstractmethod
    def generate(self, system: str, user: str, temperature: float = 0.0, max_tokens: int = 1024) -> Generation:
        ...


class HttpGenerationProvider(GenerationProvider):
    """Client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        base_url: str,
        model_name: str,
        api_key: str = "",
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def generate(self, system: str, user: str, temperature: float = 0.0, max_tokens: int = 1024) -> Generation:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        body = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        try:
            resp = self.session.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ProviderError(f"Generation request failed: {exc}") from exc
        return Generation(text=_parse_completion(payload), model=self.model_name)


def _parse_completion(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices") or []
    if choices and isinstance(choices[0], dict):
        message = choices[0].get("message") or {}
        return message.get("content") or choices[0].get("text")
    # Workers AI style {"response": "..."}
    return payload.get("response")


class ExtractiveGenerationProvider(GenerationProvider):
    """Offline provider quoting the context sentences that best match the question.

    Each quoted sentence is followed by the citation number of its passage.
    """

    def __init__(self, model_name: str = "extractive", max_sentences: int = 2) -> None:
        self.model_name = model_name
        self.max_sentences = max_sentences

    def generate(self, system: str, user: str, temperature: float = 0.0, max_tokens: int = 1024) -> Generation:
        passages = parse_context(extract_context(system))
        if not passages:
            return Generation(text=DECLINE_ANSWER, model=self.model_name)
        question_terms = _terms(user)
        scored: list[tuple[int, int, str]] = []
        for number, passage in passages:
            for sentence in _SENTENCE_RE.findall(passage):
                sentence = sentence.strip()
                if not sentence:
                    continue
                overlap = len(question_terms & _terms(sentence))
                scored.append((overlap, -number, sentence))
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        best = [item for item in scored if item[0] > 0][: self.max_sentences]
        if not best:
            return Generation(text=DECLINE_ANSWER, model=self.model_name)
        answer = " ".join(f"{sentence} [{-neg_number}]" for _, neg_number, sentence in best)
        # Rough token budget: four characters per token.
        return Generation(text=answer[: max_tokens * 4], model=self.model_name)


def _terms(text: str) -> set[str]:
    return {token for token in _WORD_RE.findall(text.lower()) if token not in _STOPWORDS}


def build_generation_provider(settings: Settings) -> GenerationProvider:
    if settings.generation_backend == "http":
        if not settings.generation_base_url:
            raise ValueError("generation_base_url is required for the http generation backend")
        return HttpGenerationProvider(
            base_url=settings.generation_base_url,
            model_name=settings.generation_model,
            api_key=settings.generation_api_key,
            timeout=settings.provider_timeout_seconds,
        )
    return ExtractiveGenerationProvider()


__all__ = [
    "Generation",
    "GenerationProvider",
    "HttpGenerationProvider",
    "ExtractiveGenerationProvider",
    "build_generation_provider",
]
