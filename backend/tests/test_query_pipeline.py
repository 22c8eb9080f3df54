"""Tests for the question answering pipeline."""

from __future__ import annotations

import pytest

from grounded_rag.core.errors import ProviderError, ValidationError
from grounded_rag.generation.prompts import (
    INSUFFICIENT_INFORMATION_ANSWER,
    UNABLE_TO_GENERATE_ANSWER,
    cited_numbers,
)
from grounded_rag.generation.providers import ExtractiveGenerationProvider
from grounded_rag.service import RagService

QUESTION = "What is the study of intelligent agents?"


@pytest.fixture
def rag(ctx):
    service = RagService(ctx)
    yield service
    service.ingestion.shutdown()


@pytest.fixture
def loaded(rag: RagService, embedder, sample_text: str) -> RagService:
    rag.ingestion.run("AI primer", sample_text)
    embedder.batches.clear()
    return rag


def test_empty_corpus_short_circuits(rag: RagService, embedder, generator) -> None:
    response = rag.answer_question(QUESTION)
    assert response.answer == INSUFFICIENT_INFORMATION_ANSWER
    assert response.sources == []
    assert response.metadata.retrieved_chunks == 0
    assert generator.calls == []
    assert embedder.calls == 1


@pytest.mark.parametrize(
    ("kwargs", "code"),
    [
        ({"top_k": 25}, "INVALID_TOP_K_RANGE"),
        ({"top_k": 0}, "INVALID_TOP_K_RANGE"),
        ({"min_similarity": 1.5}, "INVALID_MIN_SIMILARITY_RANGE"),
        ({"min_similarity": -0.1}, "INVALID_MIN_SIMILARITY_RANGE"),
    ],
)
def test_invalid_parameters_make_no_calls(rag: RagService, embedder, generator, kwargs, code) -> None:
    with pytest.raises(ValidationError) as excinfo:
        rag.answer_question(QUESTION, **kwargs)
    assert excinfo.value.code == code
    assert embedder.calls == 0
    assert generator.calls == []


def test_long_question_rejected(rag: RagService, embedder) -> None:
    with pytest.raises(ValidationError) as excinfo:
        rag.answer_question("why " * 300)
    assert excinfo.value.code == "QUESTION_TOO_LONG"
    assert embedder.calls == 0


def test_blank_question_rejected(rag: RagService, embedder) -> None:
    with pytest.raises(ValidationError) as excinfo:
        rag.answer_question("   ")
    assert excinfo.value.code == "MISSING_QUESTION"
    assert embedder.calls == 0


def test_answer_with_sources(loaded: RagService, generator) -> None:
    response = loaded.answer_question(QUESTION, top_k=2)

    assert response.answer == "The answer is in the documents [1]."
    assert 1 <= len(response.sources) <= 2
    indices = [source.chunk_index for source in response.sources]
    assert indices == sorted(indices)
    assert all(0.0 <= source.similarity <= 1.0 for source in response.sources)
    assert all(source.title == "AI primer" for source in response.sources)

    call = generator.calls[0]
    assert call["temperature"] == 0.0
    assert call["max_tokens"] == 1024
    assert call["user"] == QUESTION
    assert f"[1] {response.sources[0].chunk_text}" in call["system"]
    assert set(response.metadata.step_latency_ms) == {"embedding", "retrieval", "fetch", "generation"}
    assert response.metadata.retrieved_chunks == len(response.sources)


def test_min_similarity_filters_everything(loaded: RagService, generator) -> None:
    response = loaded.answer_question(QUESTION, min_similarity=1.0)
    assert response.answer == INSUFFICIENT_INFORMATION_ANSWER
    assert response.sources == []
    assert generator.calls == []


def test_min_similarity_keeps_close_matches(loaded: RagService) -> None:
    response = loaded.answer_question(QUESTION, top_k=3, min_similarity=0.1)
    assert response.sources
    assert all(source.similarity >= 0.1 for source in response.sources)


def test_question_embedding_is_cached(loaded: RagService, embedder) -> None:
    first = loaded.answer_question(QUESTION)
    second = loaded.answer_question(QUESTION)
    assert embedder.calls == 1
    assert embedder.batches == [[QUESTION]]
    assert first.metadata.cache_hit is False
    assert second.metadata.cache_hit is True


def test_empty_generation_falls_back(loaded: RagService, generator) -> None:
    generator.answer = "   "
    response = loaded.answer_question(QUESTION)
    assert response.answer == UNABLE_TO_GENERATE_ANSWER
    assert response.sources


def test_generation_errors_propagate(loaded: RagService, generator) -> None:
    generator.fail = ProviderError("generation backend down")
    with pytest.raises(ProviderError):
        loaded.answer_question(QUESTION)


def test_embedding_errors_propagate(loaded: RagService, embedder, generator) -> None:
    embedder.fail = ProviderError("embedding backend down")
    with pytest.raises(ProviderError):
        loaded.answer_question(QUESTION)
    assert generator.calls == []


def test_citations_refer_to_sources(loaded: RagService) -> None:
    loaded.ctx.generator = ExtractiveGenerationProvider()
    response = loaded.answer_question(QUESTION, top_k=3)
    numbers = cited_numbers(response.answer)
    assert numbers
    assert all(1 <= number <= len(response.sources) for number in numbers)


def test_control_characters_stripped(loaded: RagService, generator) -> None:
    raw = "What is\x00 the study of intelligent agents?"
    response = loaded.answer_question(raw)
    assert generator.calls[0]["user"] == QUESTION
    assert response.question == raw
