"""Tests for chunking utilities."""

import pytest

from grounded_rag.ingest.chunker import chunk_document, estimate_chunk_count, split_text

SENTENCE = "Artificial intelligence is the study of intelligent agents. "


def test_split_text_basic(sample_text: str) -> None:
    chunks = split_text(sample_text, chunk_size=500, chunk_overlap=100)
    assert len(chunks) == 3
    assert [chunk.index for chunk in chunks] == [0, 1, 2]
    assert all(chunk.text for chunk in chunks)


def test_chunks_are_slices_of_the_source(sample_text: str) -> None:
    for chunk in split_text(sample_text, chunk_size=200, chunk_overlap=50):
        assert sample_text[chunk.start_char : chunk.end_char] == chunk.text


def test_split_is_deterministic() -> None:
    text = SENTENCE * 40
    first = [(c.text, c.start_char) for c in split_text(text, 180, 40)]
    second = [(c.text, c.start_char) for c in split_text(text, 180, 40)]
    assert first == second


def test_chunks_respect_size_bound() -> None:
    text = "\n".join(SENTENCE * (i % 5 + 1) for i in range(30))
    chunks = split_text(text, chunk_size=250, chunk_overlap=60)
    assert chunks
    assert all(len(chunk.text) <= 250 for chunk in chunks)
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))


def test_consecutive_chunks_overlap() -> None:
    chunks = split_text(SENTENCE * 20, chunk_size=200, chunk_overlap=70)
    assert len(chunks) > 2
    for current, following in zip(chunks, chunks[1:]):
        assert following.start_char < current.end_char


def test_chunks_cover_all_content() -> None:
    text = "Intro line\n\n" + SENTENCE * 25 + "\n\n" + "Closing remarks. " * 10
    chunks = split_text(text, chunk_size=150, chunk_overlap=30)
    covered: set[int] = set()
    for chunk in chunks:
        covered.update(range(chunk.start_char, chunk.end_char))
    assert all(idx in covered for idx, char in enumerate(text) if not char.isspace())


def test_chunks_stitch_back_to_source() -> None:
    text = "Intro line\n\n" + SENTENCE * 20 + "\n\n" + "Closing remarks. " * 12
    chunks = split_text(text, chunk_size=150, chunk_overlap=30)
    assert len(chunks) > 2
    pieces: list[str] = []
    prev_end = 0
    for chunk in chunks:
        pieces.append(chunk.text[max(0, prev_end - chunk.start_char) :])
        prev_end = max(prev_end, chunk.end_char)
    assert "".join("".join(pieces).split()) == "".join(text.split())


def test_unsplittable_piece_is_kept_whole() -> None:
    chunks = split_text("x" * 700, chunk_size=500, chunk_overlap=100)
    assert len(chunks) == 1
    assert len(chunks[0].text) == 700


def test_whitespace_only_text_yields_nothing() -> None:
    assert split_text("   \n\n  ", chunk_size=100, chunk_overlap=10) == []


@pytest.mark.parametrize(
    ("size", "overlap"),
    [(0, 0), (100, -1), (100, 100), (100, 150)],
)
def test_invalid_parameters_raise(size: int, overlap: int) -> None:
    with pytest.raises(ValueError):
        split_text("some text", chunk_size=size, chunk_overlap=overlap)


def test_chunk_document_metadata() -> None:
    text = "| a | b |\n\n* item one\n* item two"
    chunks = chunk_document(text, "Table doc", chunk_size=20, chunk_overlap=5)
    assert chunks
    assert all(chunk.metadata["title"] == "Table doc" for chunk in chunks)
    assert chunks[0].metadata["has_table"] is True
    assert any(chunk.metadata["has_list"] for chunk in chunks)
    assert all(chunk.metadata["chunk_size"] == len(chunk.text) for chunk in chunks)


def test_chunk_document_without_splitting() -> None:
    text = SENTENCE * 30
    chunks = chunk_document(text, "Whole", chunk_size=100, chunk_overlap=10, enabled=False)
    assert len(chunks) == 1
    assert chunks[0].text == text
    assert chunks[0].index == 0


def test_estimate_chunk_count() -> None:
    assert estimate_chunk_count(300) == 1
    assert estimate_chunk_count(1500, 500, 100) == 4
