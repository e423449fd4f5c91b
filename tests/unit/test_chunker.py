"""Unit tests for the chunker module."""

import pytest

from product_rag.ingestion.chunker import TextChunker, chunk_text

SENTENCES = " ".join(
    f"Sentence number {i} describes product feature {i} in some detail." for i in range(60)
)


def test_empty_and_whitespace_input_yield_no_chunks() -> None:
    """Empty or whitespace-only text produces zero chunks."""
    assert chunk_text("") == []
    assert chunk_text("   \n\n  \t ") == []


def test_short_text_is_a_single_chunk() -> None:
    """Text shorter than chunk_size is returned whole."""
    chunks = chunk_text("Short text.", chunk_size=100, chunk_overlap=10)
    assert len(chunks) == 1
    assert chunks[0].text == "Short text."
    assert chunks[0].index == 0
    assert chunks[0].total_chunks == 1


def test_long_text_is_split_with_contiguous_indices() -> None:
    """A long document is split and indices run 0..N-1."""
    chunks = chunk_text(SENTENCES, chunk_size=200, chunk_overlap=40)
    assert len(chunks) > 1
    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert all(c.total_chunks == len(chunks) for c in chunks)
    assert all(c.metadata["total_chunks"] == len(chunks) for c in chunks)


def test_windows_cover_the_whole_text_without_gaps() -> None:
    """The union of chunk windows covers [0, L) and consecutive windows touch or overlap."""
    chunks = chunk_text(SENTENCES, chunk_size=200, chunk_overlap=40)
    assert chunks[0].start == 0
    assert chunks[-1].end == len(SENTENCES)
    for previous, current in zip(chunks, chunks[1:]):
        assert previous.start < current.start
        assert current.start <= previous.end


def test_consecutive_chunks_overlap() -> None:
    """Hard-cut windows re-read ``chunk_overlap`` characters of the previous one."""
    chunks = chunk_text("x" * 120, chunk_size=50, chunk_overlap=10)
    assert [(c.start, c.end) for c in chunks] == [(0, 50), (40, 90), (80, 120)]


def test_every_chunk_is_non_empty_and_bounded() -> None:
    """No chunk is blank and none exceeds chunk_size."""
    chunks = chunk_text(SENTENCES, chunk_size=150, chunk_overlap=30)
    for chunk in chunks:
        assert chunk.text.strip()
        assert chunk.size == len(chunk.text)
        assert chunk.size <= 150


def test_cut_prefers_sentence_terminator() -> None:
    """A period in the trailing half of the window wins over the raw edge."""
    text = "a" * 30 + ". " + "b" * 60
    chunks = chunk_text(text, chunk_size=50, chunk_overlap=10)
    assert chunks[0].text == "a" * 30 + "."
    assert chunks[0].end == 31


@pytest.mark.parametrize("mark", ["?", "!"])
def test_question_and_exclamation_marks_are_terminators(mark: str) -> None:
    text = "a" * 30 + mark + " " + "b" * 60
    chunks = chunk_text(text, chunk_size=50, chunk_overlap=10)
    assert chunks[0].text.endswith(mark)


def test_cut_falls_back_to_whitespace() -> None:
    """Without terminators the window is cut on whitespace, never mid-word."""
    chunks = chunk_text("word " * 40, chunk_size=50, chunk_overlap=10)
    assert len(chunks) > 1
    for chunk in chunks:
        assert set(chunk.text.split()) == {"word"}


def test_terminator_in_leading_half_is_ignored() -> None:
    """A period before the middle of the window does not trigger a short cut."""
    text = "ab." + " " + "c" * 100
    chunks = chunk_text(text, chunk_size=50, chunk_overlap=10)
    assert chunks[0].end > 25


def test_parent_metadata_is_copied_to_every_chunk() -> None:
    """Metadata from the parent document is preserved and extended."""
    chunks = chunk_text(
        SENTENCES,
        chunk_size=200,
        chunk_overlap=40,
        document_id="doc-7",
        metadata={"document_name": "guide.pdf"},
    )
    for chunk in chunks:
        assert chunk.document_id == "doc-7"
        assert chunk.metadata["document_name"] == "guide.pdf"
        assert chunk.metadata["chunk_size"] == chunk.size


def test_chunking_is_deterministic() -> None:
    chunker = TextChunker(chunk_size=120, chunk_overlap=20)
    assert chunker.split(SENTENCES) == chunker.split(SENTENCES)


@pytest.mark.parametrize(
    ("size", "overlap"),
    [(0, 0), (-5, 0), (100, -1), (100, 100), (100, 150)],
)
def test_invalid_parameters_are_rejected(size: int, overlap: int) -> None:
    with pytest.raises(ValueError):
        TextChunker(chunk_size=size, chunk_overlap=overlap)


def test_period_outside_the_trailing_half_falls_back_to_hard_cuts() -> None:
    """A period at offset 60 is never inside a 50-character window's trailing half."""
    text = "a" * 60 + ". " + "b" * 60
    chunks = chunk_text(text, chunk_size=50, chunk_overlap=10)
    assert [(c.start, c.end) for c in chunks] == [(0, 50), (40, 90), (80, 122)]
    assert "." in chunks[1].text
    assert chunks[1].text.index(".") == 20


def test_large_overlap_still_advances_by_size_minus_overlap() -> None:
    """Short boundary cuts never shrink the step below ``chunk_size - chunk_overlap``."""
    text = ("x" * 50 + ". ") * 40
    chunks = chunk_text(text, chunk_size=100, chunk_overlap=90)
    steps = [current.start - previous.start for previous, current in zip(chunks, chunks[1:])]
    assert min(steps) >= 10
    assert len(chunks) <= len(text) // 10 + 1
    assert chunks[-1].end == len(text)
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start <= previous.end


def test_short_cut_with_small_overlap_does_not_leave_a_gap() -> None:
    """When the cut lands before the minimum step, the next window starts at the cut."""
    text = "a" * 30 + ". " + "b" * 60
    chunks = chunk_text(text, chunk_size=50, chunk_overlap=10)
    assert chunks[0].end == 31
    assert chunks[1].start == 31
