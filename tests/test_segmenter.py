"""Tests for the boundary-aware Segmenter."""

import pytest

from chunkflow.chunking.segmenter import Segmenter, segment
from chunkflow.exceptions import ConfigurationError
from chunkflow.schemas import SegmenterOptions
from conftest import make_document


def _assert_well_formed(chunks, text, max_chunk_size, overlap_size):
    assert chunks[0].original_start == 0
    assert chunks[-1].original_end == len(text)
    for i, chunk in enumerate(chunks):
        assert chunk.index == i
        assert chunk.total_chunks == len(chunks)
        assert 0 <= chunk.original_start < chunk.original_end <= len(text)
        assert chunk.text == text[chunk.original_start:chunk.original_end]
        assert len(chunk.text) <= max_chunk_size
    for prev, nxt in zip(chunks, chunks[1:]):
        # contiguous or overlapping, strictly advancing
        assert prev.original_start < nxt.original_start <= prev.original_end
        assert 0 <= prev.original_end - nxt.original_start <= overlap_size


# --- Configuration ------------------------------------------------------------

@pytest.mark.parametrize(
    "max_chunk_size, overlap_size",
    [(400, 200), (10, 5), (0, 0), (-5, 1), (100, 0), (100, -1)],
)
def test_invalid_sizes_fail_fast(max_chunk_size, overlap_size):
    with pytest.raises(ConfigurationError):
        Segmenter(max_chunk_size=max_chunk_size, overlap_size=overlap_size)


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        segment("some text", max_chunk_size=10, overlap_size=5)


def test_overrides_apply_on_top_of_options():
    segmenter = Segmenter(SegmenterOptions(), max_chunk_size=1000)
    assert segmenter.max_chunk_size == 1000
    assert segmenter.overlap_size == 200


# --- Small inputs -------------------------------------------------------------

@pytest.mark.parametrize("text", ["", "   ", "\n\t "])
def test_empty_text_returns_no_chunks(text):
    assert segment(text) == []


def test_short_text_is_a_single_chunk():
    text = "Hello there. This fits easily."
    chunks = segment(text)

    assert len(chunks) == 1
    chunk = chunks[0]
    assert chunk.text == text
    assert (chunk.original_start, chunk.original_end) == (0, len(text))
    assert chunk.total_chunks == 1
    assert chunk.overlap_start is None and chunk.overlap_end is None
    assert chunk.has_complete_sentences


def test_text_exactly_max_size_is_not_split():
    text = "a" * 5000
    assert len(segment(text)) == 1


# --- Concrete scenario --------------------------------------------------------

def test_12k_document_yields_three_chunks(document_12k):
    chunks = segment(document_12k, max_chunk_size=5000, overlap_size=200)

    assert len(chunks) == 3
    _assert_well_formed(chunks, document_12k, 5000, 200)
    covered = set()
    for chunk in chunks:
        covered.update(range(chunk.original_start, chunk.original_end))
    assert covered == set(range(12_000))


def test_cuts_land_on_sentence_ends(document_12k):
    chunks = segment(document_12k)

    # 65-char sentences: last boundary before 5000 is 76 * 65
    assert chunks[0].original_end == 4940
    assert chunks[1].original_start == 4740
    for chunk in chunks[:-1]:
        assert chunk.text.endswith("bank. ")
        assert document_12k[chunk.original_end] == "T"


def test_overlap_metadata(document_12k):
    first, middle, last = segment(document_12k)

    assert first.overlap_start is None
    assert first.overlap_end == min(first.original_end, 0 + 5000 - 200)
    assert middle.overlap_start == middle.original_start
    assert middle.overlap_end == min(middle.original_end, middle.original_start + 4800)
    assert last.overlap_start == last.original_start
    assert last.overlap_end is None


def test_fixed_cuts_without_sentence_boundaries(document_12k):
    chunks = segment(document_12k, respect_sentence_boundaries=False)

    spans = [(c.original_start, c.original_end) for c in chunks]
    assert spans == [(0, 5000), (4800, 9800), (9600, 12000)]


def test_no_boundary_in_window_falls_back_to_max_size():
    text = "x" * 3000
    chunks = segment(text, max_chunk_size=1000, overlap_size=100)

    assert chunks[0].original_end == 1000
    _assert_well_formed(chunks, text, 1000, 100)


@pytest.mark.parametrize(
    "max_chunk_size, overlap_size, sentences",
    [(100, 10, True), (100, 10, False), (333, 100, True), (64, 31, True), (1000, 1, True)],
)
def test_coverage_without_gaps(max_chunk_size, overlap_size, sentences):
    text = make_document(
        4321,
        sentence="Dr. Lee measured 3.75 units... Then Mr. Fox left! Did it work? Yes. ",
    )
    chunks = segment(
        text,
        max_chunk_size=max_chunk_size,
        overlap_size=overlap_size,
        respect_sentence_boundaries=sentences,
    )
    _assert_well_formed(chunks, text, max_chunk_size, overlap_size)


# --- Protected tokens ---------------------------------------------------------

def test_never_splits_inside_abbreviation():
    text = "Dr. Smith arrived. He left."
    chunks = segment(text, max_chunk_size=3, overlap_size=1)

    for chunk in chunks:
        assert not 0 < chunk.original_start < 3
        assert not 0 < chunk.original_end < 3
    assert chunks[0].text == "Dr."


def test_abbreviations_are_not_sentence_ends():
    text = "x" * 60 + ". Then we met Dr. Watson and Mr. Holmes at noon " + "y" * 120
    chunks = segment(text, max_chunk_size=100, overlap_size=10)

    # The only real boundary in the window is after the x's
    assert chunks[0].original_end == 62


def test_hard_cut_backs_out_of_decimal_number():
    text = "abcdefgh 3.14 ijklmnop qrstuv wxyz"
    chunks = segment(text, max_chunk_size=10, overlap_size=2)

    assert chunks[0].original_end == 9
    for chunk in chunks:
        assert not 9 < chunk.original_start < 13
        assert not 9 < chunk.original_end < 13


def test_chunk_ids_are_unique_per_pass(document_12k):
    first = segment(document_12k)
    second = segment(document_12k)

    ids = [c.chunk_id for c in first]
    assert len(set(ids)) == len(ids)
    assert ids[0].startswith("chunk_0_")
    assert not set(ids) & {c.chunk_id for c in second}


def test_chunks_are_immutable(document_12k):
    chunk = segment(document_12k)[0]
    with pytest.raises(Exception):
        chunk.original_start = 10
