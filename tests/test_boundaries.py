"""Tests for sentence boundary detection helpers."""

import pytest

from chunkflow.chunking.boundaries import (
    compile_patterns,
    enclosing_span,
    find_sentence_boundaries,
    has_complete_sentences,
    last_sentence_boundary,
    protected_spans,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("He left. She stayed.", [9]),
        ("Really? Yes.", [8]),
        ("Stop! Now.", [6]),
        ('He said "Stop." Then left.', [16]),
        ("Value is 3.5. Next", [14]),
        ("(It rained.) After that", [13]),
    ],
)
def test_finds_real_sentence_ends(text, expected):
    assert find_sentence_boundaries(text) == expected


@pytest.mark.parametrize(
    "text",
    [
        "Dr. Smith arrived",
        "Ask Mr. Jones and Mrs. Brown",
        "See Fig. Three",
        "Pi is 3.14 Roughly",
        "lower case after. no capital",
    ],
)
def test_false_positives_are_rejected(text):
    assert find_sentence_boundaries(text) == []


def test_ellipsis_is_not_a_sentence_end():
    text = "Wait... Then it happened. Next one."
    assert find_sentence_boundaries(text) == [26]


def test_boundaries_restricted_to_window():
    text = "One. Two. Three. Four."
    assert find_sentence_boundaries(text) == [5, 10, 17]
    assert find_sentence_boundaries(text, 5, 12) == [10]
    assert last_sentence_boundary(text, 0, 16) == 10
    assert last_sentence_boundary(text, 11, 16) is None


def test_lookahead_sees_past_the_window_end():
    # The capital that confirms the boundary sits just outside the window
    text = "First sentence. Second"
    assert find_sentence_boundaries(text, 0, 16) == [16]


def test_custom_patterns():
    patterns = compile_patterns([r";\s+"])
    assert find_sentence_boundaries("alpha; beta", patterns=patterns) == [7]


def test_protected_spans():
    text = "Dr. Who paid 3.50 for it..."
    assert protected_spans(text) == [(0, 3), (13, 17), (24, 27)]


def test_enclosing_span_is_strict():
    text = "Dr. Who paid 3.50"
    assert enclosing_span(text, 1) == (0, 3)
    assert enclosing_span(text, 0) is None
    assert enclosing_span(text, 3) is None
    assert enclosing_span(text, 15) == (13, 17)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Hello there.", True),
        ('He said "hi."', True),
        ("hello there.", False),
        ("Hello there", False),
        ("   ", False),
    ],
)
def test_has_complete_sentences(text, expected):
    assert has_complete_sentences(text) is expected
