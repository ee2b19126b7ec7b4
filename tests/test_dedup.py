"""Tests for overlap-region finding deduplication."""

from chunkflow.dispatch.dedup import FindingIndex, dedupe, spans_overlap
from chunkflow.schemas import AbsoluteFinding, FindingType


def _finding(start, end, text, kind=FindingType.SPELLING, chunk_index=0):
    return AbsoluteFinding(
        start=start,
        end=end,
        matched_text=text,
        type=kind,
        chunk_id=f"chunk_{chunk_index}_test",
        chunk_index=chunk_index,
    )


def test_spans_overlap_is_half_open():
    assert spans_overlap(_finding(0, 5, "a"), _finding(4, 8, "a"))
    assert not spans_overlap(_finding(0, 5, "a"), _finding(5, 8, "a"))


def test_overlap_copy_from_later_chunk_is_dropped():
    first = _finding(4900, 4903, "teh", chunk_index=0)
    second = _finding(4900, 4903, "teh", chunk_index=1)

    result = dedupe([second, first])

    assert len(result) == 1
    assert result[0].chunk_index == 0
    assert result[0].id == first.id


def test_shifted_copy_with_trailing_space_is_merged():
    first = _finding(100, 104, "teh ", chunk_index=0)
    second = _finding(100, 103, "teh", chunk_index=1)

    assert dedupe([first, second]) == [first]


def test_different_types_on_same_span_are_kept():
    spelling = _finding(10, 13, "teh", FindingType.SPELLING)
    style = _finding(10, 13, "teh", FindingType.STYLE)

    assert len(dedupe([spelling, style])) == 2


def test_same_text_at_separate_positions_is_kept():
    a = _finding(10, 13, "teh", chunk_index=0)
    b = _finding(500, 503, "teh", chunk_index=0)

    assert dedupe([b, a]) == [a, b]


def test_overlapping_spans_with_different_text_are_kept():
    a = _finding(10, 20, "their going", FindingType.GRAMMAR)
    b = _finding(15, 20, "going", FindingType.GRAMMAR)

    assert len(dedupe([a, b])) == 2


def test_zero_length_exact_repeats_collapse():
    a = _finding(42, 42, "", FindingType.PUNCTUATION, chunk_index=0)
    b = _finding(42, 42, "", FindingType.PUNCTUATION, chunk_index=1)

    result = dedupe([b, a])

    assert len(result) == 1
    assert result[0].chunk_index == 0


def test_output_is_sorted_by_position():
    findings = [
        _finding(300, 305, "later", chunk_index=1),
        _finding(5, 9, "foo", chunk_index=0),
        _finding(5, 7, "fo", FindingType.STYLE, chunk_index=0),
        _finding(120, 125, "mid", chunk_index=0),
    ]

    result = dedupe(findings)

    assert [(f.start, f.end) for f in result] == [(5, 7), (5, 9), (120, 125), (300, 305)]


def test_empty_input():
    assert dedupe([]) == []


# --- Incremental index --------------------------------------------------------

def test_late_lower_index_copy_replaces_kept_one():
    index = FindingIndex()
    later = _finding(4900, 4903, "teh", chunk_index=1)
    earlier = _finding(4900, 4903, "teh", chunk_index=0)

    index.add_all([later])
    index.add_all([earlier])

    assert index.findings == [earlier]


def test_late_lower_index_zero_length_repeat_replaces_kept_one():
    index = FindingIndex()
    later = _finding(42, 42, "", FindingType.PUNCTUATION, chunk_index=3)
    earlier = _finding(42, 42, "", FindingType.PUNCTUATION, chunk_index=2)

    index.add_all([later])
    index.add_all([earlier])

    assert index.findings == [earlier]


def _overlapping_chunk_findings(chunks=20, chunk_len=1000, overlap=100, step=4):
    """Single-character findings with the same key, reported by overlapping chunks."""
    per_chunk = []
    for k in range(chunks):
        lo = max(0, k * chunk_len - overlap)
        hi = (k + 1) * chunk_len
        first = -(-lo // step) * step
        per_chunk.append(
            [_finding(p, p + 1, "i", chunk_index=k) for p in range(first, hi, step)]
        )
    return per_chunk


def test_merging_in_any_order_matches_batch_result():
    per_chunk = _overlapping_chunk_findings()
    everything = [f for batch in per_chunk for f in batch]

    index = FindingIndex()
    for batch in reversed(per_chunk):
        index.add_all(batch)

    expected = dedupe(everything)
    assert len(expected) == 20 * 1000 // 4
    assert [(f.start, f.chunk_index) for f in index.findings] == [
        (f.start, f.chunk_index) for f in expected
    ]


def test_merge_cost_is_linear_in_findings():
    per_chunk = _overlapping_chunk_findings(chunks=40)
    added = sum(len(batch) for batch in per_chunk)

    index = FindingIndex()
    for batch in per_chunk:
        index.add_all(batch)

    # One neighbour check for the overlapping copy plus one to stop the walk
    assert index.overlap_checks <= 2 * added
    assert len(index) == 40 * 1000 // 4
