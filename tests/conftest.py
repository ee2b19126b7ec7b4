"""Pytest configuration and shared fixtures."""

import pytest

from chunkflow.coordination.buffer import InMemoryBuffer
from chunkflow.schemas import Chunk, Finding, FindingType

SENTENCE = "The quick brown fox jumps over the lazy dog near the river bank. "


def make_document(length: int, sentence: str = SENTENCE) -> str:
    """Repeat `sentence` and cut to exactly `length` characters."""
    repeats = length // len(sentence) + 1
    return (sentence * repeats)[:length]


def make_chunk(text: str, original_start: int = 0, index: int = 0, total: int = 1) -> Chunk:
    return Chunk(
        chunk_id=f"chunk_{index}_test",
        index=index,
        total_chunks=total,
        text=text,
        original_start=original_start,
        original_end=original_start + len(text),
    )


def make_finding(chunk: Chunk, start: int, end: int, kind: FindingType = FindingType.GRAMMAR) -> Finding:
    return Finding(start=start, end=end, matched_text=chunk.text[start:end], type=kind)


@pytest.fixture
def document_12k() -> str:
    return make_document(12_000)


@pytest.fixture
def buffer() -> InMemoryBuffer:
    return InMemoryBuffer("initial text")


@pytest.fixture
def quiet_config(tmp_path):
    """A config file that keeps logs on the console only."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "segmenter:\n"
        "  max_chunk_size: 120\n"
        "  overlap_size: 20\n"
        "dispatch:\n"
        "  background_delay_s: 0\n"
        "  analysis_retries: 0\n"
        "logging:\n"
        "  level: WARNING\n"
        "  file: null\n",
        encoding="utf-8",
    )
    return path
