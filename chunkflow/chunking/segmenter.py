"""
Segmenter
----------
Splits a large, frequently edited document into bounded chunks that can be
sent one at a time to the analysis service.

Algorithm (left to right):
  1. Propose an end at start + max_chunk_size (clamped to the text length).
  2. If sentence boundaries are respected and the proposed end is not the
     end of the text, search backwards in
     [start + max_chunk_size * min_window_ratio, proposed end] for the LAST
     valid sentence boundary.  None found -> keep the proposed end.  The
     chunk never grows past max_chunk_size.
  3. A chunk edge is never left strictly inside an abbreviation, a decimal
     number or an ellipsis; it is pulled back to the start of that token.
  4. The next chunk starts at max(start, end - overlap_size), nudged forward
     out of any protected token, so neighbours share at most overlap_size
     characters of context.

Offsets are Python string indices (code points), matching the indices the
analysis service reports against each chunk's text.
"""
from __future__ import annotations

import math
import uuid
from typing import Optional

from loguru import logger

from chunkflow.chunking.boundaries import (
    compile_patterns,
    enclosing_span,
    has_complete_sentences,
    last_sentence_boundary,
)
from chunkflow.exceptions import ConfigurationError
from chunkflow.schemas import Chunk, SegmenterOptions


# ── Constants ─────────────────────────────────────────────────────────────────

MAX_CHUNK_SIZE = 5000     # Characters per analysis request
OVERLAP_SIZE = 200        # Shared context between neighbouring chunks
MIN_WINDOW_RATIO = 0.6    # Boundary search never shrinks a chunk below 60%


def validate_options(options: SegmenterOptions) -> None:
    """Reject impossible size combinations eagerly; never clamp them."""
    if options.max_chunk_size <= 0 or options.overlap_size <= 0:
        raise ConfigurationError(
            f"Chunk and overlap sizes must be positive "
            f"(max_chunk_size={options.max_chunk_size}, overlap_size={options.overlap_size})"
        )
    if options.max_chunk_size <= 2 * options.overlap_size:
        raise ConfigurationError(
            f"max_chunk_size ({options.max_chunk_size}) must be greater than "
            f"twice overlap_size ({options.overlap_size})"
        )
    if not 0.0 < options.min_window_ratio <= 1.0:
        raise ConfigurationError(
            f"min_window_ratio must be in (0, 1], got {options.min_window_ratio}"
        )


class Segmenter:
    """
    Boundary-aware, overlapping text segmenter.

    Usage:
        segmenter = Segmenter(SegmenterOptions(max_chunk_size=2000, overlap_size=100))
        chunks = segmenter.segment(document_text)
    """

    def __init__(self, options: Optional[SegmenterOptions] = None, **overrides) -> None:
        if options is None:
            options = SegmenterOptions(**overrides)
        elif overrides:
            options = options.model_copy(update=overrides)
        validate_options(options)

        self.options = options
        self._patterns = compile_patterns(options.custom_patterns)
        logger.debug(
            f"[Segmenter] Initialised | max_chunk_size={options.max_chunk_size} "
            f"| overlap_size={options.overlap_size} "
            f"| sentences={'on' if options.respect_sentence_boundaries else 'off'}"
        )

    @property
    def max_chunk_size(self) -> int:
        return self.options.max_chunk_size

    @property
    def overlap_size(self) -> int:
        return self.options.overlap_size

    # --- Public API -----------------------------------------------------------

    def segment(self, text: str) -> list[Chunk]:
        """
        Split `text` into ordered, contiguous-or-overlapping chunks.

        Returns an empty list for empty / whitespace-only text.
        """
        if not text or not text.strip():
            logger.debug("[Segmenter] Empty text, nothing to segment")
            return []

        pass_id = uuid.uuid4().hex[:12]

        if len(text) <= self.max_chunk_size:
            return [
                Chunk(
                    chunk_id=_chunk_id(0, pass_id),
                    index=0,
                    total_chunks=1,
                    text=text,
                    original_start=0,
                    original_end=len(text),
                    has_complete_sentences=has_complete_sentences(text),
                )
            ]

        spans: list[tuple[int, int]] = []
        start = 0
        while start < len(text):
            end = self._find_end(text, start)
            spans.append((start, end))
            if end >= len(text):
                break
            start = self._next_start(text, start, end)

        chunks = self._build_chunks(text, spans, pass_id)
        logger.debug(
            f"[Segmenter] {len(text):,} chars -> {len(chunks)} chunk(s) "
            f"(max={self.max_chunk_size}, overlap={self.overlap_size})"
        )
        return chunks

    # --- Cut-point selection --------------------------------------------------

    def _find_end(self, text: str, start: int) -> int:
        proposed = min(start + self.max_chunk_size, len(text))
        if proposed >= len(text):
            return proposed

        end = proposed
        if self.options.respect_sentence_boundaries:
            window_start = start + math.ceil(self.max_chunk_size * self.options.min_window_ratio)
            boundary = last_sentence_boundary(text, window_start - 1, proposed, self._patterns)
            if boundary is not None and boundary > start:
                end = boundary
            else:
                logger.debug(
                    f"[Segmenter] No sentence boundary in [{window_start}, {proposed}], "
                    f"cutting at max size"
                )

        span = enclosing_span(text, end)
        if span is not None and span[0] > start:
            end = span[0]
        return end

    def _next_start(self, text: str, start: int, end: int) -> int:
        next_start = max(start, end - self.overlap_size)
        span = enclosing_span(text, next_start)
        if span is not None:
            next_start = min(span[1], end)
        if next_start <= start:
            # Cut was pulled back too far to leave room for overlap
            next_start = end
        return next_start

    # --- Assembly -------------------------------------------------------------

    def _build_chunks(self, text: str, spans: list[tuple[int, int]], pass_id: str) -> list[Chunk]:
        total = len(spans)
        chunks: list[Chunk] = []
        for index, (start, end) in enumerate(spans):
            body = text[start:end]
            chunks.append(
                Chunk(
                    chunk_id=_chunk_id(index, pass_id),
                    index=index,
                    total_chunks=total,
                    text=body,
                    original_start=start,
                    original_end=end,
                    overlap_start=start if index > 0 else None,
                    overlap_end=(
                        min(end, start + self.max_chunk_size - self.overlap_size)
                        if index < total - 1
                        else None
                    ),
                    has_complete_sentences=has_complete_sentences(body),
                )
            )
        return chunks


def _chunk_id(index: int, pass_id: str) -> str:
    return f"chunk_{index}_{pass_id}"


def segment(text: str, options: Optional[SegmenterOptions] = None, **overrides) -> list[Chunk]:
    """Convenience wrapper: build a Segmenter and run a single pass."""
    return Segmenter(options, **overrides).segment(text)
