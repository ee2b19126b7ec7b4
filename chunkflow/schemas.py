"""
Core Pydantic schemas for the chunked text-analysis pipeline.

Every stage shares these models so a finding can be traced from the
analysis call that produced it, through the chunk it was reported
against, to its absolute position in the edited document.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


# --- Enumerations ------------------------------------------------------------

class FindingType(str, Enum):
    GRAMMAR = "grammar"
    SPELLING = "spelling"
    STYLE = "style"
    CLARITY = "clarity"
    PUNCTUATION = "punctuation"


class UpdateKind(str, Enum):
    HUMAN_EDIT = "human_edit"                  # Keystrokes from the person editing
    RESTORE_FROM_HISTORY = "restore"           # A historical version being restored
    APPLY_SUGGESTION = "apply_suggestion"      # An accepted external / AI suggestion
    PROGRAMMATIC_REPLACE = "replace"           # Whole-document replacement (page load etc.)
    BACKGROUND_REFORMAT = "background_reformat"  # Analysis-triggered reformat


# Higher number wins.  Priority is derived from the kind only.
UPDATE_PRIORITIES: dict[UpdateKind, int] = {
    UpdateKind.HUMAN_EDIT: 100,
    UpdateKind.RESTORE_FROM_HISTORY: 80,
    UpdateKind.APPLY_SUGGESTION: 60,
    UpdateKind.PROGRAMMATIC_REPLACE: 40,
    UpdateKind.BACKGROUND_REFORMAT: 20,
}


# --- Segmentation ------------------------------------------------------------

class SegmenterOptions(BaseModel):
    """
    Tunables for a segmentation pass.

    Sizes are checked by the Segmenter itself (not by pydantic) so that a
    bad combination raises ConfigurationError rather than ValidationError.
    """

    model_config = ConfigDict(frozen=True)

    max_chunk_size: int = 5000
    overlap_size: int = 200
    respect_sentence_boundaries: bool = True
    min_window_ratio: float = 0.6        # Boundary search starts at this share of max_chunk_size
    custom_patterns: tuple[str, ...] = ()  # Extra sentence-end regexes


class Chunk(BaseModel):
    """
    A bounded slice of the document plus the metadata needed to map
    findings back onto the original text.  Never mutated after creation.
    """

    model_config = ConfigDict(frozen=True)

    # Identity
    chunk_id: str                        # Unique per pass, correlation key for async results
    index: int                           # 0..total_chunks-1
    total_chunks: int

    # Content
    text: str

    # Original-document coordinates, half-open [start, end)
    original_start: int
    original_end: int
    overlap_start: Optional[int] = None  # Absent on the first chunk
    overlap_end: Optional[int] = None    # Absent on the last chunk

    has_complete_sentences: bool = False

    @computed_field
    @property
    def char_count(self) -> int:
        return len(self.text)

    def overlaps(self, start: int, end: int) -> bool:
        """True if [original_start, original_end) intersects [start, end)."""
        return self.original_start < end and start < self.original_end


# --- Findings ----------------------------------------------------------------

class Finding(BaseModel):
    """
    A located issue reported by the analysis service, in chunk-relative
    coordinates.  Offsets are NOT validated here: upstream output is not
    trusted and gets clamped by the position mapper instead.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    start: int
    end: int
    matched_text: str                    # Expected to equal chunk.text[start:end]
    type: FindingType = FindingType.GRAMMAR
    suggestions: list[str] = Field(default_factory=list)
    explanation: str = ""


class AbsoluteFinding(Finding):
    """A Finding translated into document-absolute coordinates."""

    chunk_id: str
    chunk_index: int


class VisibleRange(BaseModel):
    """The region of the document currently on screen."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int

    @model_validator(mode="after")
    def _ordered(self) -> "VisibleRange":
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"Invalid visible range [{self.start}, {self.end})")
        return self


# --- Content Updates ---------------------------------------------------------

class ContentUpdateRequest(BaseModel):
    """
    A request to replace the shared buffer's content.

    Priority is a property of `kind`; there is no field a caller could set.
    """

    model_config = ConfigDict(frozen=True)

    kind: UpdateKind
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source_label: str = ""               # Diagnostic only
    metadata: dict[str, Any] = Field(default_factory=dict)

    @computed_field
    @property
    def priority(self) -> int:
        return UPDATE_PRIORITIES[self.kind]

    @property
    def is_human(self) -> bool:
        return self.kind is UpdateKind.HUMAN_EDIT
