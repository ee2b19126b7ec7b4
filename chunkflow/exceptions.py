"""Exception hierarchy for the analysis pipeline."""
from __future__ import annotations


class ChunkflowError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(ChunkflowError, ValueError):
    """Invalid chunk/overlap sizes or other programmer-supplied settings."""


class AnalysisError(ChunkflowError):
    """
    An analysis call for a single chunk failed (timeout, backend error,
    retries exhausted).  Always isolated to that chunk by the dispatcher.
    """

    def __init__(self, chunk_id: str, reason: str) -> None:
        super().__init__(f"Analysis failed for {chunk_id}: {reason}")
        self.chunk_id = chunk_id
        self.reason = reason
