"""
Analysis Service Adapters
--------------------------
The dispatcher only ever sees an `Analyzer`: an async callable taking a
Chunk and returning its findings in chunk-relative coordinates.  These
helpers adapt the external service's call shape to that contract and wrap
it with:

  - a hard per-call timeout (a hung call would otherwise hold one of the
    dispatcher's concurrency slots forever)
  - retry logic via tenacity
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence, Union

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chunkflow.exceptions import AnalysisError
from chunkflow.schemas import Chunk, Finding

RawFindings = Sequence[Union[Finding, dict[str, Any]]]
Analyzer = Callable[[Chunk], Awaitable[RawFindings]]
TextAnalyzer = Callable[[str, dict[str, Any]], Awaitable[RawFindings]]

ANALYSIS_TIMEOUT_S = 20.0
ANALYSIS_RETRIES = 1


def chunk_metadata(chunk: Chunk) -> dict[str, Any]:
    """The metadata handed to a text-level analysis service."""
    return {
        "chunk_id": chunk.chunk_id,
        "chunk_index": chunk.index,
        "total_chunks": chunk.total_chunks,
        "original_start": chunk.original_start,
        "original_end": chunk.original_end,
        "has_complete_sentences": chunk.has_complete_sentences,
    }


def from_text_analyzer(service_call: TextAnalyzer) -> Analyzer:
    """Adapt `service(chunk_text, metadata)` to the Chunk-based Analyzer shape."""

    async def analyze(chunk: Chunk) -> RawFindings:
        return await service_call(chunk.text, chunk_metadata(chunk))

    return analyze


def with_timeout(analyze: Analyzer, timeout_s: float = ANALYSIS_TIMEOUT_S) -> Analyzer:
    """Fail the call with AnalysisError if it takes longer than `timeout_s`."""

    async def timed(chunk: Chunk) -> RawFindings:
        try:
            return await asyncio.wait_for(analyze(chunk), timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            raise AnalysisError(chunk.chunk_id, f"timed out after {timeout_s:.1f}s") from exc

    return timed


def with_retries(
    analyze: Analyzer,
    retries: int = ANALYSIS_RETRIES,
    min_wait_s: float = 0.5,
    max_wait_s: float = 8.0,
) -> Analyzer:
    """
    Retry failed calls up to `retries` extra times with exponential backoff.
    The last failure is re-raised as AnalysisError.
    """

    async def retrying(chunk: Chunk) -> RawFindings:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(retries + 1),
                wait=wait_exponential(multiplier=min_wait_s, min=min_wait_s, max=max_wait_s),
                retry=retry_if_exception_type(Exception),
                reraise=False,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.debug(
                            f"[Analysis] {chunk.chunk_id}: retry "
                            f"{attempt.retry_state.attempt_number - 1}/{retries}"
                        )
                    return await analyze(chunk)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            raise AnalysisError(chunk.chunk_id, f"{retries + 1} attempt(s) failed: {last}") from last
        raise AnalysisError(chunk.chunk_id, "no attempt was made")

    return retrying


def guarded(
    analyze: Analyzer,
    timeout_s: float = ANALYSIS_TIMEOUT_S,
    retries: int = ANALYSIS_RETRIES,
) -> Analyzer:
    """Timeout per attempt, then retries around that."""
    return with_retries(with_timeout(analyze, timeout_s), retries=retries)
