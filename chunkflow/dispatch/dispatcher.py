"""
Concurrent Chunk Dispatcher
----------------------------
Sends chunks to a caller-supplied analyzer with bounded concurrency and
priority ordering, streaming merged results as each chunk completes.

    chunks
      |
      v
    partition  (priority = overlaps visible range, background = the rest)
      |
      v
    asyncio.Semaphore(max_concurrency)   priority now, background after delay
      |
      v
    analyze(chunk)  -- failure isolated per chunk
      |
      v
    map_findings -> FindingIndex.add_all -> DispatchUpdate (streamed)
      |
      v
    DispatchResult (final)

Each dispatch takes a fresh GenerationToken.  Starting another dispatch on
the same dispatcher supersedes it: its outstanding analyze calls are
cancelled and any result that still arrives is discarded unmerged.
Completion order is whatever order the analyze calls finish in; consumers
must rely on chunk ids and offsets, not on arrival order.
"""
from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence, Union

from loguru import logger

from chunkflow.dispatch.analysis import Analyzer
from chunkflow.dispatch.dedup import FindingIndex
from chunkflow.dispatch.generation import GenerationCounter, GenerationToken
from chunkflow.exceptions import ConfigurationError
from chunkflow.mapping.position_mapper import map_findings
from chunkflow.schemas import AbsoluteFinding, Chunk, VisibleRange

MAX_CONCURRENCY = 2
BACKGROUND_DELAY_S = 30.0

_SUPERSEDED = object()


# ---------------------------------------------------------------------------
# Result schema
# ---------------------------------------------------------------------------

@dataclass
class DispatchProgress:
    """Counters for progress UI.  completed_chunks includes failed ones."""

    total_chunks: int
    completed_chunks: int = 0
    processing_chunks: int = 0
    failed_chunks: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ChunkFailure:
    chunk_id: str
    chunk_index: int
    reason: str


@dataclass
class DispatchUpdate:
    """Emitted once per chunk as soon as its analysis resolves."""

    generation: int
    chunk_id: str
    chunk_index: int
    new_findings: list[AbsoluteFinding]     # This chunk's findings, mapped
    findings: list[AbsoluteFinding]         # Running de-duplicated set
    progress: DispatchProgress
    failure: Optional[ChunkFailure] = None


@dataclass
class DispatchResult:
    generation: int
    findings: list[AbsoluteFinding]
    progress: DispatchProgress
    failures: list[ChunkFailure] = field(default_factory=list)
    malformed_findings: int = 0
    cancelled: bool = False
    elapsed_ms: float = 0.0

    @property
    def partial(self) -> bool:
        """True when some areas of the document could not be checked."""
        return bool(self.failures) or self.cancelled

    def to_dict(self) -> dict:
        return {
            "generation": self.generation,
            "findings": [f.model_dump(mode="json") for f in self.findings],
            "progress": self.progress.to_dict(),
            "failures": [asdict(f) for f in self.failures],
            "malformed_findings": self.malformed_findings,
            "cancelled": self.cancelled,
            "partial": self.partial,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


@dataclass
class _ChunkOutcome:
    chunk: Chunk
    raw: list
    error: Optional[str] = None


UpdateCallback = Callable[[DispatchUpdate], Union[None, Awaitable[None]]]


# ---------------------------------------------------------------------------
# Partitioning
# ---------------------------------------------------------------------------

def partition_chunks(
    chunks: Sequence[Chunk],
    visible_range: Optional[VisibleRange],
) -> tuple[list[Chunk], list[Chunk]]:
    """
    Split into (priority, background), both in index order.
    With no visible range everything is background.
    """
    ordered = sorted(chunks, key=lambda c: c.index)
    if visible_range is None:
        return [], ordered
    priority = [c for c in ordered if c.overlaps(visible_range.start, visible_range.end)]
    background = [c for c in ordered if not c.overlaps(visible_range.start, visible_range.end)]
    return priority, background


# ---------------------------------------------------------------------------
# A single dispatch
# ---------------------------------------------------------------------------

class DispatchRun:
    """
    One dispatch pass.  Iterate it for streamed updates, or `await
    run.wait()` for the final result.  Can only be consumed once.
    """

    def __init__(
        self,
        token: GenerationToken,
        chunks: Sequence[Chunk],
        analyze: Analyzer,
        visible_range: Optional[VisibleRange],
        max_concurrency: int,
        background_delay_s: float,
    ) -> None:
        self.token = token
        self.analyze = analyze
        self.max_concurrency = max_concurrency
        self.background_delay_s = background_delay_s
        self.priority, self.background = partition_chunks(chunks, visible_range)

        self.progress = DispatchProgress(total_chunks=len(chunks))
        self.findings: list[AbsoluteFinding] = []
        self.failures: list[ChunkFailure] = []
        self.malformed_findings = 0
        self.cancelled = False

        self._index = FindingIndex()
        self._tasks: set[asyncio.Task] = set()
        self._consumed = False
        self._started_at: Optional[float] = None
        self._elapsed_ms = 0.0

        token.on_superseded(self._abandon)

    @property
    def generation(self) -> int:
        return self.token.value

    def __aiter__(self) -> AsyncIterator[DispatchUpdate]:
        return self.updates()

    async def updates(self) -> AsyncIterator[DispatchUpdate]:
        if self._consumed:
            raise RuntimeError("DispatchRun can only be consumed once")
        self._consumed = True
        self._started_at = time.perf_counter()

        total = self.progress.total_chunks
        if self.token.is_stale:
            self.cancelled = True
            return
        if total == 0:
            return

        queue: asyncio.Queue = asyncio.Queue()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        self.token.on_superseded(lambda: queue.put_nowait(_SUPERSEDED))

        logger.info(
            f"[Dispatcher] gen={self.generation} | {total} chunk(s) | "
            f"priority={len(self.priority)} background={len(self.background)} | "
            f"concurrency={self.max_concurrency}"
        )

        for chunk in self.priority:
            self._launch(self._analyze_one(chunk, semaphore, queue), f"analyze-{chunk.chunk_id}")
        if self.background:
            delay = self.background_delay_s if self.priority else 0.0
            self._launch(
                self._release_background(delay, semaphore, queue),
                f"background-{self.generation}",
            )

        remaining = total
        try:
            while remaining:
                outcome = await queue.get()
                if outcome is _SUPERSEDED or self.token.is_stale:
                    self.cancelled = True
                    logger.info(
                        f"[Dispatcher] gen={self.generation} superseded with "
                        f"{remaining} chunk(s) outstanding"
                    )
                    break
                remaining -= 1
                yield self._merge(outcome)
        finally:
            self._abandon()
            self._elapsed_ms = (time.perf_counter() - self._started_at) * 1000

        if not self.cancelled:
            logger.info(
                f"[Dispatcher] gen={self.generation} done | {len(self.findings)} finding(s) | "
                f"{len(self.failures)} failed chunk(s) | {self._elapsed_ms:.0f}ms"
            )

    async def wait(self, on_update: Optional[UpdateCallback] = None) -> DispatchResult:
        """Consume the run, invoking `on_update` per chunk, and return the result."""
        async for update in self.updates():
            if on_update is not None:
                outcome = on_update(update)
                if inspect.isawaitable(outcome):
                    await outcome
        return self.result()

    def result(self) -> DispatchResult:
        return DispatchResult(
            generation=self.generation,
            findings=list(self.findings),
            progress=replace(self.progress),
            failures=list(self.failures),
            malformed_findings=self.malformed_findings,
            cancelled=self.cancelled,
            elapsed_ms=self._elapsed_ms,
        )

    # --- Internals ------------------------------------------------------------

    def _launch(self, coro: Any, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _abandon(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    async def _release_background(
        self, delay: float, semaphore: asyncio.Semaphore, queue: asyncio.Queue
    ) -> None:
        if delay > 0:
            logger.debug(
                f"[Dispatcher] gen={self.generation} | deferring "
                f"{len(self.background)} background chunk(s) for {delay:.1f}s"
            )
            await asyncio.sleep(delay)
        if self.token.is_stale:
            return
        for chunk in self.background:
            self._launch(self._analyze_one(chunk, semaphore, queue), f"analyze-{chunk.chunk_id}")

    async def _analyze_one(
        self, chunk: Chunk, semaphore: asyncio.Semaphore, queue: asyncio.Queue
    ) -> None:
        async with semaphore:
            if self.token.is_stale:
                return
            self.progress.processing_chunks += 1
            started = time.perf_counter()
            try:
                raw = await self.analyze(chunk)
                outcome = _ChunkOutcome(chunk=chunk, raw=list(raw or []))
            except Exception as exc:
                outcome = _ChunkOutcome(chunk=chunk, raw=[], error=f"{type(exc).__name__}: {exc}")
            finally:
                self.progress.processing_chunks -= 1
            logger.debug(
                f"[Dispatcher] {chunk.chunk_id} analysed in "
                f"{(time.perf_counter() - started) * 1000:.0f}ms"
            )

        if self.token.is_stale:
            logger.debug(f"[Dispatcher] Discarding stale result for {chunk.chunk_id}")
            return
        queue.put_nowait(outcome)

    def _merge(self, outcome: _ChunkOutcome) -> DispatchUpdate:
        chunk = outcome.chunk
        failure: Optional[ChunkFailure] = None

        if outcome.error is not None:
            failure = ChunkFailure(chunk_id=chunk.chunk_id, chunk_index=chunk.index, reason=outcome.error)
            self.failures.append(failure)
            self.progress.failed_chunks += 1
            logger.warning(
                f"[Dispatcher] Chunk {chunk.index + 1}/{chunk.total_chunks} "
                f"({chunk.chunk_id}) failed, treating as 0 findings: {outcome.error}"
            )
            mapped: list[AbsoluteFinding] = []
        else:
            mapped, malformed = map_findings(outcome.raw, chunk)
            self.malformed_findings += malformed
            self._index.add_all(mapped)
            self.findings = self._index.findings

        self.progress.completed_chunks += 1
        logger.debug(
            f"[Dispatcher] Chunk {chunk.index + 1}/{chunk.total_chunks} merged | "
            f"+{len(mapped)} raw | {len(self.findings)} total | "
            f"{self.progress.completed_chunks}/{self.progress.total_chunks} complete"
        )
        return DispatchUpdate(
            generation=self.generation,
            chunk_id=chunk.chunk_id,
            chunk_index=chunk.index,
            new_findings=mapped,
            findings=list(self.findings),
            progress=replace(self.progress),
            failure=failure,
        )


# ---------------------------------------------------------------------------
# Dispatcher (one per document session)
# ---------------------------------------------------------------------------

class ChunkDispatcher:
    """
    Bounded-concurrency, priority-aware dispatcher for one document session.

    Usage:
        dispatcher = ChunkDispatcher(max_concurrency=2)
        async for update in dispatcher.start(chunks, analyze, visible_range):
            render(update.findings, update.progress)

        # or, without streaming
        result = await dispatcher.dispatch(chunks, analyze)
    """

    def __init__(
        self,
        max_concurrency: int = MAX_CONCURRENCY,
        background_delay_s: float = BACKGROUND_DELAY_S,
    ) -> None:
        if max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be >= 1, got {max_concurrency}")
        if background_delay_s < 0:
            raise ConfigurationError(f"background_delay_s must be >= 0, got {background_delay_s}")
        self.max_concurrency = max_concurrency
        self.background_delay_s = background_delay_s
        self._generations = GenerationCounter()

    @property
    def generation(self) -> int:
        return self._generations.current

    def start(
        self,
        chunks: Sequence[Chunk],
        analyze: Analyzer,
        visible_range: Optional[VisibleRange] = None,
    ) -> DispatchRun:
        """Begin a new dispatch, superseding any in-flight one."""
        token = self._generations.advance()
        return DispatchRun(
            token=token,
            chunks=chunks,
            analyze=analyze,
            visible_range=visible_range,
            max_concurrency=self.max_concurrency,
            background_delay_s=self.background_delay_s,
        )

    async def dispatch(
        self,
        chunks: Sequence[Chunk],
        analyze: Analyzer,
        visible_range: Optional[VisibleRange] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> DispatchResult:
        return await self.start(chunks, analyze, visible_range).wait(on_update)

    def cancel(self) -> None:
        """Supersede the in-flight dispatch without starting a new one."""
        self._generations.invalidate()
