"""
Analysis Session
-----------------
Drives the segment -> dispatch cycle for one open document.

Every text change goes through a Debouncer: the document is re-segmented
and re-dispatched only after `debounce_s` of quiet.  Each dispatch takes a
new generation from the session's ChunkDispatcher, so results from an
older pass are never merged over a newer one.
"""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from chunkflow.chunking.segmenter import Segmenter
from chunkflow.dispatch.analysis import Analyzer
from chunkflow.dispatch.dispatcher import ChunkDispatcher, DispatchResult, DispatchUpdate
from chunkflow.schemas import AbsoluteFinding, VisibleRange

DEBOUNCE_S = 0.5
MIN_TEXT_LENGTH = 10


class Debouncer:
    """
    Runs `action(*args)` once the calls have stopped for `delay_s`.
    Each call replaces the pending arguments and restarts the timer.
    """

    def __init__(self, delay_s: float, action: Callable[..., Awaitable[Any]]) -> None:
        self.delay_s = delay_s
        self._action = action
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def call(self, *args: Any) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._fire(args), name="debounce")

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Wait for the pending call (if any) to fire and finish."""
        task = self._task
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                # The caller of flush() was cancelled, not the pending call
                raise
            # Replaced by a newer call while we were waiting
            if self._task is not None and self._task is not task:
                await self.flush()

    async def _fire(self, args: tuple) -> None:
        await asyncio.sleep(self.delay_s)
        await self._action(*args)


class AnalysisSession:
    """
    Owns the current finding set for one document.

    Usage:
        session = AnalysisSession(Segmenter(), ChunkDispatcher(), analyze)
        session.update_text(text, visible_range)
        await session.flush()
        session.findings
    """

    def __init__(
        self,
        segmenter: Segmenter,
        dispatcher: ChunkDispatcher,
        analyze: Analyzer,
        debounce_s: float = DEBOUNCE_S,
        min_text_length: int = MIN_TEXT_LENGTH,
        on_update: Optional[Callable[[DispatchUpdate], Any]] = None,
    ) -> None:
        self.segmenter = segmenter
        self.dispatcher = dispatcher
        self.analyze = analyze
        self.min_text_length = min_text_length
        self.on_update = on_update

        self.findings: list[AbsoluteFinding] = []
        self.last_result: Optional[DispatchResult] = None
        self.is_checking = False
        self._debouncer = Debouncer(debounce_s, self.check_now)

    def update_text(self, text: str, visible_range: Optional[VisibleRange] = None) -> None:
        """Schedule a debounced re-check of `text`."""
        if len(text) < self.min_text_length:
            self._debouncer.cancel()
            self.dispatcher.cancel()
            self.findings = []
            self.is_checking = False
            return
        self._debouncer.call(text, visible_range)

    async def check_now(self, text: str, visible_range: Optional[VisibleRange] = None) -> DispatchResult:
        """Segment and dispatch immediately, bypassing the debounce."""
        chunks = self.segmenter.segment(text)
        run = self.dispatcher.start(chunks, self.analyze, visible_range)
        self.is_checking = True
        logger.debug(f"[Session] gen={run.generation} | {len(text):,} chars | {len(chunks)} chunk(s)")

        async def apply(update: DispatchUpdate) -> None:
            if run.token.is_stale:
                return
            self.findings = update.findings
            if self.on_update is not None:
                outcome = self.on_update(update)
                if inspect.isawaitable(outcome):
                    await outcome

        try:
            result = await run.wait(apply)
        finally:
            if run.token.is_current:
                self.is_checking = False

        if not result.cancelled:
            self.findings = result.findings
            self.last_result = result
            if result.partial:
                logger.warning(
                    f"[Session] gen={result.generation} | some areas could not be checked "
                    f"({len(result.failures)} chunk(s) failed)"
                )
        return result

    async def flush(self) -> None:
        await self._debouncer.flush()

    def close(self) -> None:
        self._debouncer.cancel()
        self.dispatcher.cancel()
        self.is_checking = False
