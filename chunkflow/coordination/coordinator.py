"""
Content Update Coordinator
---------------------------
Arbitrates every writer that wants to replace a document's shared buffer,
so that a person actively typing is never overwritten by a slower
background update (restored version, accepted suggestion, reformat).

States (owned by the coordinator, changed only through `_transition`):

    IDLE         nothing in progress; non-human requests apply immediately
    APPLYING     draining the pending queue; new requests are queued
    TYPING_HOLD  a human edit landed < debounce_window_s ago; requests queue
    CLOSED       unbound from the buffer; everything is rejected

Rules:
  - human edits always pre-empt: queued requests of lower or equal priority
    are discarded, the edit is applied at once, and the hold (re)starts
  - everything else is queued by priority (ties by arrival) while holding
    or applying; a full queue evicts its oldest lowest-priority entry
  - when the hold expires the queue drains one request at a time, with a
    short pause between applications, until empty or a human edit arrives
  - a request whose content equals the buffer's current content is skipped
"""
from __future__ import annotations

import asyncio
import bisect
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from chunkflow.coordination.buffer import DocumentBuffer
from chunkflow.exceptions import ConfigurationError
from chunkflow.schemas import ContentUpdateRequest, UpdateKind

DEBOUNCE_WINDOW_S = 0.3
MAX_QUEUE_SIZE = 50
INTER_APPLY_PAUSE_S = 0.01


class CoordinatorState(str, Enum):
    IDLE = "idle"
    APPLYING = "applying"
    TYPING_HOLD = "typing_hold"
    CLOSED = "closed"


class UpdateOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED_IDENTICAL = "skipped_identical"
    QUEUED = "queued"
    REJECTED = "rejected"      # Lowest priority of a full queue, or coordinator closed
    FAILED = "failed"          # The buffer owner raised while applying


@dataclass
class CoordinatorStats:
    applied: int = 0
    skipped_identical: int = 0
    queued: int = 0
    evicted: int = 0           # Dropped because the queue was full
    discarded: int = 0         # Dropped by a pre-empting human edit
    rejected: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CoordinatorSnapshot:
    state: CoordinatorState
    queue_length: int
    pending_kinds: list[UpdateKind]
    seconds_since_human_edit: Optional[float]


class ContentUpdateCoordinator:
    """
    One instance per open document.  External code only ever submits
    ContentUpdateRequests; all state lives here.

    Usage:
        coordinator = ContentUpdateCoordinator(buffer)
        await coordinator.update(UpdateKind.HUMAN_EDIT, text, "keyboard")
        await coordinator.update(UpdateKind.BACKGROUND_REFORMAT, reformatted, "formatter")
    """

    def __init__(
        self,
        buffer: DocumentBuffer,
        debounce_window_s: float = DEBOUNCE_WINDOW_S,
        max_queue_size: int = MAX_QUEUE_SIZE,
        inter_apply_pause_s: float = INTER_APPLY_PAUSE_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_queue_size < 1:
            raise ConfigurationError(f"max_queue_size must be >= 1, got {max_queue_size}")
        if debounce_window_s < 0 or inter_apply_pause_s < 0:
            raise ConfigurationError("Coordinator delays must be >= 0")

        self.buffer = buffer
        self.debounce_window_s = debounce_window_s
        self.max_queue_size = max_queue_size
        self.inter_apply_pause_s = inter_apply_pause_s
        self._clock = clock

        self._state = CoordinatorState.IDLE
        # Sorted by (-priority, arrival sequence)
        self._queue: list[tuple[int, int, ContentUpdateRequest]] = []
        self._sequence = 0
        self._last_human_at: Optional[float] = None
        self._hold_task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._stats = CoordinatorStats()

        logger.debug(
            f"[Coordinator] Initialised | window={debounce_window_s}s | "
            f"max_queue={max_queue_size} | pause={inter_apply_pause_s}s"
        )

    # --- Public API -----------------------------------------------------------

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def stats(self) -> CoordinatorStats:
        return CoordinatorStats(**self._stats.to_dict())

    def snapshot(self) -> CoordinatorSnapshot:
        since = None if self._last_human_at is None else self._clock() - self._last_human_at
        return CoordinatorSnapshot(
            state=self._state,
            queue_length=len(self._queue),
            pending_kinds=[request.kind for _, _, request in self._queue],
            seconds_since_human_edit=since,
        )

    async def submit(self, request: ContentUpdateRequest) -> UpdateOutcome:
        """Evaluate one request against the current state."""
        logger.debug(
            f"[Coordinator] {request.kind.value} from {request.source_label or '?'} | "
            f"priority={request.priority} | len={len(request.content)} | state={self._state.value}"
        )
        if self._state is CoordinatorState.CLOSED:
            logger.warning(f"[Coordinator] Closed, rejecting {request.kind.value} update")
            self._stats.rejected += 1
            return UpdateOutcome.REJECTED

        if request.is_human:
            return self._handle_human_edit(request)

        if self._state in (CoordinatorState.TYPING_HOLD, CoordinatorState.APPLYING) or self._queue:
            return self._enqueue(request)

        self._transition(CoordinatorState.APPLYING)
        try:
            return self._apply(request)
        finally:
            if self._state is CoordinatorState.APPLYING:
                self._transition(CoordinatorState.IDLE)

    async def update(
        self,
        kind: UpdateKind,
        content: str,
        source_label: str = "",
        **metadata: Any,
    ) -> UpdateOutcome:
        return await self.submit(
            ContentUpdateRequest(kind=kind, content=content, source_label=source_label, metadata=metadata)
        )

    def clear_queue(self) -> int:
        cleared = len(self._queue)
        self._queue.clear()
        if cleared:
            logger.info(f"[Coordinator] Cleared {cleared} queued update(s)")
        return cleared

    async def force_process_queue(self) -> None:
        """Drop the typing hold and drain the queue now."""
        if self._state is CoordinatorState.CLOSED:
            return
        logger.warning("[Coordinator] Force processing queue, ignoring typing hold")
        self._cancel_hold()
        if self._state is CoordinatorState.TYPING_HOLD:
            self._transition(CoordinatorState.IDLE)
        self._start_drain()
        if self._drain_task is not None:
            await asyncio.wait({self._drain_task})

    async def wait_idle(self) -> None:
        """Wait until no hold is active and the queue has drained."""
        while True:
            tasks = {t for t in (self._hold_task, self._drain_task) if t is not None and not t.done()}
            if not tasks:
                return
            await asyncio.wait(tasks)

    def close(self) -> None:
        self._cancel_hold()
        if self._drain_task is not None:
            self._drain_task.cancel()
            self._drain_task = None
        self.clear_queue()
        self._transition(CoordinatorState.CLOSED)

    # --- Transitions ----------------------------------------------------------

    def _transition(self, new_state: CoordinatorState) -> None:
        if new_state is not self._state:
            logger.debug(f"[Coordinator] {self._state.value} -> {new_state.value}")
            self._state = new_state

    def _handle_human_edit(self, request: ContentUpdateRequest) -> UpdateOutcome:
        self._discard_up_to(request.priority)
        outcome = self._apply(request)
        self._enter_typing_hold()
        return outcome

    def _enter_typing_hold(self) -> None:
        self._cancel_hold()
        self._last_human_at = self._clock()
        self._transition(CoordinatorState.TYPING_HOLD)
        self._hold_task = asyncio.create_task(self._expire_hold(), name="typing-hold")

    async def _expire_hold(self) -> None:
        await asyncio.sleep(self.debounce_window_s)
        self._hold_task = None
        if self._state is CoordinatorState.TYPING_HOLD:
            self._transition(CoordinatorState.IDLE)
            self._start_drain()

    def _cancel_hold(self) -> None:
        if self._hold_task is not None and not self._hold_task.done():
            self._hold_task.cancel()
        self._hold_task = None

    # --- Queue ----------------------------------------------------------------

    def _enqueue(self, request: ContentUpdateRequest) -> UpdateOutcome:
        if len(self._queue) >= self.max_queue_size:
            lowest = min(entry[2].priority for entry in self._queue)
            if request.priority < lowest:
                self._stats.rejected += 1
                logger.warning(
                    f"[Coordinator] Queue full, rejecting {request.kind.value} "
                    f"(priority {request.priority} below everything queued)"
                )
                return UpdateOutcome.REJECTED
            victim = min(
                (entry for entry in self._queue if entry[2].priority == lowest),
                key=lambda entry: entry[1],
            )
            self._queue.remove(victim)
            self._stats.evicted += 1
            logger.warning(
                f"[Coordinator] Queue full, evicted oldest {victim[2].kind.value} "
                f"update from {victim[2].source_label or '?'}"
            )

        self._sequence += 1
        bisect.insort(self._queue, (-request.priority, self._sequence, request))
        self._stats.queued += 1
        logger.debug(
            f"[Coordinator] Queued {request.kind.value} | queue={len(self._queue)}"
        )
        if self._state is CoordinatorState.IDLE:
            self._start_drain()
        return UpdateOutcome.QUEUED

    def _discard_up_to(self, priority: int) -> None:
        before = len(self._queue)
        self._queue = [entry for entry in self._queue if entry[2].priority > priority]
        dropped = before - len(self._queue)
        if dropped:
            self._stats.discarded += dropped
            logger.info(f"[Coordinator] Human edit discarded {dropped} pending update(s)")

    def _start_drain(self) -> None:
        if self._queue and self._drain_task is None and self._state is CoordinatorState.IDLE:
            self._drain_task = asyncio.create_task(self._drain(), name="coordinator-drain")

    async def _drain(self) -> None:
        try:
            while self._queue and self._state in (CoordinatorState.IDLE, CoordinatorState.APPLYING):
                self._transition(CoordinatorState.APPLYING)
                _, _, request = self._queue.pop(0)
                self._apply(request)
                await asyncio.sleep(self.inter_apply_pause_s)
        finally:
            self._drain_task = None
            if self._state is CoordinatorState.APPLYING:
                self._transition(CoordinatorState.IDLE)

    # --- Buffer writes --------------------------------------------------------

    def _apply(self, request: ContentUpdateRequest) -> UpdateOutcome:
        try:
            if self.buffer.get_current_content() == request.content:
                self._stats.skipped_identical += 1
                logger.debug(
                    f"[Coordinator] Skipping identical {request.kind.value} update "
                    f"from {request.source_label or '?'}"
                )
                return UpdateOutcome.SKIPPED_IDENTICAL

            started = time.perf_counter()
            self.buffer.apply_content(request.content, notify_listeners=request.is_human)
            elapsed_ms = (time.perf_counter() - started) * 1000
        except Exception as exc:
            self._stats.failed += 1
            logger.error(f"[Coordinator] Failed to apply {request.kind.value} update: {exc}")
            return UpdateOutcome.FAILED

        self._stats.applied += 1
        logger.debug(
            f"[Coordinator] Applied {request.kind.value} from {request.source_label or '?'} "
            f"| {elapsed_ms:.2f}ms"
        )
        if elapsed_ms > 50:
            logger.warning(f"[Coordinator] Slow content update: {elapsed_ms:.2f}ms")
        return UpdateOutcome.APPLIED
