"""Monotonic generation counter used to invalidate superseded dispatches."""
from __future__ import annotations

from typing import Callable, Optional


class GenerationToken:
    """
    Handle for one dispatch.  Stale as soon as its counter has advanced past
    it; callbacks registered with `on_superseded` fire exactly once, at that
    moment.
    """

    def __init__(self, counter: "GenerationCounter", value: int) -> None:
        self._counter = counter
        self.value = value
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_current(self) -> bool:
        return self._counter.current == self.value

    @property
    def is_stale(self) -> bool:
        return not self.is_current

    def on_superseded(self, callback: Callable[[], None]) -> None:
        if self.is_stale:
            callback()
        else:
            self._callbacks.append(callback)

    def _fire(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def __repr__(self) -> str:
        state = "current" if self.is_current else "stale"
        return f"GenerationToken({self.value}, {state})"


class GenerationCounter:
    def __init__(self) -> None:
        self.current = 0
        self._latest: Optional[GenerationToken] = None

    def advance(self) -> GenerationToken:
        """Start a new generation, superseding the previous token."""
        previous = self._latest
        self.current += 1
        token = GenerationToken(self, self.current)
        self._latest = token
        if previous is not None:
            previous._fire()
        return token

    def invalidate(self) -> None:
        """Supersede the latest token without handing out a new one."""
        previous = self._latest
        self.current += 1
        self._latest = None
        if previous is not None:
            previous._fire()
