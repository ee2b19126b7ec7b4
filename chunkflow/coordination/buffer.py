"""In-memory document buffer owner used by the coordinator, CLI and tests."""
from __future__ import annotations

from typing import Callable, Protocol

from loguru import logger

ChangeListener = Callable[[str], None]


class DocumentBuffer(Protocol):
    """What the coordinator needs from whoever owns the text buffer."""

    def get_current_content(self) -> str: ...

    def apply_content(self, content: str, notify_listeners: bool = False) -> None: ...


class InMemoryBuffer:
    """A plain string buffer with change listeners and a write log."""

    def __init__(self, content: str = "") -> None:
        self._content = content
        self._listeners: list[ChangeListener] = []
        self.writes: list[str] = []

    def get_current_content(self) -> str:
        return self._content

    def apply_content(self, content: str, notify_listeners: bool = False) -> None:
        self._content = content
        self.writes.append(content)
        if notify_listeners:
            for listener in list(self._listeners):
                listener(content)

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register `listener`; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
            else:
                logger.debug("[Buffer] Listener already removed")

        return remove
