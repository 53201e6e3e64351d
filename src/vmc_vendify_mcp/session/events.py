"""Broadcast event streams for responses and connection loss."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class EventStream(Generic[T]):
    """A multicast stream: every published value goes to every listener.

    Listeners run on the publishing thread. A listener that raises is
    logged and skipped; it never breaks the publisher or other listeners.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener[T]] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener[T]) -> Callable[[], None]:
        """Register *listener* and return a callable that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, value: T) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(value)
            except Exception:
                logger.exception("Listener on %s stream failed", self.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)
