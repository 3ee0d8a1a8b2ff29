"""Explicit publish/subscribe support for cache state holders."""

from collections.abc import Callable

import structlog

logger = structlog.get_logger(__name__)

# Listener receives the name of the change event, e.g. "status_changed"
Listener = Callable[[str], None]


class Observable:
    """Base class for state holders that notify subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that removes the listener again
        """
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self, event: str) -> None:
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Listener raised during notification",
                    source=type(self).__name__,
                    event=event,
                )
