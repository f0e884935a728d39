"""
Publish/subscribe channel for progress events.
"""

import logging
from collections.abc import Callable
from typing import Any

log = logging.getLogger(__name__)

ProgressListener = Callable[[Any], None]


class ProgressBus:
    """
    Fans progress events out to every subscriber. Delivery is best-effort: a
    listener that raises is logged and does not affect the publisher.
    """

    def __init__(self) -> None:
        self._listeners: list[ProgressListener] = []

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Adds a listener and returns a callable that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                log.debug(f"Progress listener {listener!r} failed: {e}")

    def __len__(self) -> int:
        return len(self._listeners)
