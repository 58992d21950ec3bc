from __future__ import annotations

import logging
import threading
from typing import Any, Callable


logger = logging.getLogger(__name__)


Subscriber = Callable[[str, Any], None]


class EventBroadcaster:
    """In-process publish/subscribe hub for engine events.

    A failing subscriber is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, event: str, payload: Any = None) -> int:
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for callback in subscribers:
            try:
                callback(event, payload)
                delivered += 1
            except Exception:
                logger.exception("Subscriber failed while handling %s", event)

        logger.info("Broadcast %s to %s subscribers", event, delivered)
        return delivered
