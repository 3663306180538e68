"""
Task statistics invalidation.

Whenever a task's status changes, anything caching per-event task statistics
has to recompute them. Writers call ``publish(event_id)``; readers either
``subscribe`` a callback or compare ``last_invalidated(event_id)`` against the
time they last computed.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Subscriber = Callable[[Optional[str], datetime], None]


class StatsInvalidationBus:

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []
        self._stamps: Dict[Optional[str], datetime] = {}

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback(event_id, ts)``. Returns a function that unsubscribes it."""

        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event_id: Optional[str] = None) -> datetime:
        ts = datetime.now(tz=timezone.utc)
        key = str(event_id) if event_id is not None else None

        with self._lock:
            self._stamps[key] = ts
            self._stamps[None] = ts
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(key, ts)
            except Exception:
                logger.exception("Stats invalidation subscriber %r failed", callback)
        return ts

    def last_invalidated(self, event_id: Optional[str] = None) -> Optional[datetime]:
        """Latest publish for ``event_id``; with no id, the latest publish overall."""

        key = str(event_id) if event_id is not None else None
        with self._lock:
            return self._stamps.get(key)

    def forget(self, event_id: str) -> None:
        """Drop the stamp of a deleted event. The global stamp is kept."""

        with self._lock:
            self._stamps.pop(str(event_id), None)
