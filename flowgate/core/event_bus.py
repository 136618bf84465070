"""Event bus — fans stage and run events out to every subscriber.

Observers are purely informational: a subscriber that raises is logged and
skipped, and never affects the runner or the remaining subscribers.  The
bus also keeps a bounded in-memory history per run for listeners that
prefer polling over subscribing.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from typing import Union

from flowgate.models.events import RunEvent, StageEvent

logger = logging.getLogger(__name__)

PipelineEvent = Union[StageEvent, RunEvent]
Subscriber = Callable[[PipelineEvent], None]


class EventBus:
    """Routes pipeline events to all registered subscribers.

    Usage
    -----
    >>> bus = EventBus()
    >>> seen = []
    >>> bus.subscribe(seen.append)
    >>> bus.publish(StageEvent(run_id="r1", stage_id="input", status="active"))
    1
    """

    def __init__(self, *, history_limit: int = 500) -> None:
        self._subscribers: list[Subscriber] = []
        self._history: dict[str, deque[PipelineEvent]] = {}
        self._history_limit = history_limit
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Subscriber management
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> None:
        """Register *callback*.  Duplicate registration is ignored."""
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscribers(self) -> list[Subscriber]:
        return list(self._subscribers)

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(self, event: PipelineEvent) -> int:
        """Deliver *event* to every subscriber.

        Returns the number of subscribers that accepted it.
        """
        with self._lock:
            history = self._history.setdefault(
                event.run_id, deque(maxlen=self._history_limit)
            )
            history.append(event)
            subscribers = list(self._subscribers)

        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception:  # noqa: BLE001
                logger.exception("Event subscriber %r failed for run %s", callback, event.run_id)
        return delivered

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def history(self, run_id: str) -> list[PipelineEvent]:
        """Events published for *run_id*, oldest first."""
        with self._lock:
            return list(self._history.get(run_id, ()))

    def stage_history(self, run_id: str) -> list[StageEvent]:
        return [e for e in self.history(run_id) if isinstance(e, StageEvent)]

    def clear(self, run_id: str | None = None) -> None:
        with self._lock:
            if run_id is None:
                self._history.clear()
            else:
                self._history.pop(run_id, None)
