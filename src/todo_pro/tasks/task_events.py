# src/todo_pro/tasks/task_events.py

"""In-process change notifications emitted by TaskManager."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from threading import RLock

logger = logging.getLogger(__name__)


class TaskEventType(StrEnum):
    TASK_ADDED = "task_added"
    TASK_UPDATED = "task_updated"
    TASK_REMOVED = "task_removed"
    STATS_CHANGED = "stats_changed"
    TICK = "tick"


@dataclass(frozen=True, slots=True)
class TaskEvent:
    """One change notification. event_id is strictly increasing per hub."""

    event_id: int
    event_type: TaskEventType
    timestamp: float
    task_id: str | None = None


TaskEventCallback = Callable[[TaskEvent], None]


class EventHub:
    """
    Thread-safe pub/sub hub with bounded history.

    Callbacks run synchronously on the publishing thread (the caller's thread for
    mutations, the scheduler thread for ticks). A callback that raises is logged and
    skipped; it never breaks publishing or the operation that triggered it.
    """

    __slots__ = ("_events", "_subscribers", "_next_event_id", "_next_subscriber_id", "_lock")

    def __init__(self, *, history_limit: int = 512) -> None:
        self._events: deque[TaskEvent] = deque(maxlen=history_limit)
        self._subscribers: dict[int, TaskEventCallback] = {}
        self._next_event_id = 1
        self._next_subscriber_id = 1
        self._lock = RLock()

    def publish(self, event_type: TaskEventType, *, task_id: str | None = None) -> TaskEvent:
        with self._lock:
            event = TaskEvent(
                event_id=self._next_event_id,
                event_type=event_type,
                timestamp=time.time(),
                task_id=task_id,
            )
            self._next_event_id += 1
            self._events.append(event)
            subscribers = list(self._subscribers.values())

        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed event=%s", event.event_type.value)

        return event

    def subscribe(self, callback: TaskEventCallback) -> int:
        with self._lock:
            subscriber_id = self._next_subscriber_id
            self._next_subscriber_id += 1
            self._subscribers[subscriber_id] = callback
            return subscriber_id

    def unsubscribe(self, subscriber_id: int) -> None:
        with self._lock:
            self._subscribers.pop(subscriber_id, None)

    def list_recent(self, *, limit: int = 200) -> list[TaskEvent]:
        with self._lock:
            if limit <= 0:
                return []
            return list(self._events)[-limit:]

    @property
    def version(self) -> int:
        """Id of the last published event (0 before the first one)."""
        with self._lock:
            return self._next_event_id - 1

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
