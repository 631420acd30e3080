# src/todo_pro/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The manager depends on Protocols instead of concrete implementations.
This keeps storage swappable and makes testing easier (in-memory fakes).
"""

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import Task
    from ..tasks.task_stats import DailyStatistics

Clock = Callable[[], float]
# Returns "now" as epoch seconds (time.time-compatible).


class PersistenceGateway(Protocol):
    """
    Durable storage for the task list and per-day statistics.

    Contract:
    - save_tasks replaces the whole stored list
    - load_tasks returns [] when nothing was saved yet
    - load_daily_statistics returns None when no record exists for date_key
    - failures are raised as PersistenceFailure
    """

    def save_tasks(self, tasks: list[Task]) -> None: ...
    def load_tasks(self) -> list[Task]: ...

    def save_daily_statistics(self, stats: DailyStatistics, date_key: str) -> None: ...
    def load_daily_statistics(self, date_key: str) -> DailyStatistics | None: ...
