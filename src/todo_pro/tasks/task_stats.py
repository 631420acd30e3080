# src/todo_pro/tasks/task_stats.py

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import date, datetime


def date_key_for(now: float | None = None) -> str:
    """Local calendar date of `now` as YYYY-MM-DD (the statistics storage key)."""
    if now is None:
        now = time.time()
    return datetime.fromtimestamp(now).date().isoformat()


def _ratio(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    value = numerator / denominator
    if not math.isfinite(value):
        return 0.0
    return min(1.0, max(0.0, value))


@dataclass(slots=True)
class DailyStatistics:
    """Per-day counters derived from task activity."""

    date_key: str
    tasks_completed: int = 0
    total_time_spent: float = 0.0
    total_estimated_time: float = 0.0
    tasks_created: int = 0
    overdue_tasks: int = 0
    productivity_score: float = 0.0

    @classmethod
    def for_today(cls, now: float | None = None) -> DailyStatistics:
        return cls(date_key=date_key_for(now))

    @property
    def day(self) -> date:
        return date.fromisoformat(self.date_key)

    @property
    def efficiency(self) -> float:
        return _ratio(self.total_time_spent, self.total_estimated_time)

    @property
    def completion_rate(self) -> float:
        return _ratio(float(self.tasks_completed), float(self.tasks_created))

    def record_completion(self, time_spent: float, estimated: float) -> None:
        self.tasks_completed += 1
        self.total_time_spent += max(0.0, time_spent)
        self.total_estimated_time += max(0.0, estimated)

    def update_productivity_score(self) -> float:
        self.productivity_score = productivity_score(self.efficiency, self.completion_rate)
        return self.productivity_score


def productivity_score(efficiency: float, completion_rate: float) -> float:
    """((efficiency + completion_rate) / 2) * 100, clamped to [0, 100]."""
    score = (efficiency + completion_rate) / 2.0 * 100.0
    if not math.isfinite(score):
        return 0.0
    return max(0.0, min(100.0, score))
