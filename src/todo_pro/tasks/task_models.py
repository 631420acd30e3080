# src/todo_pro/tasks/task_models.py

from __future__ import annotations

import calendar
import math
import time
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import IntEnum, StrEnum
from uuid import uuid4

from ..core.errors import InvalidTask, InvalidTransition


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - "overdue" is set only by the periodic sweep; explicit actions (start, complete,
      reset) still apply to an overdue task.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    OVERDUE = "overdue"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class RepeatType(StrEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"  # every `repeat_interval` days

    @classmethod
    def from_db(cls, raw: str | None) -> RepeatType:
        if not raw:
            return cls.NONE
        try:
            return cls(raw)
        except ValueError:
            return cls.NONE


class Priority(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2


# Lifecycle operation -> statuses it is valid from.
_ALLOWED_FROM: dict[str, frozenset[TaskStatus]] = {
    "start": frozenset({TaskStatus.PENDING, TaskStatus.PAUSED, TaskStatus.OVERDUE}),
    "pause": frozenset({TaskStatus.IN_PROGRESS, TaskStatus.OVERDUE}),
    "resume": frozenset({TaskStatus.PAUSED}),
    "complete": frozenset(set(TaskStatus) - {TaskStatus.COMPLETED}),
    "reset": frozenset(TaskStatus),
}


def _finite_or_zero(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def _clamp01(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(1.0, max(0.0, value))


@dataclass(slots=True)
class Task:
    """
    One unit of work and its timing state.

    Timestamps are epoch seconds (floats), durations are seconds.
    `created_at` and `position` stay at their defaults until the manager inserts the task.
    """

    title: str
    description: str = ""
    estimated_duration: float = 0.0
    due_at: float | None = None
    priority: Priority = Priority.LOW
    repeat_type: RepeatType = RepeatType.NONE
    repeat_interval: int = 1
    tags: list[str] = field(default_factory=list)
    archived: bool = False

    id: str = field(default_factory=lambda: uuid4().hex)
    status: TaskStatus = TaskStatus.PENDING
    actual_duration: float = 0.0
    created_at: float = 0.0
    started_at: float | None = None
    paused_at: float | None = None
    completed_at: float | None = None
    position: int = 0
    pause_intervals: list[tuple[float, float]] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        title: str,
        *,
        description: str = "",
        estimated_duration: float = 0.0,
        due_at: float | None = None,
        priority: int = Priority.LOW,
        repeat_type: RepeatType | str = RepeatType.NONE,
        repeat_interval: int = 1,
        tags: Iterable[str] = (),
    ) -> Task:
        """Validated constructor used at the boundary (console, bootstrap, tests)."""
        if not title or not title.strip():
            raise InvalidTask("title is required")

        try:
            estimated = float(estimated_duration)
        except (TypeError, ValueError) as e:
            raise InvalidTask(f"estimated_duration must be a number: {estimated_duration!r}") from e
        if not math.isfinite(estimated) or estimated < 0:
            raise InvalidTask(f"estimated_duration must be >= 0, got {estimated_duration!r}")

        if due_at is not None and not math.isfinite(float(due_at)):
            raise InvalidTask(f"due_at must be a finite timestamp, got {due_at!r}")

        try:
            prio = Priority(int(priority))
        except ValueError as e:
            raise InvalidTask(f"priority must be 0, 1 or 2, got {priority!r}") from e

        try:
            repeat = RepeatType(repeat_type)
        except ValueError as e:
            raise InvalidTask(f"unknown repeat type: {repeat_type!r}") from e

        if int(repeat_interval) < 1:
            raise InvalidTask(f"repeat_interval must be >= 1, got {repeat_interval!r}")

        clean_tags: list[str] = []
        for tag in tags:
            t = str(tag).strip()
            if t and t not in clean_tags:
                clean_tags.append(t)

        return cls(
            title=title.strip(),
            description=(description or "").strip(),
            estimated_duration=estimated,
            due_at=float(due_at) if due_at is not None else None,
            priority=prio,
            repeat_type=repeat,
            repeat_interval=int(repeat_interval),
            tags=clean_tags,
        )

    def snapshot(self) -> Task:
        """Detached copy; mutating it never touches the manager's collection."""
        return replace(self, tags=list(self.tags), pause_intervals=list(self.pause_intervals))

    # ---- time derivation ----

    @property
    def paused_duration(self) -> float:
        """Sum of all closed pause -> resume intervals."""
        return sum(max(0.0, end - start) for start, end in self.pause_intervals)

    def elapsed_time(self, now: float | None = None) -> float:
        if self.started_at is None:
            return 0.0
        if now is None:
            now = time.time()

        if self.status == TaskStatus.IN_PROGRESS:
            elapsed = now - self.started_at - self.paused_duration
        elif self.status == TaskStatus.COMPLETED and self.completed_at is not None:
            elapsed = self.completed_at - self.started_at - self.paused_duration
        elif self.paused_at is not None:
            # Paused (or frozen by the sweep): the clock stopped at paused_at.
            elapsed = self.paused_at - self.started_at - self.paused_duration
        else:
            elapsed = self.actual_duration

        return max(0.0, _finite_or_zero(elapsed))

    def remaining_time(self, now: float | None = None) -> float:
        if self.status != TaskStatus.IN_PROGRESS or self.started_at is None:
            return max(0.0, _finite_or_zero(self.estimated_duration))
        if now is None:
            now = time.time()
        elapsed = now - self.started_at - self.paused_duration
        return max(0.0, _finite_or_zero(self.estimated_duration - elapsed))

    def is_overdue(self, now: float | None = None) -> bool:
        if self.due_at is None or self.status == TaskStatus.COMPLETED:
            return False
        if now is None:
            now = time.time()
        return now > self.due_at

    def progress(self, now: float | None = None) -> float:
        if not self.estimated_duration > 0:
            return 0.0
        return _clamp01(self.elapsed_time(now) / self.estimated_duration)

    # ---- lifecycle mutators (called by TaskManager under its lock) ----

    def can(self, operation: str) -> bool:
        return self.status in _ALLOWED_FROM[operation]

    def ensure_can(self, operation: str) -> None:
        if not self.can(operation):
            raise InvalidTransition(self.id, self.status.value, operation)

    def start(self, now: float) -> None:
        self.ensure_can("start")
        self.status = TaskStatus.IN_PROGRESS
        self.started_at = now
        self.paused_at = None
        self.pause_intervals = []

    def pause(self, now: float) -> None:
        """Pause a running task. On an overdue task this is a no-op: the sweep already froze its clock."""
        self.ensure_can("pause")
        if self.status == TaskStatus.OVERDUE:
            return
        self.status = TaskStatus.PAUSED
        self.paused_at = now

    def resume(self, now: float) -> None:
        self.ensure_can("resume")
        self._close_pause(now)
        self.status = TaskStatus.IN_PROGRESS

    def complete(self, now: float) -> None:
        self.ensure_can("complete")
        self._close_pause(now)
        self.status = TaskStatus.COMPLETED
        self.completed_at = now
        self.actual_duration = self.elapsed_time(now)

    def reset(self) -> None:
        self.status = TaskStatus.PENDING
        self.started_at = None
        self.paused_at = None
        self.completed_at = None
        self.actual_duration = 0.0
        self.pause_intervals = []

    def mark_overdue(self, now: float) -> None:
        """Sweep-only transition. A running clock is frozen at `now`."""
        if self.status == TaskStatus.IN_PROGRESS:
            self.paused_at = now
        self.status = TaskStatus.OVERDUE

    def _close_pause(self, now: float) -> None:
        if self.paused_at is not None:
            self.pause_intervals.append((self.paused_at, max(self.paused_at, now)))
            self.paused_at = None


# ---- repeat rules ----


def _add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def next_due_date(due_at: float, repeat_type: RepeatType, interval: int) -> float | None:
    """
    Advance a due date by one repeat step in local calendar time.

    Month and year steps clamp the day to the target month's length (Jan 31 + 1 month
    -> Feb 28/29).
    """
    step = max(1, int(interval))
    base = datetime.fromtimestamp(due_at)

    if repeat_type == RepeatType.DAILY or repeat_type == RepeatType.CUSTOM:
        nxt = base + timedelta(days=step)
    elif repeat_type == RepeatType.WEEKLY:
        nxt = base + timedelta(weeks=step)
    elif repeat_type == RepeatType.MONTHLY:
        nxt = _add_months(base, step)
    elif repeat_type == RepeatType.YEARLY:
        nxt = _add_months(base, 12 * step)
    else:
        return None

    return nxt.timestamp()


def next_occurrence(task: Task) -> Task | None:
    """
    Build the successor of a repeating task, or None.

    The successor keeps the task's content (title, description, estimate, priority,
    tags, repeat rule) under a fresh id, with the due date advanced by one step and
    every timing field back at its initial value. Tasks without a due date do not
    repeat.
    """
    if task.repeat_type == RepeatType.NONE or task.due_at is None:
        return None

    due = next_due_date(task.due_at, task.repeat_type, task.repeat_interval)
    if due is None:
        return None

    return Task(
        title=task.title,
        description=task.description,
        estimated_duration=task.estimated_duration,
        due_at=due,
        priority=task.priority,
        repeat_type=task.repeat_type,
        repeat_interval=task.repeat_interval,
        tags=list(task.tags),
    )
