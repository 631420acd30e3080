# src/todo_pro/tasks/task_manager.py

from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from threading import RLock

from ..core.errors import InvalidTask, PersistenceFailure, TaskNotFound
from ..core.ports import Clock, PersistenceGateway
from .task_events import EventHub, TaskEventCallback, TaskEventType
from .task_models import Priority, Task, TaskStatus, next_occurrence
from .task_scheduler import SchedulerBackgroundRunner, start_scheduler_in_background
from .task_stats import DailyStatistics, date_key_for

logger = logging.getLogger(__name__)

DEFAULT_WORKDAY_SECONDS = 8 * 3600.0


class TaskManager:
    """
    Owns the task collection, the active-task reference and today's statistics.

    Every mutation and the periodic sweep run under one RLock, so a 1 Hz sweep can
    never interleave with a start/pause/complete call.

    Lifecycle:
    - the sweep scheduler starts on construction (autostart=True)
    - close() stops it; the manager is also a context manager

    Persistence:
    - every caller mutation saves through the gateway, retrying persist_retries times
    - a save that still fails raises PersistenceFailure and rolls the mutation back,
      so retrying the same call starts from the same state
    - events of a caller mutation are published only once it has been saved
    - the sweep keeps its overdue transitions in memory when a save fails
    """

    __slots__ = (
        "_store",
        "_now",
        "_lock",
        "_tasks",
        "_active_id",
        "_stats",
        "_next_position",
        "_persist_retries",
        "_tick_interval",
        "_runner",
        "_pending_events",
        "workday_seconds",
        "events",
    )

    def __init__(
        self,
        store: PersistenceGateway,
        *,
        now_provider: Clock | None = None,
        tick_interval_seconds: float = 1.0,
        workday_seconds: float = DEFAULT_WORKDAY_SECONDS,
        persist_retries: int = 2,
        autostart: bool = True,
        events: EventHub | None = None,
    ) -> None:
        self._store = store
        self._now: Clock = now_provider or time.time
        self._lock = RLock()
        self._persist_retries = max(0, int(persist_retries))
        self._tick_interval = float(tick_interval_seconds)
        self._runner: SchedulerBackgroundRunner | None = None
        self._pending_events: list[tuple[TaskEventType, str | None]] | None = None
        self.workday_seconds = float(workday_seconds)
        self.events = events or EventHub()

        now = self._now()
        self._tasks: list[Task] = list(store.load_tasks())
        self._next_position = max((t.position for t in self._tasks), default=-1) + 1
        self._active_id: str | None = None
        self._restore_active(now)

        key = date_key_for(now)
        self._stats = store.load_daily_statistics(key) or DailyStatistics(date_key=key)

        logger.info(
            "TaskManager ready tasks=%d active=%s stats_date=%s",
            len(self._tasks),
            self._active_id,
            self._stats.date_key,
        )

        if autostart:
            self.start()

    # ---- lifecycle ----

    def start(self) -> None:
        """Start the background sweep scheduler (no-op if already running)."""
        if self._runner is not None and self._runner.is_alive:
            return
        self._runner = start_scheduler_in_background(self, interval_seconds=self._tick_interval)

    def close(self, timeout: float = 5.0) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        runner.stop()
        runner.join(timeout=timeout)
        logger.info("TaskManager closed.")

    @property
    def is_running(self) -> bool:
        return self._runner is not None and self._runner.is_alive

    def __enter__(self) -> TaskManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ---- notifications ----

    def subscribe(self, callback: TaskEventCallback) -> int:
        return self.events.subscribe(callback)

    def unsubscribe(self, subscriber_id: int) -> None:
        self.events.unsubscribe(subscriber_id)

    # ---- internal helpers ----

    def _restore_active(self, now: float) -> None:
        running = [t for t in self._tasks if t.status == TaskStatus.IN_PROGRESS]
        if not running:
            return
        running.sort(key=lambda t: t.started_at or 0.0)
        active = running[-1]
        for task in running[:-1]:
            logger.warning("Several tasks were in progress on load; pausing %s", task.id)
            task.pause(now)
        self._active_id = active.id

    def _find(self, task_id: str) -> Task:
        for task in self._tasks:
            if task.id == task_id:
                return task
        raise TaskNotFound(task_id)

    def _index_of(self, task_id: str) -> int:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        raise TaskNotFound(task_id)

    def _ensure_today(self, now: float) -> None:
        key = date_key_for(now)
        if key == self._stats.date_key:
            return
        logger.info("Daily statistics roll over %s -> %s", self._stats.date_key, key)
        self._stats = self._store.load_daily_statistics(key) or DailyStatistics(date_key=key)
        self._emit(TaskEventType.STATS_CHANGED)

    def _pause_active(self, now: float, *, keep: str | None = None) -> None:
        """Pause whatever task is active (unless it is `keep`)."""
        if self._active_id is None or self._active_id == keep:
            return
        prev_id, self._active_id = self._active_id, None
        try:
            prev = self._find(prev_id)
        except TaskNotFound:
            return
        if prev.status == TaskStatus.IN_PROGRESS:
            prev.pause(now)
            logger.debug("Task %s paused implicitly", prev.id)
            self._emit(TaskEventType.TASK_UPDATED, task_id=prev.id)

    def _clear_active(self, task_id: str) -> None:
        if self._active_id == task_id:
            self._active_id = None

    def _insert(self, task: Task, now: float) -> Task:
        stored = task.snapshot()
        stored.priority = Priority(int(stored.priority))
        stored.created_at = now
        stored.position = self._next_position
        self._next_position += 1
        self._tasks.append(stored)
        self._stats.tasks_created += 1
        self._emit(TaskEventType.TASK_ADDED, task_id=stored.id)
        return stored

    def _emit(self, event_type: TaskEventType, task_id: str | None = None) -> None:
        """Publish now, or queue until the surrounding mutation has been saved."""
        if self._pending_events is not None:
            self._pending_events.append((event_type, task_id))
        else:
            self.events.publish(event_type, task_id=task_id)

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """
        Run a caller mutation all-or-nothing.

        Any exception (a refused transition, a save that kept failing) restores the
        collection, the active ref and the statistics, and drops the queued events.
        """
        with self._lock:
            tasks = [t.snapshot() for t in self._tasks]
            active_id = self._active_id
            stats = replace(self._stats)
            next_position = self._next_position
            self._pending_events = []
            try:
                yield
            except Exception:
                self._tasks = tasks
                self._active_id = active_id
                self._stats = stats
                self._next_position = next_position
                self._pending_events = None
                raise

            pending, self._pending_events = self._pending_events, None
            for event_type, task_id in pending:
                self.events.publish(event_type, task_id=task_id)

    def _persist(self, *, tasks: bool = True, stats: bool = False) -> None:
        attempts = 1 + self._persist_retries
        attempt = 0

        while True:
            attempt += 1
            try:
                if tasks:
                    self._store.save_tasks([t.snapshot() for t in self._tasks])
                if stats:
                    self._store.save_daily_statistics(replace(self._stats), self._stats.date_key)
                return
            except PersistenceFailure as e:
                logger.warning("Persist attempt %d/%d failed: %s", attempt, attempts, e)
                if attempt >= attempts:
                    raise

    @staticmethod
    def _validate(task: Task) -> None:
        if not task.title or not task.title.strip():
            raise InvalidTask("title is required")
        if not math.isfinite(task.estimated_duration) or task.estimated_duration < 0:
            raise InvalidTask(f"estimated_duration must be >= 0, got {task.estimated_duration!r}")
        if task.repeat_interval < 1:
            raise InvalidTask(f"repeat_interval must be >= 1, got {task.repeat_interval!r}")
        if task.due_at is not None and not math.isfinite(task.due_at):
            raise InvalidTask(f"due_at must be a finite timestamp, got {task.due_at!r}")
        try:
            Priority(int(task.priority))
        except (TypeError, ValueError) as e:
            raise InvalidTask(f"priority must be 0, 1 or 2, got {task.priority!r}") from e

        if task.status == TaskStatus.IN_PROGRESS and task.started_at is None:
            raise InvalidTask("an in-progress task needs started_at")
        if task.status == TaskStatus.PAUSED and (task.started_at is None or task.paused_at is None):
            raise InvalidTask("a paused task needs started_at and paused_at")
        if task.status == TaskStatus.COMPLETED and task.completed_at is None:
            raise InvalidTask("a completed task needs completed_at")

    @staticmethod
    def _validate_new(task: Task) -> None:
        """New tasks enter the collection pending, with no timing history."""
        if task.status != TaskStatus.PENDING:
            raise InvalidTask(f"a new task must be pending, got {task.status.value}")
        if (
            task.started_at is not None
            or task.paused_at is not None
            or task.completed_at is not None
            or task.pause_intervals
            or task.actual_duration
        ):
            raise InvalidTask("a new task must not carry timing fields; use start/complete")

    # ---- CRUD ----

    def add_task(self, task: Task) -> Task:
        """Insert a new task, stamping its creation time and sequence position."""
        self._validate(task)
        self._validate_new(task)
        with self._mutation():
            if any(t.id == task.id for t in self._tasks):
                raise InvalidTask(f"duplicate task id: {task.id}")
            now = self._now()
            self._ensure_today(now)
            stored = self._insert(task, now)
            self._emit(TaskEventType.STATS_CHANGED)
            logger.info("Task added id=%s title=%r", stored.id, stored.title)
            self._persist(tasks=True, stats=True)
            return stored.snapshot()

    def update_task(self, task: Task) -> Task:
        """
        Replace a task by identity.

        created_at and position are owned by the manager and survive the update.
        """
        self._validate(task)
        with self._mutation():
            idx = self._index_of(task.id)
            existing = self._tasks[idx]
            now = self._now()

            replacement = task.snapshot()
            replacement.priority = Priority(int(replacement.priority))
            replacement.created_at = existing.created_at
            replacement.position = existing.position

            if replacement.status == TaskStatus.IN_PROGRESS:
                self._pause_active(now, keep=replacement.id)
                self._active_id = replacement.id
            else:
                self._clear_active(replacement.id)

            self._tasks[idx] = replacement
            self._emit(TaskEventType.TASK_UPDATED, task_id=replacement.id)
            logger.debug("Task updated id=%s", replacement.id)
            self._persist()
            return replacement.snapshot()

    def delete_task(self, task_id: str) -> None:
        with self._mutation():
            idx = self._index_of(task_id)
            del self._tasks[idx]
            self._clear_active(task_id)
            self._emit(TaskEventType.TASK_REMOVED, task_id=task_id)
            logger.info("Task deleted id=%s", task_id)
            self._persist()

    def archive_task(self, task_id: str, archived: bool = True) -> Task:
        with self._mutation():
            task = self._find(task_id)
            task.archived = bool(archived)
            self._emit(TaskEventType.TASK_UPDATED, task_id=task_id)
            self._persist()
            return task.snapshot()

    # ---- lifecycle operations ----

    def start_task(self, task_id: str) -> Task:
        """Start a task; any other active task is paused first."""
        with self._mutation():
            task = self._find(task_id)
            task.ensure_can("start")
            now = self._now()
            self._pause_active(now, keep=task.id)
            task.start(now)
            self._active_id = task.id
            self._emit(TaskEventType.TASK_UPDATED, task_id=task.id)
            logger.info("Task %s -> in_progress", task.id)
            self._persist()
            return task.snapshot()

    def pause_task(self, task_id: str) -> Task:
        """Pause the running task. Pausing an overdue task leaves it as it is."""
        with self._mutation():
            task = self._find(task_id)
            task.pause(self._now())
            if task.status == TaskStatus.OVERDUE:
                logger.debug("Task %s is overdue; pause is a no-op", task.id)
                return task.snapshot()
            self._clear_active(task.id)
            self._emit(TaskEventType.TASK_UPDATED, task_id=task.id)
            logger.info("Task %s -> paused", task.id)
            self._persist()
            return task.snapshot()

    def resume_task(self, task_id: str) -> Task:
        """Resume a paused task; any other active task is paused first."""
        with self._mutation():
            task = self._find(task_id)
            task.ensure_can("resume")
            now = self._now()
            self._pause_active(now, keep=task.id)
            task.resume(now)
            self._active_id = task.id
            self._emit(TaskEventType.TASK_UPDATED, task_id=task.id)
            logger.info("Task %s -> in_progress (resumed)", task.id)
            self._persist()
            return task.snapshot()

    def complete_task(self, task_id: str) -> Task:
        """
        Complete a task and account for it in today's statistics.

        A repeating task with a due date spawns its successor (see next_occurrence),
        inserted like any added task. The productivity score is recomputed last.
        """
        with self._mutation():
            task = self._find(task_id)
            task.ensure_can("complete")
            now = self._now()
            self._ensure_today(now)

            task.complete(now)
            self._clear_active(task.id)
            self._stats.record_completion(task.actual_duration, task.estimated_duration)
            self._emit(TaskEventType.TASK_UPDATED, task_id=task.id)
            logger.info("Task %s -> completed elapsed=%.0fs", task.id, task.actual_duration)

            successor = next_occurrence(task)
            if successor is not None:
                stored = self._insert(successor, now)
                logger.info("Repeat task %s spawned %s due_at=%s", task.id, stored.id, stored.due_at)

            self._stats.update_productivity_score()
            self._emit(TaskEventType.STATS_CHANGED)
            self._persist(tasks=True, stats=True)
            return task.snapshot()

    def reset_task(self, task_id: str) -> Task:
        with self._mutation():
            task = self._find(task_id)
            task.reset()
            self._clear_active(task.id)
            self._emit(TaskEventType.TASK_UPDATED, task_id=task.id)
            logger.info("Task %s -> pending (reset)", task.id)
            self._persist()
            return task.snapshot()

    # ---- periodic sweep ----

    def sweep(self, now: float | None = None) -> int:
        """
        Re-derive overdue status for every task.

        Returns how many tasks were newly marked overdue. Persistence failures are
        logged, not raised: the sweep is best-effort and must keep ticking.
        """
        with self._lock:
            if now is None:
                now = self._now()
            self._ensure_today(now)

            changed = 0
            for task in self._tasks:
                if task.status in (TaskStatus.COMPLETED, TaskStatus.OVERDUE):
                    continue
                if not task.is_overdue(now):
                    continue
                task.mark_overdue(now)
                self._clear_active(task.id)
                self._stats.overdue_tasks += 1
                changed += 1
                self._emit(TaskEventType.TASK_UPDATED, task_id=task.id)

            if changed:
                self._emit(TaskEventType.STATS_CHANGED)
                try:
                    self._persist(tasks=True, stats=True)
                except PersistenceFailure:
                    logger.exception("Sweep could not persist %d overdue transition(s)", changed)

            self._emit(TaskEventType.TICK)
            return changed

    # ---- read-only views ----

    def get_task(self, task_id: str) -> Task:
        with self._lock:
            return self._find(task_id).snapshot()

    def list_tasks(self) -> list[Task]:
        with self._lock:
            return [t.snapshot() for t in self._tasks]

    def tasks_for_status(self, status: TaskStatus) -> list[Task]:
        with self._lock:
            return [t.snapshot() for t in self._tasks if t.status == status and not t.archived]

    @property
    def active_task_id(self) -> str | None:
        with self._lock:
            return self._active_id

    @property
    def active_task(self) -> Task | None:
        with self._lock:
            if self._active_id is None:
                return None
            return self._find(self._active_id).snapshot()

    @property
    def daily_stats(self) -> DailyStatistics:
        with self._lock:
            return replace(self._stats)

    def _today_bounds(self, now: float) -> tuple[float, float]:
        start = datetime.fromtimestamp(now).replace(hour=0, minute=0, second=0, microsecond=0)
        return start.timestamp(), (start + timedelta(days=1)).timestamp()

    def tasks_for_today(self, now: float | None = None) -> list[Task]:
        """
        Non-archived tasks with no due date or a due date today (local time).

        Order: priority high -> low, then due date ascending with undated tasks after
        dated ones, then insertion order.
        """
        if now is None:
            now = self._now()
        start, end = self._today_bounds(now)

        with self._lock:
            todays = [
                t.snapshot()
                for t in self._tasks
                if not t.archived and (t.due_at is None or start <= t.due_at < end)
            ]

        todays.sort(
            key=lambda t: (
                -int(t.priority),
                t.due_at is None,
                t.due_at if t.due_at is not None else 0.0,
                t.position,
            )
        )
        return todays

    def todays_remaining_workload(self, now: float | None = None) -> float:
        if now is None:
            now = self._now()
        return sum(
            t.remaining_time(now)
            for t in self.tasks_for_today(now)
            if t.status != TaskStatus.COMPLETED
        )

    def todays_completed_work(self, now: float | None = None) -> float:
        return sum(
            t.actual_duration
            for t in self.tasks_for_today(now)
            if t.status == TaskStatus.COMPLETED
        )

    def todays_total_estimated_work(self, now: float | None = None) -> float:
        return sum(t.estimated_duration for t in self.tasks_for_today(now))

    def free_time(self, now: float | None = None) -> float:
        return max(0.0, self.workday_seconds - self.todays_remaining_workload(now))

    def slack_time(self, now: float | None = None) -> float:
        return max(0.0, self.todays_total_estimated_work(now) - self.todays_completed_work(now))

    def current_task_remaining_time(self, now: float | None = None) -> float:
        task = self.active_task
        if task is None:
            return 0.0
        return task.remaining_time(self._now() if now is None else now)

    def overdue_tasks(self, now: float | None = None) -> list[Task]:
        if now is None:
            now = self._now()
        with self._lock:
            return [t.snapshot() for t in self._tasks if t.is_overdue(now) and not t.archived]

    def upcoming_tasks(self, within_days: int = 7, now: float | None = None) -> list[Task]:
        if now is None:
            now = self._now()
        horizon = (datetime.fromtimestamp(now) + timedelta(days=within_days)).timestamp()

        with self._lock:
            upcoming = [
                t.snapshot()
                for t in self._tasks
                if t.due_at is not None and now < t.due_at <= horizon and not t.archived
            ]
        upcoming.sort(key=lambda t: (t.due_at, t.position))
        return upcoming

    def search_tasks(self, query: str) -> list[Task]:
        """Case-insensitive substring match over title, description and tags."""
        needle = (query or "").casefold()
        with self._lock:
            if not needle:
                return [t.snapshot() for t in self._tasks]
            return [
                t.snapshot()
                for t in self._tasks
                if needle in t.title.casefold()
                or needle in t.description.casefold()
                or any(needle in tag.casefold() for tag in t.tags)
            ]
