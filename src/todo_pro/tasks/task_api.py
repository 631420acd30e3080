# src/todo_pro/tasks/task_api.py

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from ..core.errors import InvalidTask, TaskNotFound
from ..core.state import AppState
from .task_models import RepeatType, Task

logger = logging.getLogger(__name__)


def schedule_task(
    state: AppState,
    *,
    title: str,
    estimated_minutes: float = 0,
    due_in_hours: float | None = None,
    description: str = "",
    priority: int = 0,
    repeat_type: RepeatType | str = RepeatType.NONE,
    repeat_interval: int = 1,
    tags: Iterable[str] = (),
) -> Task:
    """
    Convenience helper: validate and add a task in one call.
    Uses state.manager (already constructed in bootstrap).
    """
    if estimated_minutes is None or float(estimated_minutes) < 0:
        raise InvalidTask(f"estimated minutes must be >= 0, got {estimated_minutes!r}")

    due_at = None
    if due_in_hours is not None:
        due_at = time.time() + float(due_in_hours) * 3600

    task = Task.create(
        title,
        description=description,
        estimated_duration=float(estimated_minutes) * 60,
        due_at=due_at,
        priority=priority,
        repeat_type=repeat_type,
        repeat_interval=repeat_interval,
        tags=tags,
    )
    return state.manager.add_task(task)


def resolve_task_id(state: AppState, ref: str) -> str:
    """
    Resolve a full id or a unique id prefix (as shown by /list) to a task id.

    Raises TaskNotFound when nothing or more than one task matches.
    """
    ref = (ref or "").strip().lower()
    if not ref:
        raise TaskNotFound(ref)

    matches = [t.id for t in state.manager.list_tasks() if t.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        logger.debug("Ambiguous task ref %r matches %d tasks", ref, len(matches))
    raise TaskNotFound(ref)


def seed_sample_tasks(state: AppState) -> list[Task]:
    """Add a few demo tasks to an empty collection (first run convenience)."""
    if state.manager.list_tasks():
        return []

    added = [
        schedule_task(
            state,
            title="Write project report",
            description="Monthly work summary",
            estimated_minutes=120,
            due_in_hours=4,
            repeat_type=RepeatType.WEEKLY,
            priority=2,
        ),
        schedule_task(
            state,
            title="Practice a new framework",
            description="Try out the latest features",
            estimated_minutes=90,
            repeat_type=RepeatType.DAILY,
            priority=1,
        ),
        schedule_task(
            state,
            title="Workout",
            description="Run for 30 minutes",
            estimated_minutes=30,
            repeat_type=RepeatType.DAILY,
            priority=0,
            tags=["health"],
        ),
    ]
    logger.info("Seeded %d sample tasks", len(added))
    return added
