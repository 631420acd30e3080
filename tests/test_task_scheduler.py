# tests/test_task_scheduler.py

from __future__ import annotations

import asyncio
import time

import pytest

from todo_pro.tasks.task_events import TaskEvent, TaskEventType
from todo_pro.tasks.task_manager import TaskManager
from todo_pro.tasks.task_models import Task, TaskStatus
from todo_pro.tasks.task_scheduler import run_task_scheduler, start_scheduler_in_background

from .fakes import InMemoryGateway


class FlakyManager:
    """
    Stand-in for TaskManager whose sweep fails on the first call.

    The scheduler must log the failure and keep ticking.
    """

    def __init__(self) -> None:
        self.calls = 0

    def sweep(self) -> int:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("boom")
        return 0


@pytest.mark.asyncio
async def test_scheduler_marks_due_task_overdue() -> None:
    manager = TaskManager(InMemoryGateway(), autostart=False)
    task = manager.add_task(Task.create("ping", due_at=time.time() - 1))

    runner = asyncio.create_task(run_task_scheduler(manager, interval_seconds=0.01))

    await asyncio.sleep(0.05)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert manager.get_task(task.id).status == TaskStatus.OVERDUE
    assert manager.daily_stats.overdue_tasks == 1


@pytest.mark.asyncio
async def test_scheduler_survives_failing_sweep_and_stops_on_event() -> None:
    manager = FlakyManager()
    stop = asyncio.Event()

    runner = asyncio.create_task(
        run_task_scheduler(manager, interval_seconds=0.01, stop_event=stop)  # type: ignore[arg-type]
    )
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(runner, timeout=1.0)

    assert manager.calls >= 2


def test_background_runner_ticks_and_stops() -> None:
    manager = TaskManager(InMemoryGateway(), autostart=False)
    ticks: list[TaskEvent] = []
    manager.subscribe(lambda e: ticks.append(e) if e.event_type == TaskEventType.TICK else None)

    runner = start_scheduler_in_background(manager, interval_seconds=0.01)
    assert runner is not None

    deadline = time.monotonic() + 2.0
    while len(ticks) < 3 and time.monotonic() < deadline:
        time.sleep(0.01)

    runner.stop()
    runner.join(timeout=2.0)

    assert len(ticks) >= 3
    assert not runner.is_alive


def test_manager_owns_the_scheduler_lifecycle() -> None:
    with TaskManager(InMemoryGateway(), tick_interval_seconds=0.01) as manager:
        assert manager.is_running
    assert not manager.is_running

    # close() is safe to call again.
    manager.close()
