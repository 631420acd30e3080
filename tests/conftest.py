# tests/conftest.py

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

from todo_pro.core.state import AppState
from todo_pro.tasks.task_manager import TaskManager
from todo_pro.tasks.task_store import TaskStore

from .fakes import FakeClock, InMemoryGateway

# Local noon: "today" stays the same day for several hours either way.
T0 = datetime(2026, 3, 10, 12, 0, 0).timestamp()


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="todo-pro-test",
        log_level="DEBUG",
        console_enabled=False,
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        tick_interval_seconds=0.05,
        workday_hours=8.0,
        upcoming_days=7,
        persist_retries=0,
        seed_sample_tasks=False,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture()
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture()
def manager(gateway: InMemoryGateway, clock: FakeClock) -> TaskManager:
    """Manager on an in-memory gateway with a fake clock; the sweep is driven by hand."""
    return TaskManager(gateway, now_provider=clock.now, autostart=False)


@pytest.fixture()
def state(settings: SimpleNamespace, clock: FakeClock) -> AppState:
    """
    AppState wired with a real SQLite TaskStore.

    NOTE: the store's correctness is part of what we want to test, so it is not faked.
    """
    store = TaskStore(settings.tasks_db_path)
    manager = TaskManager(
        store,
        now_provider=clock.now,
        persist_retries=settings.persist_retries,
        autostart=False,
    )
    return AppState(settings=settings, store=store, manager=manager)
