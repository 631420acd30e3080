# src/todo_pro/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite store and the task manager into AppState,
- optionally seeds demo tasks on first run.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..tasks.task_api import seed_sample_tasks
from ..tasks.task_manager import TaskManager
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, autostart: bool = True) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.tasks_db_path)
    manager = TaskManager(
        store,
        tick_interval_seconds=settings.tick_interval_seconds,
        workday_seconds=settings.workday_hours * 3600.0,
        persist_retries=settings.persist_retries,
        autostart=autostart,
    )
    state = AppState(settings=settings, store=store, manager=manager)

    if getattr(settings, "seed_sample_tasks", False):
        seed_sample_tasks(state)

    return state


def shutdown_state(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        state.manager.close()
    except Exception:
        logger.exception("Failed to stop the task manager.")

    try:
        state.store.close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)
