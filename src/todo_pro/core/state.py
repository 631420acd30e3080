# src/todo_pro/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.task_manager import TaskManager
from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Settings object (config.Settings or a test SimpleNamespace).
    settings: Any

    store: TaskStore
    manager: TaskManager
