# src/todo_pro/core/errors.py

from __future__ import annotations

"""
Error taxonomy for the task engine.

Every error derives from TaskError so callers (console commands, tests) can catch
"anything the engine refused" in one place and still tell the cases apart.
"""

from typing import Any


class TaskError(Exception):
    """Base class for all task engine errors."""


class TaskNotFound(TaskError, KeyError):
    """An operation referenced an identifier that is not in the collection."""

    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task not found: {self.task_id}"


class InvalidTask(TaskError, ValueError):
    """Construction-time validation failed (empty title, negative duration, ...)."""


class InvalidTransition(TaskError):
    """A lifecycle operation is not allowed from the task's current status."""

    def __init__(self, task_id: str, status: Any, operation: str) -> None:
        self.task_id = task_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} task {task_id} while it is {status}")


class PersistenceFailure(TaskError):
    """The persistence gateway failed to read or write."""
