# src/todo_pro/cli/commands.py

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import cast

from ..core.errors import InvalidTask, PersistenceFailure, TaskError
from ..core.state import AppState
from ..tasks.task_api import resolve_task_id, schedule_task
from ..tasks.task_models import RepeatType, Task, TaskStatus

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Engine errors (unknown task, invalid transition, failed save) become replies;
        anything else propagates to the connector.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except PersistenceFailure as e:
            logger.error("Command /%s could not save: %s", name, e)
            return f"Saved in memory, but writing to disk failed: {e}"
        except TaskError as e:
            logger.debug("Command /%s refused: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- formatting helpers ----


def format_duration(seconds: float) -> str:
    """H:MM:SS when an hour or more, else M:SS."""
    total = int(max(0.0, seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def format_task_line(task: Task, now: float | None = None) -> str:
    if now is None:
        now = time.time()
    prio = "!" * int(task.priority) or "."
    due = f" due {_fmt_ts(task.due_at)}" if task.due_at is not None else ""
    repeat = f" [{task.repeat_type.value}]" if task.repeat_type != RepeatType.NONE else ""
    return (
        f"{task.id[:8]} {prio:<2} {task.status.value:<11} "
        f"{format_duration(task.remaining_time(now))} left "
        f"({task.progress(now) * 100:3.0f}%) {task.title}{due}{repeat}"
    )


def _format_list(tasks: list[Task], empty: str) -> str:
    if not tasks:
        return empty
    now = time.time()
    return "\n".join(format_task_line(t, now) for t in tasks)


def _parse_add_args(args: list[str]) -> dict[str, object]:
    """
    /add <minutes> <title words...> [due=HOURS] [prio=0|1|2] [repeat=daily] [every=N] [tags=a,b]
    """
    if len(args) < 2:
        raise InvalidTask("Usage: /add <minutes> <title> [due=H] [prio=N] [repeat=R] [every=N] [tags=a,b]")

    try:
        minutes = float(args[0])
    except ValueError as e:
        raise InvalidTask(f"minutes must be a number, got {args[0]!r}") from e

    title_words: list[str] = []
    opts: dict[str, object] = {"estimated_minutes": minutes}

    for token in args[1:]:
        key, sep, value = token.partition("=")
        if not sep:
            title_words.append(token)
            continue
        key = key.lower()
        try:
            if key == "due":
                opts["due_in_hours"] = float(value)
            elif key in ("prio", "priority"):
                opts["priority"] = int(value)
            elif key == "repeat":
                opts["repeat_type"] = value.lower()
            elif key == "every":
                opts["repeat_interval"] = int(value)
            elif key == "tags":
                opts["tags"] = [t for t in value.split(",") if t]
            else:
                title_words.append(token)
        except ValueError as e:
            raise InvalidTask(f"bad value for {key}: {value!r}") from e

    opts["title"] = " ".join(title_words)
    return opts


# ---- handlers ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    manager = state.manager
    active = manager.active_task
    active_line = f"{active.title} ({format_duration(active.remaining_time())} left)" if active else "none"
    return (
        "Status:\n"
        f"  Tasks: {len(manager.list_tasks())}\n"
        f"  Active: {active_line}\n"
        f"  Sweep: {'running' if manager.is_running else 'stopped'}\n"
        f"  Database: {state.store.db_path}"
    )


def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    opts = _parse_add_args(args)
    task = schedule_task(state, **opts)  # type: ignore[arg-type]
    if emit is not None and state.manager.free_time() <= 0:
        emit(
            "Heads up: today's remaining work "
            f"({format_duration(state.manager.todays_remaining_workload())}) fills the whole workday."
        )
    return f"Added {task.id[:8]}: {task.title}"


def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list          -> non-archived tasks
    /list all      -> everything, archived included
    /list <status> -> pending | in_progress | paused | completed | overdue
    """
    if not args:
        tasks = [t for t in state.manager.list_tasks() if not t.archived]
        return _format_list(tasks, "No tasks.")

    sub = args[0].lower()
    if sub == "all":
        return _format_list(state.manager.list_tasks(), "No tasks.")

    try:
        status = TaskStatus(sub)
    except ValueError:
        return "Usage: /list [all|pending|in_progress|paused|completed|overdue]"
    return _format_list(state.manager.tasks_for_status(status), f"No {status.value} tasks.")


def cmd_today(state: AppState, args: list[str]) -> str:
    manager = state.manager
    body = _format_list(manager.tasks_for_today(), "Nothing planned for today.")
    return (
        f"{body}\n"
        f"Remaining: {format_duration(manager.todays_remaining_workload())}  "
        f"Done: {format_duration(manager.todays_completed_work())}  "
        f"Free: {format_duration(manager.free_time())}  "
        f"Slack: {format_duration(manager.slack_time())}"
    )


def _lifecycle(action: str) -> CommandHandler2:
    def handler(state: AppState, args: list[str]) -> str:
        if not args:
            return f"Usage: /{action} <task id>"
        task_id = resolve_task_id(state, args[0])
        op = getattr(state.manager, f"{action}_task")
        task = op(task_id)
        return f"{task.id[:8]} {task.title}: {task.status.value}"

    handler.__name__ = f"cmd_{action}"
    return handler


def cmd_delete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /del <task id>"
    task_id = resolve_task_id(state, args[0])
    state.manager.delete_task(task_id)
    return f"Deleted {task_id[:8]}."


def cmd_archive(state: AppState, args: list[str]) -> str:
    """
    /archive <id>        -> hide from today's plan and lists
    /archive <id> off    -> bring it back
    """
    if not args:
        return "Usage: /archive <task id> [off]"
    task_id = resolve_task_id(state, args[0])
    archived = not (len(args) > 1 and args[1].lower() in ("off", "0", "no", "false"))
    task = state.manager.archive_task(task_id, archived=archived)
    return f"{task.id[:8]} {'archived' if task.archived else 'unarchived'}."


def cmd_stats(state: AppState, args: list[str]) -> str:
    """
    /stats          -> today
    /stats history  -> last 7 recorded days
    """
    if args and args[0].lower() == "history":
        days = state.store.list_daily_statistics(limit=7)
        if not days:
            return "No statistics recorded yet."
        return "\n".join(
            f"{d.date_key}: {d.tasks_completed}/{d.tasks_created} done, "
            f"score {d.productivity_score:.0f}" for d in days
        )

    s = state.manager.daily_stats
    return (
        f"Statistics for {s.date_key}:\n"
        f"  Created: {s.tasks_created}  Completed: {s.tasks_completed}  Overdue: {s.overdue_tasks}\n"
        f"  Time spent: {format_duration(s.total_time_spent)} "
        f"of {format_duration(s.total_estimated_time)} estimated\n"
        f"  Efficiency: {s.efficiency * 100:.0f}%  Completion: {s.completion_rate * 100:.0f}%\n"
        f"  Productivity score: {s.productivity_score:.0f}"
    )


def cmd_search(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /search <text>"
    return _format_list(state.manager.search_tasks(" ".join(args)), "No matches.")


def cmd_overdue(state: AppState, args: list[str]) -> str:
    return _format_list(state.manager.overdue_tasks(), "Nothing overdue.")


def cmd_upcoming(state: AppState, args: list[str]) -> str:
    days = int(getattr(state.settings, "upcoming_days", 7))
    if args:
        try:
            days = max(1, int(args[0]))
        except ValueError:
            return "Usage: /upcoming [days]"
    return _format_list(state.manager.upcoming_tasks(days), f"Nothing due in the next {days} day(s).")


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show engine status (tasks/active/sweep).")
registry.register(
    "add",
    cmd_add,
    help_text="Add a task: /add <minutes> <title> [due=H] [prio=0-2] [repeat=daily] [every=N] [tags=a,b].",
)
registry.register("list", cmd_list, help_text="List tasks: /list [all|<status>].", aliases=["ls"])
registry.register("today", cmd_today, help_text="Today's plan with remaining/free/slack time.")
registry.register("start", _lifecycle("start"), help_text="Start a task (pauses the active one).")
registry.register("pause", _lifecycle("pause"), help_text="Pause a running task.")
registry.register("resume", _lifecycle("resume"), help_text="Resume a paused task.")
registry.register("done", _lifecycle("complete"), help_text="Complete a task.", aliases=["complete"])
registry.register("reset", _lifecycle("reset"), help_text="Reset a task to pending.")
registry.register("del", cmd_delete, help_text="Delete a task.", aliases=["rm"])
registry.register("archive", cmd_archive, help_text="Archive a task: /archive <id> [off].")
registry.register("stats", cmd_stats, help_text="Daily statistics: /stats [history].")
registry.register("search", cmd_search, help_text="Search title/description/tags.")
registry.register("overdue", cmd_overdue, help_text="List overdue tasks.")
registry.register("upcoming", cmd_upcoming, help_text="Tasks due soon: /upcoming [days].")
