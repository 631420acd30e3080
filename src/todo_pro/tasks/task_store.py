# src/todo_pro/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from ..core.errors import PersistenceFailure
from .task_models import Priority, RepeatType, Task, TaskStatus
from .task_stats import DailyStatistics

logger = logging.getLogger(__name__)

_TASK_COLUMNS = (
    "id",
    "position",
    "title",
    "description",
    "estimated_duration",
    "actual_duration",
    "due_at",
    "created_at",
    "started_at",
    "paused_at",
    "completed_at",
    "status",
    "repeat_type",
    "repeat_interval",
    "archived",
    "tags",
    "priority",
    "pause_intervals",
)


class TaskStore:
    """
    SQLite persistence gateway for tasks and daily statistics.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    save_tasks replaces the whole list in a single transaction, so a crash mid-save
    leaves the previous list intact.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except PersistenceFailure:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"cannot open {self._db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL DEFAULT 0,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    estimated_duration REAL NOT NULL DEFAULT 0,
                    actual_duration REAL NOT NULL DEFAULT 0,
                    due_at REAL,
                    created_at REAL NOT NULL DEFAULT 0,
                    started_at REAL,
                    paused_at REAL,
                    completed_at REAL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    repeat_type TEXT NOT NULL DEFAULT 'none',
                    repeat_interval INTEGER NOT NULL DEFAULT 1,
                    archived INTEGER NOT NULL DEFAULT 0,
                    tags TEXT NOT NULL DEFAULT '[]',
                    priority INTEGER NOT NULL DEFAULT 0,
                    pause_intervals TEXT NOT NULL DEFAULT '[]'
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS daily_stats (
                    date_key TEXT PRIMARY KEY,
                    tasks_completed INTEGER NOT NULL DEFAULT 0,
                    total_time_spent REAL NOT NULL DEFAULT 0,
                    total_estimated_time REAL NOT NULL DEFAULT 0,
                    tasks_created INTEGER NOT NULL DEFAULT 0,
                    overdue_tasks INTEGER NOT NULL DEFAULT 0,
                    productivity_score REAL NOT NULL DEFAULT 0,
                    updated_at REAL NOT NULL DEFAULT 0
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("archived", "INTEGER NOT NULL DEFAULT 0")
            add_col("tags", "TEXT NOT NULL DEFAULT '[]'")
            add_col("priority", "INTEGER NOT NULL DEFAULT 0")
            add_col("pause_intervals", "TEXT NOT NULL DEFAULT '[]'")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_position ON tasks(position)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_due_status ON tasks(status, due_at)")

            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"schema setup failed for {self._db_path}: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _json_dump(value: Any) -> str:
        return json.dumps(value, ensure_ascii=False)

    @staticmethod
    def _str_to_tags(s: str | None) -> list[str]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except ValueError:
            logger.warning("Corrupt tags column %r; using [].", s)
            return []
        return [str(x) for x in val] if isinstance(val, list) else []

    @staticmethod
    def _str_to_intervals(s: str | None) -> list[tuple[float, float]]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except ValueError:
            logger.warning("Corrupt pause_intervals column %r; using [].", s)
            return []
        out: list[tuple[float, float]] = []
        if isinstance(val, list):
            for item in val:
                if isinstance(item, list) and len(item) == 2:
                    out.append((float(item[0]), float(item[1])))
        return out

    @staticmethod
    def _opt_float(raw: Any) -> float | None:
        return float(raw) if raw is not None else None

    def _task_to_row(self, task: Task) -> tuple[Any, ...]:
        return (
            task.id,
            int(task.position),
            task.title,
            task.description,
            float(task.estimated_duration),
            float(task.actual_duration),
            task.due_at,
            float(task.created_at),
            task.started_at,
            task.paused_at,
            task.completed_at,
            task.status.value,
            task.repeat_type.value,
            int(task.repeat_interval),
            1 if task.archived else 0,
            self._json_dump(list(task.tags)),
            int(task.priority),
            self._json_dump([list(pair) for pair in task.pause_intervals]),
        )

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        try:
            priority = Priority(int(row["priority"] or 0))
        except ValueError:
            priority = Priority.LOW

        return Task(
            id=str(row["id"]),
            position=int(row["position"] or 0),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            estimated_duration=float(row["estimated_duration"] or 0.0),
            actual_duration=float(row["actual_duration"] or 0.0),
            due_at=self._opt_float(row["due_at"]),
            created_at=float(row["created_at"] or 0.0),
            started_at=self._opt_float(row["started_at"]),
            paused_at=self._opt_float(row["paused_at"]),
            completed_at=self._opt_float(row["completed_at"]),
            status=TaskStatus.from_db(row["status"]),
            repeat_type=RepeatType.from_db(row["repeat_type"]),
            repeat_interval=max(1, int(row["repeat_interval"] or 1)),
            archived=bool(row["archived"]),
            tags=self._str_to_tags(row["tags"]),
            priority=priority,
            pause_intervals=self._str_to_intervals(row["pause_intervals"]),
        )

    @staticmethod
    def _row_to_stats(row: sqlite3.Row) -> DailyStatistics:
        return DailyStatistics(
            date_key=str(row["date_key"]),
            tasks_completed=int(row["tasks_completed"] or 0),
            total_time_spent=float(row["total_time_spent"] or 0.0),
            total_estimated_time=float(row["total_estimated_time"] or 0.0),
            tasks_created=int(row["tasks_created"] or 0),
            overdue_tasks=int(row["overdue_tasks"] or 0),
            productivity_score=float(row["productivity_score"] or 0.0),
        )

    # ---- public API (PersistenceGateway) ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"count_tasks failed: {e}") from e
        finally:
            conn.close()

    def save_tasks(self, tasks: list[Task]) -> None:
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        sql = f"INSERT INTO tasks({', '.join(_TASK_COLUMNS)}) VALUES ({placeholders})"
        rows = [self._task_to_row(t) for t in tasks]

        conn = self._get_conn()
        try:
            with conn:
                conn.execute("DELETE FROM tasks")
                conn.executemany(sql, rows)
            logger.debug("Saved %d tasks to %s", len(rows), self._db_path)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"save_tasks failed: {e}") from e
        finally:
            conn.close()

    def load_tasks(self) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks ORDER BY position ASC, rowid ASC")
            return [self._row_to_task(r) for r in cur.fetchall()]
        except sqlite3.Error as e:
            raise PersistenceFailure(f"load_tasks failed: {e}") from e
        finally:
            conn.close()

    def save_daily_statistics(self, stats: DailyStatistics, date_key: str) -> None:
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO daily_stats(
                        date_key, tasks_completed, total_time_spent, total_estimated_time,
                        tasks_created, overdue_tasks, productivity_score, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(date_key) DO UPDATE SET
                        tasks_completed = excluded.tasks_completed,
                        total_time_spent = excluded.total_time_spent,
                        total_estimated_time = excluded.total_estimated_time,
                        tasks_created = excluded.tasks_created,
                        overdue_tasks = excluded.overdue_tasks,
                        productivity_score = excluded.productivity_score,
                        updated_at = excluded.updated_at
                    """,
                    (
                        date_key,
                        int(stats.tasks_completed),
                        float(stats.total_time_spent),
                        float(stats.total_estimated_time),
                        int(stats.tasks_created),
                        int(stats.overdue_tasks),
                        float(stats.productivity_score),
                        time.time(),
                    ),
                )
        except sqlite3.Error as e:
            raise PersistenceFailure(f"save_daily_statistics failed date={date_key}: {e}") from e
        finally:
            conn.close()

    def load_daily_statistics(self, date_key: str) -> DailyStatistics | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM daily_stats WHERE date_key = ?", (date_key,))
            row = cur.fetchone()
            return self._row_to_stats(row) if row else None
        except sqlite3.Error as e:
            raise PersistenceFailure(f"load_daily_statistics failed date={date_key}: {e}") from e
        finally:
            conn.close()

    def list_daily_statistics(self, *, limit: int = 30) -> list[DailyStatistics]:
        """Most recent days first (history view for /stats)."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM daily_stats ORDER BY date_key DESC LIMIT ?",
                (int(limit),),
            )
            return [self._row_to_stats(r) for r in cur.fetchall()]
        except sqlite3.Error as e:
            raise PersistenceFailure(f"list_daily_statistics failed: {e}") from e
        finally:
            conn.close()
