# src/todo_pro/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "todo_pro.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(threadName)s %(name)s: %(message)s"

# Loggers that fire on every sweep tick; the console only shows their problems.
_TICK_LOGGERS = ("todo_pro.tasks.task_scheduler", "asyncio")


class _ConsoleNoiseFilter(logging.Filter):
    """Keep the REPL readable while the sweep thread ticks in the background."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(_TICK_LOGGERS):
            return record.levelno >= logging.WARNING
        if record.name == "py.warnings":
            return record.levelno >= logging.ERROR
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/todo_pro",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Route all logs to stderr (filtered) and to <log_dir>/todo_pro.log (everything).

    Call once from main() before the first task is loaded. Returns the log file path.
    """
    log_file = Path(log_dir) / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.addFilter(_ConsoleNoiseFilter())

    to_file = logging.FileHandler(str(log_file), encoding="utf-8")
    to_file.setLevel(file_level)

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in (console, to_file):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    logging.captureWarnings(True)
    return log_file
