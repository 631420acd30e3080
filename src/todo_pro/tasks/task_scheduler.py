# src/todo_pro/tasks/task_scheduler.py

from __future__ import annotations

"""
Sweep scheduler.

A small polling loop that re-derives task status once per interval:
- marks tasks whose due date has passed as overdue,
- lets observers refresh derived values (remaining time, progress) via the tick event.

The loop never dies on a failing sweep: errors are logged and the next tick runs.
"""

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .task_manager import TaskManager

logger = logging.getLogger(__name__)


async def run_task_scheduler(
        manager: TaskManager,
        *,
        interval_seconds: float = 1.0,
        stop_event: asyncio.Event | None = None,
) -> None:
    """
    Simple polling scheduler.

    Every interval_seconds:
    - call manager.sweep() (overdue transitions + tick notification)
    - log and swallow any failure so the loop keeps running

    To stop the scheduler, set stop_event or cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    ticks = 0

    while stop_event is None or not stop_event.is_set():
        try:
            changed = manager.sweep()
            ticks += 1
            if changed:
                logger.info("Sweep marked %d task(s) overdue", changed)
        except Exception:
            logger.exception("sweep failed")

        if stop_event is None:
            await asyncio.sleep(sleep_s)
        else:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=sleep_s)

    logger.debug("Sweep scheduler stopped after %d ticks", ticks)


@dataclass(slots=True)
class SchedulerBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            # Loop already closed: the thread has finished on its own.
            logger.debug("Scheduler loop already closed.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)

    @property
    def is_alive(self) -> bool:
        return self.thread.is_alive()


def start_scheduler_in_background(
        manager: TaskManager,
        *,
        interval_seconds: float = 1.0,
) -> SchedulerBackgroundRunner | None:
    """
    Start the sweep loop in a background thread with its own event loop.

    Why a thread:
    - callers (console REPL) are blocking.
    - the sweep loop is async and wants its own event loop.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(
                run_task_scheduler(manager, interval_seconds=interval_seconds, stop_event=stop_event)
            )
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="todo-pro-sweep", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Scheduler thread did not initialize properly.")
        return None

    logger.info("Sweep scheduler started (interval=%.2fs).", interval_seconds)
    return SchedulerBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
