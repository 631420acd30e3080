# tests/test_task_manager.py

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from todo_pro.core.errors import InvalidTask, InvalidTransition, PersistenceFailure, TaskNotFound
from todo_pro.tasks.task_events import EventHub, TaskEvent, TaskEventType
from todo_pro.tasks.task_manager import TaskManager
from todo_pro.tasks.task_models import Priority, Task, TaskStatus

from .conftest import T0
from .fakes import FailingGateway, FakeClock, InMemoryGateway

HOUR = 3600.0


def _add(manager: TaskManager, title: str, **kwargs) -> Task:
    kwargs.setdefault("estimated_duration", HOUR)
    return manager.add_task(Task.create(title, **kwargs))


def test_add_task_stamps_creation_and_counts(manager: TaskManager, gateway: InMemoryGateway, clock: FakeClock) -> None:
    clock.advance(5)
    a = _add(manager, "A")
    b = _add(manager, "A")  # duplicate titles are fine

    assert a.created_at == T0 + 5
    assert (a.position, b.position) == (0, 1)
    assert a.id != b.id
    assert manager.daily_stats.tasks_created == 2
    assert [t.id for t in gateway.tasks] == [a.id, b.id]
    assert gateway.stats[manager.daily_stats.date_key].tasks_created == 2


def test_add_task_rejects_duplicate_id(manager: TaskManager) -> None:
    task = Task.create("once")
    manager.add_task(task)
    with pytest.raises(InvalidTask):
        manager.add_task(task)


def test_add_task_rejects_tasks_with_lifecycle_history(manager: TaskManager) -> None:
    a = _add(manager, "A")
    manager.start_task(a.id)

    running = Task(title="B", status=TaskStatus.IN_PROGRESS, started_at=T0)
    with pytest.raises(InvalidTask):
        manager.add_task(running)

    done = Task.create("C")
    done.start(T0)
    done.complete(T0 + 60)
    with pytest.raises(InvalidTask):
        manager.add_task(done)

    half_paused = Task.create("D")
    half_paused.pause_intervals = [(T0, T0 + 5)]
    with pytest.raises(InvalidTask):
        manager.add_task(half_paused)

    assert [t.title for t in manager.list_tasks()] == ["A"]
    assert [t.id for t in manager.tasks_for_status(TaskStatus.IN_PROGRESS)] == [a.id]
    assert manager.active_task_id == a.id


def test_unknown_ids_raise_task_not_found(manager: TaskManager) -> None:
    for op in ("start_task", "pause_task", "resume_task", "complete_task", "reset_task", "delete_task", "get_task"):
        with pytest.raises(TaskNotFound):
            getattr(manager, op)("missing")

    with pytest.raises(TaskNotFound):
        manager.update_task(Task.create("ghost"))


def test_returned_tasks_are_detached(manager: TaskManager) -> None:
    task = _add(manager, "A")
    task.title = "changed outside"
    task.status = TaskStatus.COMPLETED

    stored = manager.get_task(task.id)
    assert stored.title == "A"
    assert stored.status == TaskStatus.PENDING


def test_starting_b_pauses_a(manager: TaskManager, clock: FakeClock) -> None:
    a = _add(manager, "A")
    b = _add(manager, "B")

    manager.start_task(a.id)
    clock.advance(60)
    manager.start_task(b.id)

    assert manager.get_task(a.id).status == TaskStatus.PAUSED
    assert manager.get_task(a.id).paused_at == T0 + 60
    assert manager.get_task(b.id).status == TaskStatus.IN_PROGRESS
    assert manager.active_task_id == b.id
    assert len(manager.tasks_for_status(TaskStatus.IN_PROGRESS)) == 1


def test_resume_pauses_the_other_active_task(manager: TaskManager, clock: FakeClock) -> None:
    a = _add(manager, "A")
    b = _add(manager, "B")
    manager.start_task(a.id)
    manager.pause_task(a.id)
    assert manager.active_task_id is None

    manager.start_task(b.id)
    clock.advance(30)
    manager.resume_task(a.id)

    assert manager.active_task_id == a.id
    assert manager.get_task(b.id).status == TaskStatus.PAUSED


def test_invalid_transition_does_not_touch_the_active_task(manager: TaskManager) -> None:
    a = _add(manager, "A")
    b = _add(manager, "B")
    manager.start_task(a.id)

    with pytest.raises(InvalidTransition):
        manager.resume_task(b.id)  # b is pending, not paused

    assert manager.active_task_id == a.id
    assert manager.get_task(a.id).status == TaskStatus.IN_PROGRESS


def test_complete_clears_active_and_records_stats(manager: TaskManager, clock: FakeClock) -> None:
    a = _add(manager, "A", estimated_duration=2 * HOUR)
    manager.start_task(a.id)
    clock.advance(HOUR)

    done = manager.complete_task(a.id)

    assert done.status == TaskStatus.COMPLETED
    assert done.completed_at == T0 + HOUR
    assert done.actual_duration == pytest.approx(HOUR)
    assert manager.active_task is None
    stats = manager.daily_stats
    assert stats.tasks_completed == 1
    assert stats.total_time_spent == pytest.approx(HOUR)
    assert stats.total_estimated_time == pytest.approx(2 * HOUR)

    with pytest.raises(InvalidTransition):
        manager.complete_task(a.id)


def test_two_of_four_completed_scores_75(manager: TaskManager, clock: FakeClock) -> None:
    tasks = [_add(manager, f"T{i}") for i in range(4)]

    for task in tasks[:2]:
        manager.start_task(task.id)
        clock.advance(HOUR)
        manager.complete_task(task.id)

    stats = manager.daily_stats
    assert stats.efficiency == pytest.approx(1.0)
    assert stats.completion_rate == pytest.approx(0.5)
    assert stats.productivity_score == pytest.approx(75)


def test_completing_daily_repeat_spawns_exactly_one_successor(manager: TaskManager, clock: FakeClock) -> None:
    due = T0 + 2 * HOUR
    task = _add(manager, "Stretch", due_at=due, repeat_type="daily", priority=Priority.MEDIUM)
    manager.start_task(task.id)
    clock.advance(600)

    events: list[TaskEvent] = []
    manager.subscribe(events.append)
    manager.complete_task(task.id)

    everything = manager.list_tasks()
    assert len(everything) == 2
    successor = everything[1]
    assert successor.id != task.id
    assert successor.title == "Stretch"
    assert successor.priority == Priority.MEDIUM
    assert successor.due_at == (datetime.fromtimestamp(due) + timedelta(days=1)).timestamp()
    assert successor.status == TaskStatus.PENDING
    assert successor.started_at is None and successor.completed_at is None
    assert successor.actual_duration == 0
    assert successor.created_at == T0 + 600
    assert manager.daily_stats.tasks_created == 2

    added = [e for e in events if e.event_type == TaskEventType.TASK_ADDED]
    assert [e.task_id for e in added] == [successor.id]


def test_completing_non_repeating_task_spawns_nothing(manager: TaskManager) -> None:
    task = _add(manager, "once", due_at=T0 + HOUR)
    manager.complete_task(task.id)
    assert len(manager.list_tasks()) == 1


def test_reset_returns_to_pending(manager: TaskManager, clock: FakeClock) -> None:
    task = _add(manager, "A")
    manager.start_task(task.id)
    clock.advance(100)

    reset = manager.reset_task(task.id)

    assert reset.status == TaskStatus.PENDING
    assert reset.started_at is None
    assert manager.active_task_id is None


def test_delete_clears_active_reference(manager: TaskManager, gateway: InMemoryGateway) -> None:
    task = _add(manager, "A")
    manager.start_task(task.id)

    manager.delete_task(task.id)

    assert manager.active_task is None
    assert manager.list_tasks() == []
    assert gateway.tasks == []


def test_update_task_replaces_by_identity(manager: TaskManager) -> None:
    original = _add(manager, "Draft")
    edited = manager.get_task(original.id)
    edited.title = "Final"
    edited.priority = Priority.HIGH
    edited.created_at = 0.0  # manager-owned, must survive

    result = manager.update_task(edited)

    assert result.title == "Final"
    assert result.priority == Priority.HIGH
    assert result.created_at == original.created_at
    assert manager.get_task(original.id).title == "Final"


def test_update_task_validates(manager: TaskManager) -> None:
    task = _add(manager, "ok")
    bad = manager.get_task(task.id)
    bad.title = "  "
    with pytest.raises(InvalidTask):
        manager.update_task(bad)


@pytest.mark.parametrize(
    "mutate",
    [
        pytest.param(lambda t: setattr(t, "status", TaskStatus.COMPLETED), id="completed-without-completed_at"),
        pytest.param(lambda t: setattr(t, "status", TaskStatus.IN_PROGRESS), id="in-progress-without-started_at"),
        pytest.param(lambda t: setattr(t, "status", TaskStatus.PAUSED), id="paused-without-timestamps"),
        pytest.param(lambda t: setattr(t, "priority", 7), id="priority-out-of-range"),
        pytest.param(lambda t: setattr(t, "due_at", float("inf")), id="due-not-finite"),
    ],
)
def test_update_task_enforces_task_invariants(manager: TaskManager, mutate) -> None:
    task = _add(manager, "ok")
    bad = manager.get_task(task.id)
    mutate(bad)

    with pytest.raises(InvalidTask):
        manager.update_task(bad)
    assert manager.get_task(task.id) == task


def test_sweep_marks_overdue_once(manager: TaskManager, gateway: InMemoryGateway, clock: FakeClock) -> None:
    task = _add(manager, "Pay rent", due_at=T0 - 1)
    saves_before = gateway.task_saves

    assert manager.sweep() == 1
    assert manager.get_task(task.id).status == TaskStatus.OVERDUE
    assert manager.daily_stats.overdue_tasks == 1
    assert gateway.task_saves == saves_before + 1

    clock.advance(1)
    assert manager.sweep() == 0
    clock.advance(1)
    assert manager.sweep() == 0
    assert manager.daily_stats.overdue_tasks == 1
    # Nothing changed, nothing written.
    assert gateway.task_saves == saves_before + 1


def test_sweep_skips_completed_and_future_tasks(manager: TaskManager) -> None:
    done = _add(manager, "done", due_at=T0 - 10)
    manager.complete_task(done.id)
    _add(manager, "later", due_at=T0 + HOUR)
    _add(manager, "undated")

    assert manager.sweep() == 0
    assert manager.daily_stats.overdue_tasks == 0


def test_sweep_stops_the_clock_of_an_active_task(manager: TaskManager, clock: FakeClock) -> None:
    task = _add(manager, "late", due_at=T0 + 60)
    manager.start_task(task.id)
    clock.advance(120)

    manager.sweep()

    swept = manager.get_task(task.id)
    assert swept.status == TaskStatus.OVERDUE
    assert manager.active_task_id is None
    assert swept.elapsed_time(T0 + 9999) == pytest.approx(120)

    # Explicit actions still apply to an overdue task.
    manager.complete_task(task.id)
    assert manager.get_task(task.id).actual_duration == pytest.approx(120)


def test_sweep_does_not_roll_back_overdue(manager: TaskManager) -> None:
    task = _add(manager, "late", due_at=T0 - 1)
    manager.sweep()

    moved = manager.get_task(task.id)
    moved.due_at = T0 + 10 * HOUR
    manager.update_task(moved)
    manager.sweep()

    assert manager.get_task(task.id).status == TaskStatus.OVERDUE


def test_pause_task_on_overdue_task_is_a_no_op(manager: TaskManager, gateway: InMemoryGateway) -> None:
    task = _add(manager, "late", due_at=T0 - 1)
    manager.sweep()
    saves_before = gateway.task_saves

    result = manager.pause_task(task.id)

    assert result.status == TaskStatus.OVERDUE
    assert gateway.task_saves == saves_before


def test_sweep_emits_tick_even_without_changes(manager: TaskManager) -> None:
    events: list[TaskEvent] = []
    sub = manager.subscribe(events.append)

    manager.sweep()
    manager.sweep()
    manager.unsubscribe(sub)
    manager.sweep()

    assert [e.event_type for e in events] == [TaskEventType.TICK, TaskEventType.TICK]
    assert events[0].event_id < events[1].event_id


def test_sweep_survives_persistence_failure(clock: FakeClock) -> None:
    gateway = FailingGateway(failures=0)
    manager = TaskManager(gateway, now_provider=clock.now, autostart=False, persist_retries=0)
    task = manager.add_task(Task.create("late", due_at=T0 - 1))

    gateway.failures = 10
    assert manager.sweep() == 1
    assert manager.get_task(task.id).status == TaskStatus.OVERDUE


def test_failed_add_is_rolled_back_and_can_be_retried(clock: FakeClock) -> None:
    gateway = FailingGateway(failures=3)
    manager = TaskManager(gateway, now_provider=clock.now, autostart=False, persist_retries=2)
    events: list[TaskEvent] = []
    manager.subscribe(events.append)

    task = Task.create("unsaved")
    with pytest.raises(PersistenceFailure):
        manager.add_task(task)

    assert gateway.attempts == 3
    assert manager.list_tasks() == []
    assert manager.daily_stats.tasks_created == 0
    assert events == []

    # Same task, same call: the disk is back, so it goes through.
    stored = manager.add_task(task)
    assert [t.id for t in gateway.tasks] == [stored.id]
    assert manager.daily_stats.tasks_created == 1
    assert [e.event_type for e in events] == [TaskEventType.TASK_ADDED, TaskEventType.STATS_CHANGED]


def test_failed_complete_is_rolled_back_and_can_be_retried(clock: FakeClock) -> None:
    gateway = FailingGateway(failures=0)
    manager = TaskManager(gateway, now_provider=clock.now, autostart=False, persist_retries=0)
    task = manager.add_task(Task.create("daily", estimated_duration=HOUR, due_at=T0 + HOUR, repeat_type="daily"))
    manager.start_task(task.id)
    clock.advance(HOUR)

    gateway.failures = 1
    with pytest.raises(PersistenceFailure):
        manager.complete_task(task.id)

    assert manager.get_task(task.id).status == TaskStatus.IN_PROGRESS
    assert manager.active_task_id == task.id
    assert len(manager.list_tasks()) == 1
    assert manager.daily_stats.tasks_completed == 0

    done = manager.complete_task(task.id)
    assert done.status == TaskStatus.COMPLETED
    assert len(manager.list_tasks()) == 2
    assert manager.daily_stats.tasks_completed == 1
    assert {t.status for t in gateway.tasks} == {TaskStatus.COMPLETED, TaskStatus.PENDING}


def test_retries_hide_transient_failures(clock: FakeClock) -> None:
    gateway = FailingGateway(failures=1)
    manager = TaskManager(gateway, now_provider=clock.now, autostart=False, persist_retries=2)

    manager.add_task(Task.create("flaky"))

    assert gateway.attempts == 2
    assert [t.title for t in gateway.tasks] == ["flaky"]


def test_manager_reloads_state_from_gateway(gateway: InMemoryGateway, clock: FakeClock) -> None:
    first = TaskManager(gateway, now_provider=clock.now, autostart=False)
    a = first.add_task(Task.create("A", estimated_duration=HOUR))
    first.start_task(a.id)

    second = TaskManager(gateway, now_provider=clock.now, autostart=False)

    assert second.active_task_id == a.id
    assert second.daily_stats.tasks_created == 1
    b = second.add_task(Task.create("B"))
    assert b.position == 1


def test_stats_roll_over_at_midnight(manager: TaskManager, clock: FakeClock, gateway: InMemoryGateway) -> None:
    _add(manager, "yesterday")
    assert manager.daily_stats.tasks_created == 1

    clock.advance(24 * HOUR)
    manager.sweep()

    stats = manager.daily_stats
    assert stats.date_key == "2026-03-11"
    assert stats.tasks_created == 0
    assert gateway.stats["2026-03-10"].tasks_created == 1


def test_tasks_for_today_filters_and_sorts(manager: TaskManager) -> None:
    start = datetime.fromtimestamp(T0).replace(hour=0, minute=0)
    low_dated = _add(manager, "low dated", priority=0, due_at=T0 + HOUR)
    high_undated = _add(manager, "high undated", priority=2)
    high_late = _add(manager, "high late", priority=2, due_at=T0 + 3 * HOUR)
    high_early = _add(manager, "high early", priority=2, due_at=T0 + HOUR)
    _add(manager, "tomorrow", priority=2, due_at=(start + timedelta(days=1)).timestamp())
    _add(manager, "yesterday", priority=2, due_at=(start - timedelta(minutes=1)).timestamp())
    archived = _add(manager, "archived", priority=2)
    manager.archive_task(archived.id)

    today = manager.tasks_for_today()

    assert [t.id for t in today] == [high_early.id, high_late.id, high_undated.id, low_dated.id]


def test_time_views(manager: TaskManager, clock: FakeClock) -> None:
    a = _add(manager, "A", estimated_duration=2 * HOUR)
    b = _add(manager, "B", estimated_duration=HOUR)
    _add(manager, "C", estimated_duration=3 * HOUR)

    manager.start_task(b.id)
    clock.advance(HOUR)
    manager.complete_task(b.id)
    manager.start_task(a.id)
    clock.advance(0.5 * HOUR)

    assert manager.todays_total_estimated_work() == pytest.approx(6 * HOUR)
    assert manager.todays_completed_work() == pytest.approx(HOUR)
    assert manager.todays_remaining_workload() == pytest.approx(1.5 * HOUR + 3 * HOUR)
    assert manager.free_time() == pytest.approx(8 * HOUR - 4.5 * HOUR)
    assert manager.slack_time() == pytest.approx(5 * HOUR)
    assert manager.current_task_remaining_time() == pytest.approx(1.5 * HOUR)


def test_free_time_never_negative(manager: TaskManager) -> None:
    _add(manager, "marathon", estimated_duration=20 * HOUR)
    assert manager.free_time() == 0
    assert manager.current_task_remaining_time() == 0


def test_overdue_and_upcoming(manager: TaskManager) -> None:
    late = _add(manager, "late", due_at=T0 - 1)
    soon = _add(manager, "soon", due_at=T0 + 2 * 24 * HOUR)
    sooner = _add(manager, "sooner", due_at=T0 + HOUR)
    _add(manager, "far", due_at=T0 + 30 * 24 * HOUR)
    hidden = _add(manager, "hidden", due_at=T0 + HOUR)
    manager.archive_task(hidden.id)

    assert [t.id for t in manager.overdue_tasks()] == [late.id]
    assert [t.id for t in manager.upcoming_tasks(7)] == [sooner.id, soon.id]
    assert [t.id for t in manager.upcoming_tasks(1)] == [sooner.id]


def test_search_is_case_insensitive_over_title_description_tags(manager: TaskManager) -> None:
    a = _add(manager, "Quarterly REPORT")
    b = _add(manager, "Groceries", description="milk, eggs, report card")
    c = _add(manager, "Gym", tags=["Health"])

    assert {t.id for t in manager.search_tasks("report")} == {a.id, b.id}
    assert [t.id for t in manager.search_tasks("HEALTH")] == [c.id]
    assert len(manager.search_tasks("")) == 3
    assert manager.search_tasks("nothing") == []


def test_events_follow_mutation_order(manager: TaskManager) -> None:
    events: list[TaskEvent] = []
    manager.subscribe(events.append)

    a = _add(manager, "A")
    b = _add(manager, "B")
    manager.start_task(a.id)
    manager.start_task(b.id)
    manager.delete_task(a.id)

    kinds = [(e.event_type, e.task_id) for e in events if e.event_type != TaskEventType.STATS_CHANGED]
    assert kinds == [
        (TaskEventType.TASK_ADDED, a.id),
        (TaskEventType.TASK_ADDED, b.id),
        (TaskEventType.TASK_UPDATED, a.id),
        (TaskEventType.TASK_UPDATED, a.id),  # implicit pause
        (TaskEventType.TASK_UPDATED, b.id),
        (TaskEventType.TASK_REMOVED, a.id),
    ]
    assert manager.events.version == events[-1].event_id


def test_failing_subscriber_does_not_break_operations(manager: TaskManager) -> None:
    def boom(_event: TaskEvent) -> None:
        raise RuntimeError("observer bug")

    manager.subscribe(boom)
    task = _add(manager, "still works")
    assert manager.get_task(task.id).title == "still works"


def test_event_hub_history_and_failing_subscriber() -> None:
    hub = EventHub(history_limit=3)
    assert hub.version == 0

    def broken(_event: TaskEvent) -> None:
        raise RuntimeError("subscriber bug")

    seen: list[TaskEvent] = []
    hub.subscribe(broken)
    hub.subscribe(seen.append)
    assert hub.subscriber_count == 2

    for _ in range(4):
        hub.publish(TaskEventType.TICK)
    hub.publish(TaskEventType.TASK_REMOVED, task_id="abc")

    assert len(seen) == 5
    assert hub.version == 5
    assert [e.event_id for e in hub.list_recent()] == [3, 4, 5]
    assert [e.task_id for e in hub.list_recent(limit=1)] == ["abc"]
    assert hub.list_recent(limit=0) == []
