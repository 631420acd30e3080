"""
Task subsystem.

Components:
- task_models.py: Task entity, statuses, repeat rules, time derivation
- task_stats.py: DailyStatistics and the productivity score
- task_store.py: SQLite-backed persistence gateway
- task_events.py: change notifications (EventHub)
- task_manager.py: TaskManager, the only place tasks are mutated
- task_scheduler.py: 1 Hz sweep loop and its background runner
- task_api.py: small high-level helpers used by the console commands
"""
