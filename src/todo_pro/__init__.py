"""todo-pro: a personal task tracker engine (lifecycle, time tracking, daily statistics)."""

__version__ = "0.1.0"
