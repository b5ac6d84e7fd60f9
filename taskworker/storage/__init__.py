"""SQLite persistence for tasks, queued jobs and the outbox."""

from .tasks import TaskStorage, TaskTransaction

__all__ = ["TaskStorage", "TaskTransaction"]
