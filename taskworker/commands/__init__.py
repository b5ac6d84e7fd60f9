"""State-changing commands on task records."""

from .tasks import TaskCommandService

__all__ = ["TaskCommandService"]
