"""Task record types owned by the record store."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    """Task lifecycle status."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"


# Overdue scans skip tasks in these states
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED})


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return to_utc(datetime.fromisoformat(raw))


@dataclass
class TaskRecord:
    """A durable task record as seen by the job engine."""
    id: str
    title: str
    status: TaskStatus
    priority: TaskPriority = TaskPriority.MEDIUM
    description: Optional[str] = None
    due_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        title: str,
        status: TaskStatus = TaskStatus.PENDING,
        priority: TaskPriority = TaskPriority.MEDIUM,
        description: Optional[str] = None,
        due_at: Optional[datetime] = None,
    ) -> "TaskRecord":
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            title=title,
            status=status,
            priority=priority,
            description=description,
            due_at=to_utc(due_at),
            created_at=now,
            updated_at=now,
        )

    def snapshot(self) -> dict:
        """Return a JSON-serializable copy of the record."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "priority": self.priority.value,
            "description": self.description,
            "dueAt": self.due_at.isoformat() if self.due_at else None,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_snapshot(cls, data: dict) -> "TaskRecord":
        """Rebuild a record from `snapshot()` output.

        Raises:
            KeyError: If the id or title is missing
            ValueError, TypeError: If status, priority or a timestamp is malformed
        """
        created_at = parse_timestamp(data.get("createdAt")) or utcnow()
        return cls(
            id=str(data["id"]),
            title=data["title"],
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            priority=TaskPriority(data.get("priority", TaskPriority.MEDIUM.value)),
            description=data.get("description"),
            due_at=parse_timestamp(data.get("dueAt")),
            created_at=created_at,
            updated_at=parse_timestamp(data.get("updatedAt")) or created_at,
        )


class TaskCreate(BaseModel):
    """Input for creating a task."""
    title: str = Field(min_length=1)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_at: Optional[datetime] = None


class TaskUpdate(BaseModel):
    """Partial update for a task. Unset fields are left untouched."""
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_at: Optional[datetime] = None
