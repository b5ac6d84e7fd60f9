from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from taskworker.errors import JobValidationError
from taskworker.models import TaskRecord, TaskStatus


class JobKind(str, Enum):
    """The closed set of job kinds the worker knows how to handle."""
    STATUS_UPDATE = "task-status-update"
    OVERDUE_NOTIFICATION = "overdue-tasks-notification"

    @classmethod
    def parse(cls, raw: str) -> Optional["JobKind"]:
        """Return the matching kind, or None for unrecognized and legacy kinds."""
        try:
            return cls(raw)
        except ValueError:
            return None


@dataclass(frozen=True)
class Job:
    """Represents a job delivered by the queue.

    Only `attempt` differs between copies of the same job; the executor
    derives a new copy per retry with `dataclasses.replace`.
    """
    id: int
    kind: str
    payload: dict = field(default_factory=dict)
    attempt: int = 0


@dataclass
class Outcome:
    """Terminal result of processing one job."""
    job_id: int
    success: bool
    error: Optional[str] = None
    result_data: Optional[dict] = None

    @classmethod
    def ok(cls, job: Job, result_data: Optional[dict] = None) -> "Outcome":
        return cls(job_id=job.id, success=True, result_data=result_data)

    @classmethod
    def failed(cls, job: Job, error: str) -> "Outcome":
        return cls(job_id=job.id, success=False, error=error)

    def to_dict(self) -> dict:
        return {
            "jobId": self.job_id,
            "success": self.success,
            "error": self.error,
            "resultData": self.result_data,
        }


@dataclass(frozen=True)
class StatusUpdate:
    """Payload of a task-status-update job."""
    task_id: str
    status: TaskStatus

    kind = JobKind.STATUS_UPDATE

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "StatusUpdate":
        task_id = payload.get("taskId")
        status = payload.get("status")
        if not task_id or not status:
            raise JobValidationError("Missing required data")
        try:
            return cls(task_id=str(task_id), status=TaskStatus(status))
        except (TypeError, ValueError):
            raise JobValidationError(f"Invalid status value: {status}") from None

    def to_payload(self) -> dict:
        return {"taskId": self.task_id, "status": self.status.value}


@dataclass(frozen=True)
class OverdueNotification:
    """Payload of an overdue-tasks-notification job: a task snapshot."""
    task: TaskRecord

    kind = JobKind.OVERDUE_NOTIFICATION

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "OverdueNotification":
        if not payload.get("id"):
            raise JobValidationError("Missing required data")
        try:
            return cls(task=TaskRecord.from_snapshot(payload))
        except (KeyError, TypeError, ValueError) as e:
            raise JobValidationError(f"Invalid task snapshot: {e}") from None

    def to_payload(self) -> dict:
        return self.task.snapshot()
