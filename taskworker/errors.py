"""Error types shared by the job engine and the command path."""


class TaskWorkerError(Exception):
    """Base class for all taskworker errors."""


class TerminalJobError(TaskWorkerError):
    """A job failure that retrying cannot change.

    The dispatcher reports these as a failed outcome on the first attempt.
    """


class UnknownJobKindError(TerminalJobError):
    """Raised when a job kind is not in the handler registry."""

    def __init__(self, kind: str) -> None:
        super().__init__("unknown job type")
        self.kind = kind


class JobValidationError(TerminalJobError):
    """Raised when a job payload is missing fields or carries bad values."""


class TaskNotFoundError(TerminalJobError):
    """Raised when a task record does not exist."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with ID {task_id} not found")
        self.task_id = task_id


class HandlerError(TaskWorkerError):
    """A handler failure that is eligible for retry."""


class CommandFailed(TaskWorkerError):
    """A state-changing command was rolled back.

    Args:
        message: Human-readable cause
        retryable: Whether the caller may safely resubmit the command
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable
