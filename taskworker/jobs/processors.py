import structlog
from typing import Awaitable, Callable, Protocol

from taskworker.errors import HandlerError, TerminalJobError, UnknownJobKindError
from taskworker.jobs.models import Job, JobKind, OverdueNotification, Outcome, StatusUpdate
from taskworker.models import TaskRecord, TaskStatus
from taskworker.reporter import Notifier

logger = structlog.get_logger()


class StatusStore(Protocol):
    async def update_status(self, task_id: str, status: TaskStatus) -> TaskRecord:
        ...


class JobDispatcher:
    """Routes jobs to the handler registered for their kind.

    `dispatch` makes a single attempt. Unknown kinds, invalid payloads and
    other terminal errors come back as failed outcomes; any other exception
    propagates so the caller can retry.
    """

    def __init__(self, store: StatusStore, notifier: Notifier) -> None:
        """Initialize the dispatcher.

        Args:
            store: Record store used by status updates
            notifier: Sink for overdue notices
        """
        self.store = store
        self.notifier = notifier
        self._handlers: dict[JobKind, tuple[type, Callable[..., Awaitable[dict]]]] = {
            JobKind.STATUS_UPDATE: (StatusUpdate, self.handle_status_update),
            JobKind.OVERDUE_NOTIFICATION: (OverdueNotification, self.handle_overdue_notification),
        }

    def resolve(self, job: Job):
        """Decode a job into its handler and typed payload.

        Raises:
            UnknownJobKindError: If the kind is not registered
            JobValidationError: If the payload does not decode
        """
        kind = JobKind.parse(job.kind)
        if kind is None or kind not in self._handlers:
            raise UnknownJobKindError(job.kind)

        payload_type, handler = self._handlers[kind]
        return handler, payload_type.from_payload(job.payload)

    async def dispatch(self, job: Job) -> Outcome:
        """Process a job once.

        Args:
            job: Job to process

        Returns:
            Success outcome with the handler's result, or a failed outcome for
            terminal errors

        Raises:
            Exception: Any retryable failure from the handler
        """
        logger.debug(
            "processing_job",
            job_id=job.id,
            job_kind=job.kind,
            attempt=job.attempt + 1,
            source="processor",
        )

        try:
            handler, payload = self.resolve(job)
            result = await handler(payload)
        except UnknownJobKindError as e:
            logger.warning("unknown_job_kind", job_id=job.id, job_kind=e.kind, source="processor")
            return Outcome.failed(job, str(e))
        except TerminalJobError as e:
            logger.warning(
                "job_rejected",
                job_id=job.id,
                job_kind=job.kind,
                error=str(e),
                source="processor",
            )
            return Outcome.failed(job, str(e))

        return Outcome.ok(job, result)

    async def handle_status_update(self, payload: StatusUpdate) -> dict:
        """Apply a status change to the record store.

        Overwrites the status, so a redelivered job leaves the same final state.
        """
        task = await self.store.update_status(payload.task_id, payload.status)

        return {"taskId": task.id, "newStatus": task.status.value}

    async def handle_overdue_notification(self, payload: OverdueNotification) -> dict:
        """Send the overdue notice for one task."""
        task = payload.task
        logger.info("sending_overdue_notice", task_id=task.id, source="processor")

        try:
            await self.notifier.notify(task)
        except Exception as e:
            raise HandlerError(
                f"Failed to notify for task {task.id}: {type(e).__name__}: {e}"
            ) from e

        return {"taskId": task.id, "notified": True}
