import structlog
from typing import Optional

from taskworker.errors import CommandFailed, TaskNotFoundError
from taskworker.jobs.models import StatusUpdate
from taskworker.jobs.outbox import OutboxRelay
from taskworker.models import TaskCreate, TaskRecord, TaskUpdate, to_utc, utcnow
from taskworker.storage import TaskStorage

logger = structlog.get_logger()

# Fields an update may not clear
_REQUIRED_FIELDS = ("title", "status", "priority")


class TaskCommandService:
    """Write path for task records.

    Every mutation and the status-update job it implies are written in one
    transaction: the job goes to the outbox table, and the relay moves it to
    the queue only after commit. The worker therefore never sees a job for a
    state that was not committed, and a committed change always has its job.
    """

    def __init__(self, storage: TaskStorage, relay: Optional[OutboxRelay] = None) -> None:
        """Initialize the command service.

        Args:
            storage: Record store providing transactions
            relay: Relay flushed right after each commit; the periodic relay
                picks up the rows otherwise
        """
        self.storage = storage
        self.relay = relay

    async def create(self, data: TaskCreate) -> TaskRecord:
        """Create a task and announce its initial status.

        Raises:
            CommandFailed: If the insert or the job write failed; nothing is committed
        """
        task = TaskRecord.new(
            title=data.title,
            status=data.status,
            priority=data.priority,
            description=data.description,
            due_at=data.due_at,
        )

        try:
            async with self.storage.transaction() as tx:
                await tx.insert_task(task)
                event = StatusUpdate(task_id=task.id, status=task.status)
                await tx.add_outbox(event.kind.value, event.to_payload())
        except Exception as e:
            logger.error(
                "task_create_failed",
                error=str(e),
                error_type=type(e).__name__,
                source="commands",
            )
            raise CommandFailed(f"Task creation failed: {e}") from e

        logger.info("task_created", task_id=task.id, status=task.status.value, source="commands")

        await self._publish()
        return task

    async def update(self, task_id: str, data: TaskUpdate) -> TaskRecord:
        """Merge changes into a task; announce the new status if it changed.

        Raises:
            TaskNotFoundError: If the task does not exist
            CommandFailed: If the save or the job write failed; nothing is committed
        """
        changes = data.model_dump(exclude_unset=True)
        status_changed = False

        try:
            async with self.storage.transaction() as tx:
                task = await tx.get_task(task_id)
                if task is None:
                    raise TaskNotFoundError(task_id)

                original_status = task.status
                for name, value in changes.items():
                    if value is None and name in _REQUIRED_FIELDS:
                        continue
                    if name == "due_at":
                        value = to_utc(value)
                    setattr(task, name, value)
                task.updated_at = utcnow()

                await tx.save_task(task)

                if task.status != original_status:
                    status_changed = True
                    event = StatusUpdate(task_id=task.id, status=task.status)
                    await tx.add_outbox(event.kind.value, event.to_payload())
        except TaskNotFoundError:
            raise
        except Exception as e:
            logger.error(
                "task_update_failed",
                task_id=task_id,
                error=str(e),
                error_type=type(e).__name__,
                source="commands",
            )
            raise CommandFailed(f"Task update failed: {e}") from e

        logger.info(
            "task_updated",
            task_id=task_id,
            fields=sorted(changes),
            status_changed=status_changed,
            source="commands",
        )

        if status_changed:
            await self._publish()
        return task

    async def remove(self, task_id: str) -> None:
        """Delete a task.

        Raises:
            TaskNotFoundError: If the task does not exist
        """
        async with self.storage.transaction() as tx:
            await tx.delete_task(task_id)

        logger.info("task_removed", task_id=task_id, source="commands")

    async def _publish(self) -> None:
        if self.relay is None:
            return
        try:
            await self.relay.flush()
        except Exception as e:
            # The outbox rows are committed; the periodic relay will retry
            logger.warning(
                "outbox_flush_deferred",
                error=str(e),
                error_type=type(e).__name__,
                source="commands",
            )
