import asyncio
import structlog
from typing import Optional

from taskworker.config import settings
from taskworker.jobs.queue import QueueTransport
from taskworker.storage import TaskStorage

logger = structlog.get_logger()


class OutboxRelay:
    """Moves committed outbox rows onto the job queue.

    Rows are deleted only after the queue accepted them, so a crash between
    the two steps delivers a job twice rather than never.
    """

    def __init__(
        self,
        storage: TaskStorage,
        queue: QueueTransport,
        limit: Optional[int] = None,
    ) -> None:
        self.storage = storage
        self.queue = queue
        self.limit = limit if limit is not None else settings.outbox_batch_limit
        if self.limit <= 0:
            raise ValueError("limit must be positive")
        self._lock = asyncio.Lock()

    async def flush(self) -> int:
        """Relay pending outbox rows until the outbox is empty.

        Returns:
            Number of jobs relayed

        Raises:
            Exception: Any enqueue failure; unrelayed rows stay in the outbox
        """
        relayed = 0

        async with self._lock:
            while True:
                rows = await self.storage.fetch_outbox(self.limit)
                if not rows:
                    break

                await self.queue.enqueue_bulk([(row["kind"], row["payload"]) for row in rows])
                await self.storage.delete_outbox([row["id"] for row in rows])
                relayed += len(rows)

                if len(rows) < self.limit:
                    break

        if relayed:
            logger.info("outbox_relayed", count=relayed, source="outbox")

        return relayed


async def run_outbox_relay(relay: OutboxRelay, interval: Optional[float] = None) -> None:
    """Flush the outbox every `interval` seconds until cancelled."""
    interval = interval if interval is not None else settings.outbox_relay_interval

    while True:
        try:
            await relay.flush()
        except asyncio.CancelledError:
            logger.info("outbox_relay_shutting_down", source="outbox")
            raise
        except Exception as relay_error:
            logger.error(
                "outbox_relay_failed",
                error=str(relay_error),
                error_type=type(relay_error).__name__,
                source="outbox",
                exc_info=True,
            )

        await asyncio.sleep(interval)
