import asyncio
import structlog
from datetime import datetime
from typing import Optional, Protocol

from taskworker.config import settings
from taskworker.jobs.models import OverdueNotification
from taskworker.jobs.queue import QueueTransport
from taskworker.models import TaskRecord

logger = structlog.get_logger()


class OverdueSource(Protocol):
    async def find_overdue(
        self, page: int, page_size: int, now: Optional[datetime] = None
    ) -> list[TaskRecord]:
        ...


class OverdueScanner:
    """Finds overdue tasks and enqueues one notification job per task."""

    def __init__(
        self,
        store: OverdueSource,
        queue: QueueTransport,
        page_size: Optional[int] = None,
    ) -> None:
        self.store = store
        self.queue = queue
        self.page_size = page_size if page_size is not None else settings.overdue_page_size
        if self.page_size <= 0:
            raise ValueError("page_size must be positive")

    async def collect(self, now: Optional[datetime] = None) -> list[TaskRecord]:
        """Page through overdue tasks until a short page ends the result set."""
        tasks: list[TaskRecord] = []
        page = 0

        while True:
            rows = await self.store.find_overdue(page, self.page_size, now)
            tasks.extend(rows)
            if len(rows) < self.page_size:
                break
            page += 1

        return tasks

    async def scan(self, now: Optional[datetime] = None) -> int:
        """Run one scan.

        A failed bulk enqueue is not retried here; the next scan finds the
        same tasks again as long as their status has not moved on.

        Returns:
            Number of overdue tasks found
        """
        logger.debug("checking_overdue_tasks", source="scanner")

        tasks = await self.collect(now)

        logger.info("overdue_tasks_found", count=len(tasks), source="scanner")

        if tasks:
            notifications = [OverdueNotification(task=task) for task in tasks]
            await self.queue.enqueue_bulk(
                [(n.kind.value, n.to_payload()) for n in notifications]
            )

        logger.debug("overdue_tasks_check_completed", source="scanner")

        return len(tasks)


async def run_overdue_scanner(
    scanner: OverdueScanner, interval: Optional[float] = None
) -> None:
    """Run `scanner.scan()` every `interval` seconds until cancelled."""
    interval = interval if interval is not None else settings.overdue_scan_interval

    logger.info("overdue_scanner_started", interval=interval, source="scanner")

    while True:
        try:
            await scanner.scan()
        except asyncio.CancelledError:
            logger.info("overdue_scanner_shutting_down", source="scanner")
            raise
        except Exception as scan_error:
            logger.error(
                "overdue_scan_failed",
                error=str(scan_error),
                error_type=type(scan_error).__name__,
                source="scanner",
                exc_info=True,
            )

        await asyncio.sleep(interval)
