import json
import structlog
from typing import Optional, Protocol, Sequence

from taskworker.jobs.models import Job, Outcome
from taskworker.storage import TaskStorage

logger = structlog.get_logger()


class QueueTransport(Protocol):
    """The producer side of the queue used by the scanner and the outbox relay."""

    async def enqueue(self, kind: str, payload: Optional[dict] = None) -> int:
        ...

    async def enqueue_bulk(self, jobs: Sequence[tuple[str, dict]]) -> list[int]:
        ...


class JobQueue:
    """Job queue with at-least-once delivery.

    This class provides a clean abstraction over the underlying storage
    mechanism (currently SQLite). A drained job stays claimed until it is
    acked; jobs left claimed by a crashed worker are handed out again by
    `recover_in_flight`.
    """

    def __init__(self, storage: TaskStorage):
        """Initialize job queue.

        Args:
            storage: TaskStorage instance for database operations
        """
        self.storage = storage
        logger.info("job_queue_initialized", source="queue")

    async def enqueue(self, kind: str, payload: Optional[dict] = None) -> int:
        """Add a new job to the queue.

        Args:
            kind: Kind of job to process (e.g., 'task-status-update')
            payload: Optional dictionary with job-specific data

        Returns:
            Job ID

        Example:
            job_id = await queue.enqueue('task-status-update', {'taskId': tid, 'status': 'completed'})
        """
        (job_id,) = await self.enqueue_bulk([(kind, payload)])
        return job_id

    async def enqueue_bulk(self, jobs: Sequence[tuple[str, Optional[dict]]]) -> list[int]:
        """Add several jobs to the queue atomically.

        Args:
            jobs: (kind, payload) pairs

        Returns:
            Job IDs in input order
        """
        rows = [
            (kind, json.dumps(payload) if payload is not None else None)
            for kind, payload in jobs
        ]
        job_ids = await self.storage.insert_jobs(rows)

        logger.info(
            "jobs_enqueued",
            count=len(job_ids),
            job_kinds=sorted({kind for kind, _ in jobs}),
            source="queue",
        )

        return job_ids

    async def drain(self, limit: int) -> list[Job]:
        """Claim up to `limit` pending jobs.

        Returns:
            Jobs in enqueue order, empty if nothing is pending
        """
        rows = await self.storage.claim_pending_jobs(limit)

        jobs = []
        for row in rows:
            payload = {}
            if row.get("payload"):
                try:
                    payload = json.loads(row["payload"])
                except json.JSONDecodeError:
                    payload = None
                if not isinstance(payload, dict):
                    # Delivered empty; the dispatcher reports it as invalid
                    logger.warning(
                        "invalid_job_payload",
                        job_id=row["id"],
                        source="queue",
                    )
                    payload = {}
            jobs.append(Job(id=row["id"], kind=row["kind"], payload=payload))

        if jobs:
            logger.debug("jobs_drained", count=len(jobs), source="queue")

        return jobs

    async def ack(self, outcome: Outcome) -> None:
        """Record a job's outcome and discard the job.

        Args:
            outcome: Terminal outcome of the job
        """
        await self.storage.delete_job(outcome.job_id)

        if outcome.success:
            logger.info(
                "job_completed",
                job_id=outcome.job_id,
                result=outcome.result_data,
                source="queue",
            )
        else:
            logger.error(
                "job_failed",
                job_id=outcome.job_id,
                error=outcome.error,
                source="queue",
            )

    async def recover_in_flight(self) -> int:
        """Return jobs claimed by a previous worker to the pending state.

        Returns:
            Number of jobs made deliverable again
        """
        count = await self.storage.reset_processing_jobs()
        if count:
            logger.warning("in_flight_jobs_recovered", count=count, source="queue")
        return count

    async def release(self, job_ids: list[int]) -> int:
        """Hand claimed jobs back to the queue without an outcome.

        Returns:
            Number of jobs made deliverable again
        """
        count = await self.storage.release_jobs(job_ids)
        if count:
            logger.warning("unacked_jobs_released", count=count, source="queue")
        return count

    async def stats(self) -> dict:
        return await self.storage.get_job_stats()
