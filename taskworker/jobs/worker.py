import asyncio
import structlog
from typing import Optional

from taskworker.config import settings
from taskworker.jobs.batch import BatchProcessor
from taskworker.jobs.queue import JobQueue

logger = structlog.get_logger()


async def start_worker(
    queue: JobQueue,
    processor: BatchProcessor,
    poll_interval: Optional[float] = None,
    drain_limit: Optional[int] = None,
) -> asyncio.Task:
    """Start the worker task for processing jobs.

    This creates a background asyncio task that continuously drains the
    job queue and hands each drained set to the batch processor.

    Args:
        queue: JobQueue instance to pull jobs from
        processor: BatchProcessor that turns jobs into outcomes
        poll_interval: Seconds to wait when the queue is empty
        drain_limit: Maximum jobs claimed per drain

    Returns:
        asyncio.Task that can be cancelled during shutdown

    Example:
        worker_task = await start_worker(queue, processor)
        # ... application runs ...
        worker_task.cancel()  # Stop worker during shutdown
    """
    task = asyncio.create_task(
        _worker_loop(
            queue,
            processor,
            poll_interval if poll_interval is not None else settings.job_poll_interval,
            drain_limit if drain_limit is not None else settings.worker_drain_limit,
        )
    )
    logger.info("worker_started", source="worker")
    return task


async def drain_once(queue: JobQueue, processor: BatchProcessor, limit: int) -> int:
    """Drain up to `limit` jobs, process them and ack every outcome.

    Jobs left unacked because processing or an ack raised are released back
    to the queue before the error propagates.

    Returns:
        Number of jobs processed
    """
    jobs = await queue.drain(limit)
    if not jobs:
        return 0

    logger.info("worker_processing_jobs", count=len(jobs), source="worker")

    acked: set[int] = set()
    try:
        outcomes = await processor.process_batch(jobs)
        for outcome in outcomes:
            await queue.ack(outcome)
            acked.add(outcome.job_id)
    finally:
        unacked = [job.id for job in jobs if job.id not in acked]
        if unacked:
            await queue.release(unacked)

    return len(jobs)


async def _worker_loop(
    queue: JobQueue,
    processor: BatchProcessor,
    poll_interval: float,
    drain_limit: int,
) -> None:
    """Internal worker loop that processes jobs.

    This loop:
    1. Returns jobs left claimed by a previous run to the queue
    2. Drains up to drain_limit pending jobs
    3. Processes them in bounded batches and acks each outcome
    4. Waits poll_interval seconds whenever the queue is empty

    Note:
        This runs indefinitely until the task is cancelled.
    """
    logger.info(
        "worker_loop_started",
        poll_interval=poll_interval,
        drain_limit=drain_limit,
        batch_size=processor.batch_size,
        max_retries=processor.max_retries,
        concurrency=processor.concurrency,
        source="worker",
    )

    await queue.recover_in_flight()

    while True:
        try:
            processed = await drain_once(queue, processor, drain_limit)

            if not processed:
                # No jobs in queue, wait before polling again
                await asyncio.sleep(poll_interval)

        except asyncio.CancelledError:
            # Worker is being shut down
            logger.info("worker_shutting_down", source="worker")
            raise

        except Exception as loop_error:
            # Unexpected error in worker loop itself
            # Log but don't crash the worker
            logger.error(
                "worker_loop_error",
                error=str(loop_error),
                error_type=type(loop_error).__name__,
                source="worker",
                exc_info=True,
            )

            # Wait a bit before continuing to avoid tight error loops
            await asyncio.sleep(5)
