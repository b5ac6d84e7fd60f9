import asyncio
import structlog
from typing import Optional, Sequence, TypeVar

from taskworker.config import settings
from taskworker.jobs.executor import Handler, run_with_retry
from taskworker.jobs.models import Job, Outcome

logger = structlog.get_logger()

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive lists of `size`; the last may be shorter."""
    if size <= 0:
        raise ValueError("size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def partition(
    jobs: Sequence[Job], batch_size: int, concurrency: int
) -> list[list[list[Job]]]:
    """Split jobs into batches of `batch_size`, each split into chunks of `concurrency`.

    Example:
        23 jobs with batch_size=10, concurrency=5 give
        [[5, 5], [5, 5], [3]] chunk sizes.
    """
    return [chunked(batch, concurrency) for batch in chunked(jobs, batch_size)]


class BatchProcessor:
    """Drives a handler over drained jobs with bounded batches and concurrency.

    Jobs in one chunk run concurrently and the chunk is a join point: the
    next chunk starts only when every job in the current one has an outcome.
    A failing job never cancels its siblings.
    """

    def __init__(
        self,
        handler: Handler,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Initialize the processor.

        Args:
            handler: Single-attempt job handler, usually JobDispatcher.dispatch
            batch_size: Default batch size. Uses settings if not provided.
            max_retries: Default retry bound. Uses settings if not provided.
            concurrency: Default in-flight bound. Uses settings if not provided.
            timeout: Per-attempt deadline in seconds, None for no deadline
        """
        self.handler = handler
        self.batch_size = batch_size if batch_size is not None else settings.job_batch_size
        self.max_retries = max_retries if max_retries is not None else settings.job_max_retries
        self.concurrency = concurrency if concurrency is not None else settings.job_concurrency
        self.timeout = timeout

    async def process_batch(
        self,
        jobs: Sequence[Job],
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        concurrency: Optional[int] = None,
    ) -> list[Outcome]:
        """Process jobs and return exactly one outcome per job.

        Outcomes come back in the order chunks finish, which is not
        necessarily input order.
        """
        batch_size = batch_size if batch_size is not None else self.batch_size
        max_retries = max_retries if max_retries is not None else self.max_retries
        concurrency = concurrency if concurrency is not None else self.concurrency

        outcomes: list[Outcome] = []

        for batch in partition(jobs, batch_size, concurrency):
            for chunk in batch:
                results = await asyncio.gather(
                    *(
                        run_with_retry(job, self.handler, max_retries, self.timeout)
                        for job in chunk
                    ),
                    return_exceptions=True,
                )
                for job, result in zip(chunk, results):
                    if isinstance(result, asyncio.CancelledError):
                        raise result
                    if isinstance(result, BaseException):
                        logger.error(
                            "job_processing_crashed",
                            job_id=job.id,
                            error=str(result),
                            error_type=type(result).__name__,
                            source="batch",
                        )
                        result = Outcome.failed(job, f"{type(result).__name__}: {result}")
                    outcomes.append(result)

        succeeded = sum(1 for o in outcomes if o.success)
        logger.info(
            "batch_processed",
            total=len(outcomes),
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
            source="batch",
        )

        return outcomes

    async def process(self, job: Job) -> Outcome:
        """Process a single job."""
        return (await self.process_batch([job]))[0]
