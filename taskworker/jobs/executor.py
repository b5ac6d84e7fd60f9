import asyncio
import structlog
from dataclasses import replace
from typing import Awaitable, Callable, Optional

from taskworker.jobs.models import Job, Outcome

logger = structlog.get_logger()

Handler = Callable[[Job], Awaitable[Outcome]]


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "TimeoutError: handler exceeded its deadline"
    return f"{type(error).__name__}: {error}"


async def run_with_retry(
    job: Job,
    handler: Handler,
    max_retries: int,
    timeout: Optional[float] = None,
) -> Outcome:
    """Run a handler with bounded, immediate retries.

    The handler is called at most `max_retries + 1` times. Each call gets a
    copy of the job whose `attempt` is the zero-based attempt number. Retries
    stay local to this call; nothing is re-enqueued.

    Args:
        job: Job to process
        handler: Coroutine function returning the job's outcome
        max_retries: Retries after the first attempt, 0 for a single attempt
        timeout: Per-attempt deadline in seconds; a timeout counts as a failure

    Returns:
        The first outcome the handler returns, or a failed outcome carrying
        the last error once every attempt has failed
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")

    last_error = "Unknown error"

    for attempt in range(max_retries + 1):
        current = replace(job, attempt=attempt)
        try:
            if timeout is None:
                return await handler(current)
            return await asyncio.wait_for(handler(current), timeout)
        except Exception as e:
            last_error = _describe(e)
            will_retry = attempt < max_retries

            logger.error(
                "job_attempt_failed",
                job_id=job.id,
                job_kind=job.kind,
                attempt=attempt + 1,
                error=last_error,
                will_retry=will_retry,
                source="executor",
                exc_info=not will_retry,
            )

    return Outcome.failed(job, last_error)
