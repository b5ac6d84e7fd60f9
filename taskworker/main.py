"""Main entry point for taskworker - FastAPI host for the background job engine."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from taskworker.commands import TaskCommandService
from taskworker.config import settings
from taskworker.jobs import (
    BatchProcessor,
    JobDispatcher,
    JobQueue,
    OutboxRelay,
    OverdueScanner,
    start_worker,
)
from taskworker.jobs.outbox import run_outbox_relay
from taskworker.jobs.overdue import run_overdue_scanner
from taskworker.reporter import build_notifier
from taskworker.storage import TaskStorage

VERSION = "0.1.0"


def configure_logging(log_level: Optional[str] = None) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(structlog.stdlib.logging, (log_level or settings.log_level).upper())
        ),
    )


configure_logging()

logger = structlog.get_logger()

# Global instances
storage: Optional[TaskStorage] = None
queue: Optional[JobQueue] = None
scanner: Optional[OverdueScanner] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ScanResponse(BaseModel):
    """Response model for a manual overdue scan."""
    status: str
    overdue_count: int


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    global storage, queue, scanner

    logger.info(
        "taskworker_starting",
        version=VERSION,
        batch_size=settings.job_batch_size,
        max_retries=settings.job_max_retries,
        concurrency=settings.job_concurrency,
    )

    storage = TaskStorage()
    await storage.initialize()

    queue = JobQueue(storage)
    dispatcher = JobDispatcher(storage, build_notifier())
    processor = BatchProcessor(
        dispatcher.dispatch,
        timeout=settings.job_handler_timeout,
    )
    scanner = OverdueScanner(storage, queue)
    relay = OutboxRelay(storage, queue)

    # Write-then-enqueue entry point for code hosted alongside the worker
    app.state.commands = TaskCommandService(storage, relay)

    background = [
        await start_worker(queue, processor),
        asyncio.create_task(run_overdue_scanner(scanner)),
        asyncio.create_task(run_outbox_relay(relay)),
    ]

    yield

    for task in background:
        task.cancel()
    await asyncio.gather(*background, return_exceptions=True)

    logger.info("taskworker_shutdown")


# Create FastAPI app
app = FastAPI(
    title="taskworker",
    description="Background job processing for task status changes and overdue notices",
    version=VERSION,
    lifespan=lifespan,
)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=VERSION)


@app.get("/jobs/stats")
async def job_stats():
    """Queue depth and outbox backlog."""
    if not queue:
        raise HTTPException(status_code=503, detail="Queue not initialized")

    return await queue.stats()


@app.post("/overdue/scan", response_model=ScanResponse)
async def trigger_overdue_scan():
    """Run an overdue scan now instead of waiting for the next tick."""
    if not scanner:
        raise HTTPException(status_code=503, detail="Scanner not initialized")

    count = await scanner.scan()

    return ScanResponse(status="completed", overdue_count=count)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "taskworker",
        "version": VERSION,
        "endpoints": {
            "health": "/health",
            "job_stats": "/jobs/stats",
            "trigger_overdue_scan": "POST /overdue/scan",
            "docs": "/docs",
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "taskworker.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
    )
