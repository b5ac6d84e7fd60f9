"""Job queue system for background task processing."""

from .batch import BatchProcessor
from .executor import run_with_retry
from .models import Job, JobKind, Outcome, OverdueNotification, StatusUpdate
from .outbox import OutboxRelay
from .overdue import OverdueScanner
from .processors import JobDispatcher
from .queue import JobQueue
from .worker import start_worker

__all__ = [
    "BatchProcessor",
    "Job",
    "JobDispatcher",
    "JobKind",
    "JobQueue",
    "Outcome",
    "OutboxRelay",
    "OverdueNotification",
    "OverdueScanner",
    "StatusUpdate",
    "run_with_retry",
    "start_worker",
]
