# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest_asyncio

from taskworker.jobs.queue import JobQueue
from taskworker.storage import TaskStorage


@pytest_asyncio.fixture()
async def storage(tmp_path: Path) -> TaskStorage:
    """
    Real SQLite-backed storage in a per-test temp directory.

    Storage correctness (transactions, paging, claiming) is part of what
    the tests cover, so these tests do not fake it.
    """
    store = TaskStorage(str(tmp_path / "taskworker.db"))
    await store.initialize()
    return store


@pytest_asyncio.fixture()
async def queue(storage: TaskStorage) -> JobQueue:
    return JobQueue(storage)
