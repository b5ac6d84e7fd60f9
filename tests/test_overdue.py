# tests/test_overdue.py

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from taskworker.jobs.models import JobKind
from taskworker.jobs.overdue import OverdueScanner, run_overdue_scanner
from taskworker.models import TaskStatus
from taskworker.storage import TaskStorage

from .fakes import FakeOverdueStore, FakeQueue, make_task


@pytest.mark.asyncio
async def test_scan_pages_until_short_page_and_bulk_enqueues_once() -> None:
    tasks = [make_task(i) for i in range(250)]
    store, queue = FakeOverdueStore(tasks), FakeQueue()

    count = await OverdueScanner(store, queue, page_size=100).scan()

    assert count == 250
    assert store.page_queries == [(0, 100), (1, 100), (2, 100)]
    assert len(queue.bulk_calls) == 1
    assert len(queue.bulk_calls[0]) == 250
    kinds = {kind for kind, _ in queue.enqueued}
    assert kinds == {JobKind.OVERDUE_NOTIFICATION.value}
    assert [payload["id"] for _, payload in queue.enqueued] == [t.id for t in tasks]


@pytest.mark.asyncio
async def test_exact_multiple_of_page_size_needs_trailing_empty_page() -> None:
    store, queue = FakeOverdueStore([make_task(i) for i in range(200)]), FakeQueue()

    await OverdueScanner(store, queue, page_size=100).scan()

    assert len(store.page_queries) == 3
    assert len(queue.enqueued) == 200


@pytest.mark.asyncio
async def test_no_overdue_tasks_enqueues_nothing() -> None:
    store, queue = FakeOverdueStore([]), FakeQueue()

    assert await OverdueScanner(store, queue, page_size=100).scan() == 0
    assert queue.bulk_calls == []


@pytest.mark.parametrize("page_size", [0, -1])
def test_non_positive_page_size_is_rejected(page_size: int) -> None:
    with pytest.raises(ValueError, match="page_size must be positive"):
        OverdueScanner(FakeOverdueStore([]), FakeQueue(), page_size=page_size)


@pytest.mark.asyncio
async def test_failed_bulk_enqueue_is_not_retried_within_scan() -> None:
    store, queue = FakeOverdueStore([make_task(1)]), FakeQueue(fail=True)

    with pytest.raises(ConnectionError):
        await OverdueScanner(store, queue, page_size=100).scan()

    assert queue.bulk_calls == []
    assert len(store.page_queries) == 1


@pytest.mark.asyncio
async def test_scanner_loop_survives_failures() -> None:
    store, queue = FakeOverdueStore([make_task(1)]), FakeQueue(fail=True)
    scanner = OverdueScanner(store, queue, page_size=100)

    runner = asyncio.create_task(run_overdue_scanner(scanner, interval=0.01))
    await asyncio.sleep(0.05)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert len(store.page_queries) >= 2


@pytest.mark.asyncio
async def test_storage_finds_only_past_due_non_terminal_tasks(storage: TaskStorage) -> None:
    overdue = [make_task(i, due_in=timedelta(hours=-i - 1)) for i in range(3)]
    others = [
        make_task(10, due_in=timedelta(hours=1)),
        make_task(11, due_in=None),
        make_task(12, status=TaskStatus.COMPLETED),
    ]
    async with storage.transaction() as tx:
        for task in overdue + others:
            await tx.insert_task(task)

    queue = FakeQueue()
    count = await OverdueScanner(storage, queue, page_size=2).scan()

    assert count == 3
    # Oldest due date first
    assert [payload["id"] for _, payload in queue.enqueued] == [t.id for t in reversed(overdue)]
