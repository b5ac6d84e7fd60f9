# tests/test_batch.py

from __future__ import annotations

import asyncio

import pytest

from taskworker.jobs.batch import BatchProcessor, chunked, partition
from taskworker.jobs.models import Job, Outcome


def make_jobs(count: int) -> list[Job]:
    return [Job(id=i, kind="k") for i in range(count)]


class RecordingHandler:
    """
    Records start/end events and the peak number of in-flight calls.

    Jobs whose id is in `fail_ids` always raise.
    """

    def __init__(self, fail_ids: set[int] | None = None) -> None:
        self.fail_ids = fail_ids or set()
        self.events: list[tuple[str, int]] = []
        self.active = 0
        self.peak = 0

    async def __call__(self, job: Job) -> Outcome:
        self.events.append(("start", job.id))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.001 * (job.id % 3))
            if job.id in self.fail_ids:
                raise RuntimeError(f"job {job.id} failed")
            return Outcome.ok(job)
        finally:
            self.active -= 1
            self.events.append(("end", job.id))


def test_partition_23_jobs_into_groups_and_chunks() -> None:
    groups = partition(make_jobs(23), batch_size=10, concurrency=5)

    assert [[len(chunk) for chunk in group] for group in groups] == [[5, 5], [5, 5], [3]]
    assert [job.id for group in groups for chunk in group for job in chunk] == list(range(23))


def test_partition_rejects_non_positive_sizes() -> None:
    with pytest.raises(ValueError):
        partition(make_jobs(3), batch_size=0, concurrency=1)
    with pytest.raises(ValueError):
        chunked([1, 2], 0)


def test_partition_of_no_jobs_is_empty() -> None:
    assert partition([], batch_size=10, concurrency=5) == []


@pytest.mark.asyncio
async def test_every_job_yields_exactly_one_outcome() -> None:
    jobs = make_jobs(23)
    processor = BatchProcessor(RecordingHandler(fail_ids={3, 12}), timeout=None)

    outcomes = await processor.process_batch(jobs, batch_size=10, max_retries=1, concurrency=5)

    assert len(outcomes) == len(jobs)
    assert sorted(o.job_id for o in outcomes) == list(range(23))


@pytest.mark.asyncio
async def test_chunks_are_join_points_and_concurrency_is_bounded() -> None:
    handler = RecordingHandler()
    processor = BatchProcessor(handler, timeout=None)

    await processor.process_batch(make_jobs(23), batch_size=10, max_retries=0, concurrency=5)

    assert handler.peak == 5

    chunks = [list(range(start, min(start + 5, 23))) for start in range(0, 23, 5)]
    positions = {event: index for index, event in enumerate(handler.events)}
    for previous, current in zip(chunks, chunks[1:]):
        last_end = max(positions[("end", i)] for i in previous)
        first_start = min(positions[("start", i)] for i in current)
        assert last_end < first_start


@pytest.mark.asyncio
async def test_failure_does_not_block_siblings_in_chunk() -> None:
    handler = RecordingHandler(fail_ids={2})
    processor = BatchProcessor(handler, timeout=None)

    outcomes = await processor.process_batch(make_jobs(5), batch_size=10, max_retries=2, concurrency=5)

    by_id = {o.job_id: o for o in outcomes}
    assert by_id[2].success is False
    assert "job 2 failed" in by_id[2].error
    assert all(by_id[i].success for i in (0, 1, 3, 4))
    # 3 attempts for the failing job, 1 for each sibling
    assert sum(1 for kind, job_id in handler.events if kind == "start" and job_id == 2) == 3


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_failed_outcome(monkeypatch) -> None:
    async def exploding_run_with_retry(job, handler, max_retries, timeout=None):
        if job.id == 1:
            raise KeyError("executor bug")
        return Outcome.ok(job)

    monkeypatch.setattr("taskworker.jobs.batch.run_with_retry", exploding_run_with_retry)
    processor = BatchProcessor(RecordingHandler(), timeout=None)

    outcomes = await processor.process_batch(make_jobs(3), batch_size=10, max_retries=0, concurrency=3)

    by_id = {o.job_id: o for o in outcomes}
    assert len(outcomes) == 3
    assert by_id[1].success is False
    assert by_id[1].error.startswith("KeyError")
    assert by_id[0].success and by_id[2].success


@pytest.mark.asyncio
async def test_process_single_job_uses_defaults() -> None:
    handler = RecordingHandler()
    processor = BatchProcessor(handler, batch_size=10, max_retries=3, concurrency=5)

    outcome = await processor.process(Job(id=42, kind="k"))

    assert outcome == Outcome(job_id=42, success=True)
    assert handler.events == [("start", 42), ("end", 42)]
