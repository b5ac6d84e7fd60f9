import json
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite
import structlog

from taskworker.config import settings
from taskworker.errors import TaskNotFoundError
from taskworker.models import (
    TERMINAL_STATUSES,
    TaskPriority,
    TaskRecord,
    TaskStatus,
    parse_timestamp,
    to_utc,
    utcnow,
)

logger = structlog.get_logger()

# Seconds to wait on a locked database before failing the statement
BUSY_TIMEOUT = 30.0

_TASK_COLUMNS = "id, title, description, status, priority, due_at, created_at, updated_at"


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime so that stored values order lexically."""
    if value is None:
        return None
    return to_utc(value).isoformat(timespec="microseconds")


def _row_to_task(row) -> TaskRecord:
    return TaskRecord(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        status=TaskStatus(row["status"]),
        priority=TaskPriority(row["priority"]),
        due_at=parse_timestamp(row["due_at"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


class TaskTransaction:
    """Task and outbox writes bound to one open SQLite transaction."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        async with self.db.execute(
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_task(row) if row else None

    async def insert_task(self, task: TaskRecord) -> None:
        await self.db.execute(
            f"""
            INSERT INTO tasks ({_TASK_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.title,
                task.description,
                task.status.value,
                task.priority.value,
                _ts(task.due_at),
                _ts(task.created_at),
                _ts(task.updated_at),
            ),
        )

    async def save_task(self, task: TaskRecord) -> None:
        cursor = await self.db.execute(
            """
            UPDATE tasks
            SET title = ?, description = ?, status = ?, priority = ?,
                due_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                task.title,
                task.description,
                task.status.value,
                task.priority.value,
                _ts(task.due_at),
                _ts(task.updated_at),
                task.id,
            ),
        )
        if cursor.rowcount == 0:
            raise TaskNotFoundError(task.id)

    async def delete_task(self, task_id: str) -> None:
        cursor = await self.db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        if cursor.rowcount == 0:
            raise TaskNotFoundError(task_id)

    async def add_outbox(self, kind: str, payload: dict) -> int:
        """Record a job to be relayed once this transaction commits.

        Returns:
            Outbox row ID
        """
        cursor = await self.db.execute(
            "INSERT INTO outbox (kind, payload, created_at) VALUES (?, ?, ?)",
            (kind, json.dumps(payload), _ts(utcnow())),
        )
        return cursor.lastrowid


class TaskStorage:
    """Manages task records, the job queue table and the outbox in SQLite."""

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Initialize task storage.

        Args:
            db_path: Path to SQLite database file. Uses settings if not provided.
        """
        self.db_path = db_path or settings.sqlite_path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        logger.info("task_storage_initialized", db_path=self.db_path)

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path, timeout=BUSY_TIMEOUT)

    async def initialize(self) -> None:
        """Initialize database schema."""
        async with self._connect() as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    due_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_due_status
                ON tasks(due_at ASC, status)
            """)

            # Jobs table for queue system
            await db.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    payload TEXT,
                    created_at TIMESTAMP NOT NULL,
                    started_at TIMESTAMP
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status_id
                ON jobs(status, id ASC)
            """)

            # Jobs written with a task mutation, waiting to be relayed
            await db.execute("""
                CREATE TABLE IF NOT EXISTS outbox (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            await db.commit()

        logger.info("database_initialized")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TaskTransaction]:
        """Open a write transaction.

        Commits when the block exits cleanly and rolls back when it raises.

        Example:
            async with storage.transaction() as tx:
                await tx.insert_task(task)
                await tx.add_outbox("task-status-update", payload)
        """
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield TaskTransaction(db)
            except Exception:
                await db.rollback()
                logger.warning("transaction_rolled_back", source="storage")
                raise
            await db.commit()

    # Task record methods

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        """Get a task by ID.

        Returns:
            TaskRecord or None if it does not exist
        """
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)
            ) as cursor:
                row = await cursor.fetchone()

        return _row_to_task(row) if row else None

    async def update_status(self, task_id: str, status: TaskStatus) -> TaskRecord:
        """Overwrite a task's status.

        Applying the same status twice leaves the record unchanged apart from
        its updated_at timestamp.

        Raises:
            TaskNotFoundError: If no task has the given ID
        """
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, _ts(utcnow()), task_id),
            )
            if cursor.rowcount == 0:
                await db.rollback()
                raise TaskNotFoundError(task_id)

            async with db.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)
            ) as cursor:
                row = await cursor.fetchone()
            await db.commit()

        logger.info(
            "task_status_updated",
            task_id=task_id,
            status=status.value,
            source="storage",
        )

        return _row_to_task(row)

    async def find_overdue(
        self,
        page: int,
        page_size: int,
        now: Optional[datetime] = None,
    ) -> list[TaskRecord]:
        """Get one page of non-terminal tasks whose due date has passed.

        Args:
            page: Zero-based page number
            page_size: Maximum rows per page
            now: Reference time, defaults to the current UTC time

        Returns:
            Tasks ordered by due date then ID
        """
        terminal = [s.value for s in TERMINAL_STATUSES]
        placeholders = ", ".join("?" for _ in terminal)

        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_TASK_COLUMNS}
                FROM tasks
                WHERE due_at IS NOT NULL
                  AND due_at < ?
                  AND status NOT IN ({placeholders})
                ORDER BY due_at ASC, id ASC
                LIMIT ? OFFSET ?
                """,
                (_ts(now or utcnow()), *terminal, page_size, page * page_size),
            ) as cursor:
                rows = await cursor.fetchall()

        return [_row_to_task(row) for row in rows]

    # Job queue methods

    async def insert_jobs(self, jobs: list[tuple[str, Optional[str]]]) -> list[int]:
        """Insert jobs into the queue in one transaction.

        Args:
            jobs: (kind, JSON payload) pairs

        Returns:
            Job IDs in input order
        """
        job_ids = []
        created_at = _ts(utcnow())

        async with self._connect() as db:
            for kind, payload in jobs:
                cursor = await db.execute(
                    """
                    INSERT INTO jobs (kind, status, payload, created_at)
                    VALUES (?, 'pending', ?, ?)
                    """,
                    (kind, payload, created_at),
                )
                job_ids.append(cursor.lastrowid)
            await db.commit()

        logger.debug("jobs_inserted", count=len(job_ids), source="queue")

        return job_ids

    async def claim_pending_jobs(self, limit: int) -> list[dict]:
        """Mark up to `limit` pending jobs as processing and return them.

        Returns:
            Job dicts in ID order
        """
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            await db.execute("BEGIN IMMEDIATE")
            async with db.execute(
                """
                SELECT id, kind, payload, created_at
                FROM jobs
                WHERE status = 'pending'
                ORDER BY id ASC
                LIMIT ?
                """,
                (limit,),
            ) as cursor:
                rows = [dict(row) for row in await cursor.fetchall()]

            if rows:
                await db.executemany(
                    "UPDATE jobs SET status = 'processing', started_at = ? WHERE id = ?",
                    [(_ts(utcnow()), row["id"]) for row in rows],
                )
            await db.commit()

        return rows

    async def delete_job(self, job_id: int) -> None:
        async with self._connect() as db:
            await db.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            await db.commit()

    async def reset_processing_jobs(self) -> int:
        """Return every processing job to pending.

        Returns:
            Number of jobs reset
        """
        async with self._connect() as db:
            cursor = await db.execute(
                """
                UPDATE jobs
                SET status = 'pending', started_at = NULL
                WHERE status = 'processing'
                """
            )
            await db.commit()
            return cursor.rowcount

    async def release_jobs(self, job_ids: list[int]) -> int:
        """Return the given processing jobs to pending.

        Returns:
            Number of jobs released
        """
        if not job_ids:
            return 0
        async with self._connect() as db:
            cursor = await db.executemany(
                """
                UPDATE jobs
                SET status = 'pending', started_at = NULL
                WHERE id = ? AND status = 'processing'
                """,
                [(job_id,) for job_id in job_ids],
            )
            await db.commit()
            return cursor.rowcount

    async def get_job_stats(self) -> dict:
        """Get job counts by status plus the outbox backlog."""
        async with self._connect() as db:
            async with db.execute(
                "SELECT status, COUNT(*) FROM jobs GROUP BY status"
            ) as cursor:
                by_status = {status: count for status, count in await cursor.fetchall()}

            async with db.execute("SELECT COUNT(*) FROM outbox") as cursor:
                row = await cursor.fetchone()

        return {
            "pending": by_status.get("pending", 0),
            "processing": by_status.get("processing", 0),
            "outbox": row[0] or 0,
        }

    # Outbox methods

    async def fetch_outbox(self, limit: int) -> list[dict]:
        """Get the oldest outbox rows.

        Returns:
            Row dicts with decoded payloads, in ID order
        """
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT id, kind, payload FROM outbox ORDER BY id ASC LIMIT ?",
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()

        return [
            {"id": row["id"], "kind": row["kind"], "payload": json.loads(row["payload"])}
            for row in rows
        ]

    async def delete_outbox(self, outbox_ids: list[int]) -> None:
        if not outbox_ids:
            return
        async with self._connect() as db:
            await db.executemany(
                "DELETE FROM outbox WHERE id = ?", [(i,) for i in outbox_ids]
            )
            await db.commit()
