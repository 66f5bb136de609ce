"""Job repository — the narrow key/value contract over the jobs table.

The orchestrator is the only writer: create on submission, then status,
answer and failure updates at well-defined transition points.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict

from quarry.db.connection import LockedConnection
from quarry.db.models import PAYLOAD_KINDS, Job, JobStatus, SourceFailure
from quarry.errors import JobNotFoundError

_JOB_COLUMNS = "id, name, kind, payload, status, answer, failures, created_at"


class JobRepository:
    """Data access layer for Job records.

    Wraps an open LockedConnection. The connection is owned by the caller
    and must be closed after use. Each statement and its commit run under
    ``conn.lock``.
    """

    def __init__(self, conn: LockedConnection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open connection from Database.connect() with schema
                initialised (see quarry.db.schema.initialize).
        """
        self._conn = conn

    def create(self, job: Job) -> None:
        """Insert a new job record."""
        with self._conn.lock:
            self._conn.execute(
                """
                INSERT INTO jobs (id, name, kind, payload, status, answer, failures)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.name,
                    job.kind,
                    job.payload.to_json(),
                    job.status.value,
                    job.answer,
                    _failures_to_json(job.failures),
                ),
            )
            self._conn.commit()

    def get(self, job_id: str) -> Job | None:
        """Return a job by ID, or None if not found."""
        with self._conn.lock:
            row = self._conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return _row_to_job(row) if row else None

    def load(self, job_id: str) -> Job:
        """Return a job by ID.

        Raises:
            JobNotFoundError: If no job has *job_id*.
        """
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' not found.")
        return job

    def list_jobs(self) -> list[Job]:
        """Return all jobs ordered by creation time (oldest first)."""
        with self._conn.lock:
            rows = self._conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM jobs ORDER BY created_at, rowid"
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def save_status(self, job_id: str, status: JobStatus) -> None:
        self._update(job_id, "status", status.value)

    def save_answer(self, job_id: str, text: str) -> None:
        """Overwrite the job's answer; earlier answers are not kept."""
        self._update(job_id, "answer", text)

    def save_failures(self, job_id: str, failures: list[SourceFailure]) -> None:
        self._update(job_id, "failures", _failures_to_json(failures))

    def _update(self, job_id: str, column: str, value: str) -> None:
        with self._conn.lock:
            cur = self._conn.execute(
                f"UPDATE jobs SET {column} = ? WHERE id = ?",  # noqa: S608
                (value, job_id),
            )
            self._conn.commit()
        if cur.rowcount == 0:
            raise JobNotFoundError(f"Job '{job_id}' not found.")


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _failures_to_json(failures: list[SourceFailure]) -> str:
    return json.dumps([asdict(f) for f in failures])


def _row_to_job(row: sqlite3.Row) -> Job:
    payload_cls = PAYLOAD_KINDS.get(row["kind"])
    if payload_cls is None:
        raise ValueError(f"Unknown job kind '{row['kind']}' for job '{row['id']}'")
    return Job(
        id=row["id"],
        name=row["name"],
        payload=payload_cls.from_json(row["payload"]),
        status=JobStatus(row["status"]),
        answer=row["answer"],
        failures=[SourceFailure(**f) for f in json.loads(row["failures"])],
        created_at=row["created_at"],
    )
