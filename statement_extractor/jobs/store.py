"""
Keyed record store for processing jobs.

The pipeline only talks to the ``JobStore`` protocol (create / update /
get_by_id / list_by_owner).  ``SQLiteJobStore`` is the bundled implementation.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

from statement_extractor.config import DATABASE_PATH
from statement_extractor.database import get_db, init_db
from statement_extractor.models import JobStatus, ProcessingJob

_COLUMNS = (
    "id", "user_id", "status", "file_name", "file_size", "total_pages",
    "chunks_total", "chunks_processed", "total_transactions",
    "validated_transactions", "final_transactions", "progress_percentage",
    "result_json", "error_message", "started_at", "completed_at",
    "created_at", "updated_at",
)


class JobStore(Protocol):
    def create(self, job: ProcessingJob) -> ProcessingJob: ...

    def update(self, job_id: str, fields: dict[str, Any]) -> ProcessingJob: ...

    def get_by_id(self, job_id: str, owner_id: str) -> Optional[ProcessingJob]: ...

    def list_by_owner(
        self, owner_id: str, status: str | None = None, limit: int | None = None
    ) -> list[ProcessingJob]: ...

    def delete_finished_before(self, days: int) -> int: ...


def _to_row(fields: dict[str, Any]) -> dict[str, Any]:
    row = dict(fields)
    if "result" in row:
        result = row.pop("result")
        row["result_json"] = json.dumps(result, ensure_ascii=False) if result is not None else None
    if isinstance(row.get("status"), JobStatus):
        row["status"] = row["status"].value
    return row


def _from_row(row) -> ProcessingJob:
    data = dict(row)
    result_json = data.pop("result_json", None)
    data["result"] = json.loads(result_json) if result_json else None
    return ProcessingJob(**data)


class SQLiteJobStore:
    """Job store backed by the ``processing_jobs`` table."""

    def __init__(self, db_path: str | None = None):
        self.db_path = db_path or DATABASE_PATH
        init_db(self.db_path)

    def create(self, job: ProcessingJob) -> ProcessingJob:
        row = _to_row(job.model_dump())
        placeholders = ",".join("?" for _ in _COLUMNS)
        with get_db(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO processing_jobs ({','.join(_COLUMNS)}) VALUES ({placeholders})",
                tuple(row[c] for c in _COLUMNS),
            )
        return self._get(job.id)

    def update(self, job_id: str, fields: dict[str, Any]) -> ProcessingJob:
        row = _to_row(fields)
        unknown = set(row) - set(_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")
        if row:
            assignments = ", ".join(f"{c} = ?" for c in row)
            with get_db(self.db_path) as conn:
                cur = conn.execute(
                    f"UPDATE processing_jobs SET {assignments} WHERE id = ?",
                    (*row.values(), job_id),
                )
                if cur.rowcount == 0:
                    raise KeyError(f"Job {job_id} does not exist")
        return self._get(job_id)

    def _get(self, job_id: str) -> ProcessingJob:
        with get_db(self.db_path) as conn:
            row = conn.execute("SELECT * FROM processing_jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise KeyError(f"Job {job_id} does not exist")
        return _from_row(row)

    def get_by_id(self, job_id: str, owner_id: str) -> Optional[ProcessingJob]:
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM processing_jobs WHERE id = ? AND user_id = ?",
                (job_id, owner_id),
            ).fetchone()
        return _from_row(row) if row else None

    def list_by_owner(
        self, owner_id: str, status: str | None = None, limit: int | None = None
    ) -> list[ProcessingJob]:
        query = "SELECT * FROM processing_jobs WHERE user_id = ?"
        params: list = [owner_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        with get_db(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_from_row(r) for r in rows]

    def delete_finished_before(self, days: int) -> int:
        """Delete completed/failed jobs that finished more than *days* ago."""
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        with get_db(self.db_path) as conn:
            cur = conn.execute(
                "DELETE FROM processing_jobs WHERE status IN (?, ?) AND completed_at < ?",
                (JobStatus.COMPLETED.value, JobStatus.FAILED.value, cutoff),
            )
        return cur.rowcount
