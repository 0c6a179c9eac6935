"""
Processing-job state machine.

    pending ──start──▶ processing ──complete──▶ completed
       │                   │  ▲
       │                   └──┘ progress
       └──────fail─────────┴─────────────────▶ failed

``cancelled`` is a valid terminal state in the schema but nothing in the
pipeline moves a job there.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from statement_extractor.config import JOB_RETENTION_DAYS
from statement_extractor.errors import InvalidJobTransition
from statement_extractor.jobs.store import JobStore
from statement_extractor.models import AggregationResult, JobStatus, ProcessingJob

logger = logging.getLogger(__name__)

_ALLOWED = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.PROCESSING: {
        JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED,
    },
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def progress_percentage(chunks_processed: int, chunks_total: int | None) -> float:
    if not chunks_total:
        return 0.0
    return round(chunks_processed / chunks_total * 100, 2)


class JobManager:
    def __init__(self, store: JobStore):
        self.store = store

    def _transition(self, job_id: str, current: JobStatus, target: JobStatus, fields: dict[str, Any]) -> ProcessingJob:
        if target not in _ALLOWED.get(current, set()):
            raise InvalidJobTransition(current.value, target.value)
        fields = {**fields, "status": target, "updated_at": _now()}
        if target in (JobStatus.COMPLETED, JobStatus.FAILED):
            fields["completed_at"] = fields["updated_at"]
        job = self.store.update(job_id, fields)
        if current != target:
            logger.info("Job %s: %s → %s", job_id, current.value, target.value)
        return job

    def create_job(
        self,
        user_id: str,
        file_name: str | None = None,
        file_size: int | None = None,
        total_pages: int | None = None,
        chunks_total: int | None = None,
    ) -> ProcessingJob:
        if not user_id:
            raise ValueError("User ID is required")
        now = _now()
        job = ProcessingJob(
            id=str(uuid.uuid4()),
            user_id=user_id,
            status=JobStatus.PENDING,
            file_name=file_name,
            file_size=file_size,
            total_pages=total_pages,
            chunks_total=chunks_total,
            started_at=now,
            created_at=now,
            updated_at=now,
        )
        created = self.store.create(job)
        logger.info("Created job %s for %s (%s chunks)", created.id, file_name, chunks_total)
        return created

    def start(self, job: ProcessingJob) -> ProcessingJob:
        return self._transition(job.id, job.status, JobStatus.PROCESSING, {})

    def record_progress(
        self, job: ProcessingJob, chunks_processed: int, total_transactions: int
    ) -> ProcessingJob:
        return self._transition(job.id, job.status, JobStatus.PROCESSING, {
            "chunks_processed": chunks_processed,
            "total_transactions": total_transactions,
            "progress_percentage": progress_percentage(chunks_processed, job.chunks_total),
        })

    def complete(self, job: ProcessingJob, aggregation: AggregationResult) -> ProcessingJob:
        return self._transition(job.id, job.status, JobStatus.COMPLETED, {
            "total_transactions": aggregation.total,
            "validated_transactions": aggregation.validated,
            "final_transactions": aggregation.final,
            "result": [t.model_dump() for t in aggregation.transactions],
            "progress_percentage": 100.0,
        })

    def fail(self, job: ProcessingJob, error_message: str) -> ProcessingJob:
        return self._transition(job.id, job.status, JobStatus.FAILED, {
            "error_message": error_message,
        })

    def get_job(self, job_id: str, user_id: str) -> Optional[ProcessingJob]:
        if not job_id or not user_id:
            return None
        return self.store.get_by_id(job_id, user_id)

    def list_jobs(self, user_id: str, status: str | None = None, limit: int | None = None) -> list[ProcessingJob]:
        if not user_id:
            raise ValueError("User ID is required")
        return self.store.list_by_owner(user_id, status=status, limit=limit)

    def cleanup_old_jobs(self, days: int | None = None) -> int:
        """Drop completed/failed jobs older than the retention horizon."""
        days = days if days is not None else JOB_RETENTION_DAYS
        removed = self.store.delete_finished_before(days)
        if removed:
            logger.info("Cleaned up %d jobs older than %d days", removed, days)
        return removed
