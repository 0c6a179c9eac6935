"""
Extraction pipeline — orchestrates the flow from statement PDF to debit records.

    PDF bytes
      → split into page-group chunks
      → per chunk, sequentially: prompt model (cache / limiter / cost / retry)
                                 → tolerant parse
      → validate + deduplicate across chunks
      → return inline (extract_transactions) or write to a job (extract_async)
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from statement_extractor import config
from statement_extractor.errors import (
    ChunkParseFailure,
    DocumentParseError,
    ExternalServiceError,
    JobNotFound,
)
from statement_extractor.ingest.aggregator import aggregate
from statement_extractor.ingest.chunker import chunk_count, count_pages, split_pdf
from statement_extractor.ingest.processor import process_chunk
from statement_extractor.jobs.manager import JobManager
from statement_extractor.jobs.store import SQLiteJobStore
from statement_extractor.llm.cache import response_cache
from statement_extractor.llm.cost_tracker import cost_tracker
from statement_extractor.llm.rate_limiter import rate_limiter
from statement_extractor.models import ExtractionResult, ProcessingJob

logger = logging.getLogger(__name__)

# Strong references to in-flight background jobs so they aren't garbage collected.
_background_tasks: set[asyncio.Task] = set()
_default_manager: Optional[JobManager] = None


def get_job_manager() -> JobManager:
    global _default_manager
    if _default_manager is None:
        _default_manager = JobManager(SQLiteJobStore(config.DATABASE_PATH))
    return _default_manager


# ── chunk loop shared by both façades ─────────────────────────────────────────

async def _run_chunks(
    chunks,
    model: str | None,
    on_chunk: Callable[[int, int], None] | None = None,
) -> tuple[list[list[dict]], int]:
    """
    Process *chunks* one after another in page order.

    A chunk whose model call fails contributes no records.  Authorization
    errors, cost-limit errors and anything unexpected propagate.
    ``on_chunk(processed, candidates)`` runs after every chunk, successful or
    not.
    """
    results: list[list[dict]] = []
    failed = 0
    candidates = 0
    for chunk in chunks:
        try:
            records = await process_chunk(chunk, model=model)
        except (ExternalServiceError, ChunkParseFailure) as e:
            if isinstance(e, ExternalServiceError) and e.is_auth_error:
                raise
            logger.warning("Skipping %s: %s", chunk.label, e)
            records = []
            failed += 1
        results.append(records)
        candidates += len(records)
        if on_chunk is not None:
            on_chunk(len(results), candidates)
    return results, failed


# ── synchronous façade ────────────────────────────────────────────────────────

async def extract_transactions(
    document: bytes,
    model: str | None = None,
    pages_per_chunk: int | None = None,
) -> ExtractionResult:
    """
    Run the whole pipeline inline and return the deduplicated debits.

    Raises ``DocumentParseError`` for unreadable input and
    ``CostLimitExceeded`` when the budget is exhausted.
    """
    chunks = split_pdf(document, pages_per_chunk)
    results, failed = await _run_chunks(chunks, model)
    aggregation = aggregate(results)

    if failed:
        logger.warning("%d of %d chunks failed; result is partial", failed, len(chunks))

    return ExtractionResult(
        transactions=aggregation.transactions,
        total_pages=chunks[-1].end_page,
        chunks_total=len(chunks),
        chunks_failed=failed,
        total_transactions=aggregation.total,
        validated_transactions=aggregation.validated,
        final_transactions=aggregation.final,
    )


# ── asynchronous façade ───────────────────────────────────────────────────────

async def run_job(
    manager: JobManager,
    job: ProcessingJob,
    document: bytes,
    model: str | None = None,
    pages_per_chunk: int | None = None,
) -> ProcessingJob:
    """Background body of an async extraction; never raises past the job record."""
    try:
        chunks = split_pdf(document, pages_per_chunk)
        job = manager.start(job)

        def on_chunk(processed: int, candidates: int) -> None:
            nonlocal job
            job = manager.record_progress(job, processed, candidates)

        results, failed = await _run_chunks(chunks, model, on_chunk)
        if failed:
            logger.warning("Job %s: %d of %d chunks failed", job.id, failed, len(chunks))
        job = manager.complete(job, aggregate(results))
    except Exception as e:
        logger.exception("Job %s failed", job.id)
        job = manager.fail(job, str(e))
    return job


def _on_task_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("Background job task crashed", exc_info=task.exception())


async def extract_async(
    document: bytes,
    owner_id: str,
    file_name: str | None = None,
    file_size: int | None = None,
    model: str | None = None,
    pages_per_chunk: int | None = None,
    manager: JobManager | None = None,
) -> ProcessingJob:
    """
    Create a job, start the pipeline in the background and return the job
    immediately (status ``pending``, or ``failed`` if the PDF is unreadable).
    """
    manager = manager or get_job_manager()

    parse_error: Optional[DocumentParseError] = None
    total_pages = None
    try:
        total_pages = count_pages(document)
    except DocumentParseError as e:
        parse_error = e

    job = manager.create_job(
        user_id=owner_id,
        file_name=file_name,
        file_size=file_size if file_size is not None else len(document),
        total_pages=total_pages,
        chunks_total=chunk_count(total_pages, pages_per_chunk) if total_pages else None,
    )
    if parse_error is not None:
        logger.warning("Job %s rejected: %s", job.id, parse_error)
        return manager.fail(job, str(parse_error))

    task = asyncio.create_task(run_job(manager, job, document, model, pages_per_chunk))
    _background_tasks.add(task)
    task.add_done_callback(_on_task_done)
    return job


def get_job_status(job_id: str, owner_id: str, manager: JobManager | None = None) -> ProcessingJob:
    """Return the caller's job; other owners' jobs are reported as not found."""
    manager = manager or get_job_manager()
    job = manager.get_job(job_id, owner_id)
    if job is None:
        raise JobNotFound(job_id)
    return job


# ── batch of independent documents ────────────────────────────────────────────

async def extract_batch(
    documents: list[dict],
    model: str | None = None,
    batch_size: int | None = None,
    batch_delay: float | None = None,
    stagger: float | None = None,
) -> list[dict]:
    """
    Extract several independent statements.

    *documents* are dicts with ``data`` (PDF bytes) and optional ``id``.
    Documents in one group run concurrently, each staggered by
    ``index * stagger`` seconds; groups are separated by ``batch_delay``.
    Failures are reported per item and never abort the batch.
    """
    batch_size = batch_size or config.BATCH_SIZE
    batch_delay = config.BATCH_DELAY if batch_delay is None else batch_delay
    stagger = config.BATCH_STAGGER if stagger is None else stagger
    total_batches = -(-len(documents) // batch_size)
    spent_before = cost_tracker.monthly_total

    logger.info("Processing %d documents in %d batches", len(documents), total_batches)

    async def _one(doc: dict, index: int, batch_number: int) -> dict:
        doc_id = doc.get("id") or f"batch_{batch_number}_{index}"
        await asyncio.sleep(index * stagger)
        try:
            result = await extract_transactions(doc["data"], model=model)
        except Exception as e:
            logger.error("Batch item %s failed: %s", doc_id, e)
            return {"id": doc_id, "success": False, "error": str(e)}
        return {"id": doc_id, "success": True, "result": result}

    results: list[dict] = []
    for start in range(0, len(documents), batch_size):
        batch = documents[start : start + batch_size]
        batch_number = start // batch_size + 1
        logger.info("Batch %d/%d (%d items)", batch_number, total_batches, len(batch))

        batch_results = await asyncio.gather(
            *(_one(doc, i, batch_number) for i, doc in enumerate(batch))
        )
        results.extend(batch_results)
        ok = sum(1 for r in batch_results if r["success"])
        logger.info("Batch %d complete: %d success, %d failed", batch_number, ok, len(batch_results) - ok)

        if start + batch_size < len(documents):
            await asyncio.sleep(batch_delay)

    succeeded = sum(1 for r in results if r["success"])
    spent = max(cost_tracker.monthly_total - spent_before, 0.0)
    logger.info(
        "Batch processing complete: %d/%d successful, cost $%.4f (₹%.2f)",
        succeeded, len(results), spent, spent * config.USD_TO_INR_RATE,
    )
    return results


# ── observability ─────────────────────────────────────────────────────────────

def get_health_metrics() -> dict:
    return {
        "status": "healthy",
        "service": "Bank Statement Extractor",
        "configuration": {
            "model": config.DEFAULT_MODEL,
            "pages_per_chunk": config.PAGES_PER_CHUNK,
            "caching": config.ENABLE_CACHE,
            "cost_tracking": config.ENABLE_COST_TRACKING,
        },
        "cost_tracking": cost_tracker.get_stats(),
        "rate_limiter": rate_limiter.get_stats(),
        "cache": response_cache.get_stats() if config.ENABLE_CACHE else {"enabled": False},
        "background_jobs": len(_background_tasks),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
