"""
Tests for statement_extractor.ingest.pipeline — both façades, batch and health.

``process_chunk`` is replaced by a scripted fake keyed by chunk index, so no
model calls are made.  Authorization tests go through the real client with
``httpx.AsyncClient.post`` patched.
"""

import asyncio

import httpx
import pytest

from statement_extractor.errors import (
    CostLimitExceeded,
    DocumentParseError,
    ExternalServiceError,
    JobNotFound,
)
from statement_extractor.ingest import pipeline
from statement_extractor.ingest import processor
from statement_extractor.models import JobStatus, ModelResponse


def tx(day, amount, recipient):
    return {"date": f"{day:02d}/04/2025", "amount": amount, "recipient": recipient}


def script_chunks(monkeypatch, outcomes):
    """Patch process_chunk; *outcomes[i]* is a record list or an exception for chunk i."""
    seen = []

    async def fake_process_chunk(chunk, model=None, **kwargs):
        seen.append((chunk.index, chunk.page_range, model))
        outcome = outcomes[chunk.index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(pipeline, "process_chunk", fake_process_chunk)
    return seen


async def drain_background_jobs():
    await asyncio.gather(*list(pipeline._background_tasks))


def reject_credentials(monkeypatch, status=401):
    """Make every model call fail with *status*; returns the list of posted URLs."""
    posted = []

    async def post(self, url, **kwargs):
        posted.append(url)
        return httpx.Response(status, text="invalid x-api-key", request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", post)
    return posted


class TestExtractTransactions:
    @pytest.mark.asyncio
    async def test_five_pages_in_three_ordered_chunks(self, monkeypatch, make_pdf):
        seen = script_chunks(monkeypatch, [
            [tx(1, 40, "A")],
            [tx(2, 10, "B"), tx(1, 40, "A")],
            [tx(3, 5, "C")],
        ])

        result = await pipeline.extract_transactions(make_pdf(5), model="haiku", pages_per_chunk=2)

        assert [s[1] for s in seen] == [(1, 2), (3, 4), (5, 5)]
        assert all(s[2] == "haiku" for s in seen)
        assert result.total_pages == 5
        assert result.chunks_total == 3
        assert result.chunks_failed == 0
        assert (result.total_transactions, result.validated_transactions, result.final_transactions) == (4, 4, 3)
        assert [t.recipient for t in result.transactions] == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_failed_chunk_contributes_nothing(self, monkeypatch, make_pdf):
        script_chunks(monkeypatch, [
            [tx(1, 40, "A")],
            ExternalServiceError("upstream 500", status_code=500),
            [tx(3, 5, "C"), {"amount": -1}],
        ])

        result = await pipeline.extract_transactions(make_pdf(6), pages_per_chunk=2)

        assert result.chunks_failed == 1
        assert [t.recipient for t in result.transactions] == ["A", "C"]
        assert result.total_transactions == 3
        assert result.validated_transactions == 2

    @pytest.mark.asyncio
    async def test_cost_limit_aborts(self, monkeypatch, make_pdf):
        script_chunks(monkeypatch, [
            [tx(1, 40, "A")],
            CostLimitExceeded("daily", 100, 100.5),
            [tx(3, 5, "C")],
        ])
        with pytest.raises(CostLimitExceeded):
            await pipeline.extract_transactions(make_pdf(3), pages_per_chunk=1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_error_aborts_on_first_chunk(self, monkeypatch, make_pdf, status):
        posted = reject_credentials(monkeypatch, status)

        with pytest.raises(ExternalServiceError) as exc_info:
            await pipeline.extract_transactions(make_pdf(6), pages_per_chunk=2)

        assert exc_info.value.is_auth_error
        assert len(posted) == 1

    @pytest.mark.asyncio
    async def test_unreadable_document(self):
        with pytest.raises(DocumentParseError):
            await pipeline.extract_transactions(b"not a pdf")

    @pytest.mark.asyncio
    async def test_unparseable_response_yields_no_records(self, monkeypatch, make_pdf):
        async def fake_call(prompt, payload, media_type="application/pdf", model=None, **kwargs):
            return ModelResponse(content="Sorry, I cannot read this page.", model="m")

        monkeypatch.setattr(processor, "call_document_model", fake_call)
        result = await pipeline.extract_transactions(make_pdf(2), pages_per_chunk=2)
        assert result.final_transactions == 0
        assert result.chunks_failed == 0


class TestExtractAsync:
    @pytest.mark.asyncio
    async def test_job_runs_to_completion(self, monkeypatch, make_pdf, job_manager):
        script_chunks(monkeypatch, [[tx(1, 40, "A")], [tx(2, 10, "B")], [tx(1, 40, "A")]])

        job = await pipeline.extract_async(
            make_pdf(5), owner_id="user-1", file_name="march.pdf",
            pages_per_chunk=2, manager=job_manager,
        )
        assert job.status == JobStatus.PENDING
        assert job.total_pages == 5
        assert job.chunks_total == 3
        assert job.file_size > 0

        await drain_background_jobs()

        done = pipeline.get_job_status(job.id, "user-1", manager=job_manager)
        assert done.status == JobStatus.COMPLETED
        assert done.chunks_processed == 3
        assert done.progress_percentage == 100.0
        assert done.final_transactions == 2
        assert [r["recipient"] for r in done.result] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_progress_is_recorded_per_chunk(self, monkeypatch, make_pdf, job_manager):
        snapshots = []
        real_record_progress = job_manager.record_progress

        def spy(job, processed, total):
            updated = real_record_progress(job, processed, total)
            snapshots.append((updated.chunks_processed, updated.progress_percentage))
            return updated

        monkeypatch.setattr(job_manager, "record_progress", spy)
        script_chunks(monkeypatch, [[]] * 5)

        await pipeline.extract_async(make_pdf(5), "user-1", pages_per_chunk=1, manager=job_manager)
        await drain_background_jobs()

        assert snapshots == [(1, 20.0), (2, 40.0), (3, 60.0), (4, 80.0), (5, 100.0)]

    @pytest.mark.asyncio
    async def test_cost_limit_fails_job(self, monkeypatch, make_pdf, job_manager):
        script_chunks(monkeypatch, [[tx(1, 40, "A")], CostLimitExceeded("monthly", 2000, 2001)])

        job = await pipeline.extract_async(make_pdf(2), "user-1", pages_per_chunk=1, manager=job_manager)
        await drain_background_jobs()

        failed = pipeline.get_job_status(job.id, "user-1", manager=job_manager)
        assert failed.status == JobStatus.FAILED
        assert "Monthly cost limit" in failed.error_message
        assert failed.chunks_processed == 1
        assert failed.result is None

    @pytest.mark.asyncio
    async def test_unreadable_pdf_fails_immediately(self, job_manager):
        in_flight = len(pipeline._background_tasks)
        job = await pipeline.extract_async(b"garbage", "user-1", file_name="x.pdf", manager=job_manager)
        assert job.status == JobStatus.FAILED
        assert job.error_message
        assert job.total_pages is None
        assert len(pipeline._background_tasks) == in_flight

    @pytest.mark.asyncio
    async def test_missing_owner_rejected(self, make_pdf, job_manager):
        with pytest.raises(ValueError):
            await pipeline.extract_async(make_pdf(1), "", manager=job_manager)

    @pytest.mark.asyncio
    async def test_other_owner_sees_not_found(self, monkeypatch, make_pdf, job_manager):
        script_chunks(monkeypatch, [[]])
        job = await pipeline.extract_async(make_pdf(1), "user-1", manager=job_manager)
        await drain_background_jobs()

        with pytest.raises(JobNotFound):
            pipeline.get_job_status(job.id, "user-2", manager=job_manager)
        with pytest.raises(JobNotFound):
            pipeline.get_job_status("missing", "user-1", manager=job_manager)

    @pytest.mark.asyncio
    async def test_auth_error_fails_job(self, monkeypatch, make_pdf, job_manager):
        posted = reject_credentials(monkeypatch)

        job = await pipeline.extract_async(make_pdf(6), "user-1", pages_per_chunk=2, manager=job_manager)
        await drain_background_jobs()

        failed = pipeline.get_job_status(job.id, "user-1", manager=job_manager)
        assert failed.status == JobStatus.FAILED
        assert "401" in failed.error_message
        assert failed.chunks_processed == 0
        assert failed.result is None
        assert len(posted) == 1


class TestExtractBatch:
    @pytest.mark.asyncio
    async def test_failures_reported_per_item(self, monkeypatch, make_pdf):
        script_chunks(monkeypatch, [[tx(1, 40, "A")]])
        documents = [
            {"id": "good", "data": make_pdf(1)},
            {"id": "bad", "data": b"nope"},
            {"data": make_pdf(1)},
        ]

        results = await pipeline.extract_batch(documents, batch_size=2, batch_delay=0, stagger=0)

        assert [r["id"] for r in results] == ["good", "bad", "batch_2_0"]
        assert [r["success"] for r in results] == [True, False, True]
        assert results[0]["result"].final_transactions == 1
        assert results[1]["error"]


class TestHealthMetrics:
    def test_shape(self):
        metrics = pipeline.get_health_metrics()
        assert metrics["status"] == "healthy"
        assert {"cost_tracking", "rate_limiter", "cache", "configuration"} <= set(metrics)
        assert metrics["rate_limiter"]["requests_per_minute"] > 0
