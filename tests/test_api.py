"""
Tests for the FastAPI surface — upload validation, error mapping and routing.
"""

import pytest
from fastapi.testclient import TestClient

from api import main
from statement_extractor.errors import CostLimitExceeded
from statement_extractor.ingest import pipeline
from statement_extractor.models import ExtractionResult, JobStatus, TransactionRecord


@pytest.fixture
def client(monkeypatch, job_manager):
    monkeypatch.setattr(pipeline, "_default_manager", job_manager)
    with TestClient(main.app) as c:
        yield c


def upload(content, name="statement.pdf", content_type="application/pdf"):
    return {"file": (name, content, content_type)}


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestUploadValidation:
    def test_rejects_non_pdf_type(self, client):
        resp = client.post("/extract", files=upload(b"hello", "notes.txt", "text/plain"))
        assert resp.status_code == 415
        assert resp.json()["code"] == "UPLOAD_REJECTED"

    def test_rejects_bytes_without_pdf_magic(self, client):
        resp = client.post("/extract", files=upload(b"PK\x03\x04 zip"))
        assert resp.status_code == 415

    def test_rejects_oversized(self, client, monkeypatch):
        monkeypatch.setattr(main.config, "MAX_UPLOAD_BYTES", 10)
        resp = client.post("/extract", files=upload(b"%PDF-" + b"x" * 20))
        assert resp.status_code == 413

    def test_rejects_empty(self, client):
        resp = client.post("/extract", files=upload(b""))
        assert resp.status_code == 400

    def test_malformed_pdf_is_400(self, client):
        resp = client.post("/extract", files=upload(b"%PDF-1.4 truncated"))
        assert resp.status_code == 400
        assert resp.json()["code"] == "DOCUMENT_PARSE_ERROR"


class TestExtractEndpoint:
    def test_returns_result(self, client, monkeypatch, make_pdf):
        async def fake_extract(content, model=None):
            assert content.startswith(b"%PDF")
            return ExtractionResult(
                transactions=[TransactionRecord(date="01/04/2025", amount=40, recipient="X")],
                total_pages=1, chunks_total=1,
                total_transactions=1, validated_transactions=1, final_transactions=1,
            )

        monkeypatch.setattr(main, "extract_transactions", fake_extract)
        resp = client.post("/extract", files=upload(make_pdf(1)))

        assert resp.status_code == 200
        body = resp.json()
        assert body["filename"] == "statement.pdf"
        assert body["result"]["transactions"] == [{"date": "01/04/2025", "amount": 40.0, "recipient": "X"}]

    def test_cost_limit_maps_to_402(self, client, monkeypatch, make_pdf):
        async def fake_extract(content, model=None):
            raise CostLimitExceeded("daily", 100, 101)

        monkeypatch.setattr(main, "extract_transactions", fake_extract)
        resp = client.post("/extract", files=upload(make_pdf(1)))
        assert resp.status_code == 402
        assert resp.json()["code"] == "COST_LIMIT_EXCEEDED"


class TestJobsEndpoints:
    def test_requires_user_header(self, client, make_pdf):
        resp = client.post("/jobs", files=upload(make_pdf(1)))
        assert resp.status_code == 422

    def test_unreadable_pdf_job_is_failed(self, client):
        resp = client.post(
            "/jobs", files=upload(b"%PDF-broken"), headers={"X-User-Id": "user-1"}
        )
        assert resp.status_code == 202
        job = resp.json()["job"]
        assert job["status"] == JobStatus.FAILED.value

        fetched = client.get(f"/jobs/{job['id']}", headers={"X-User-Id": "user-1"})
        assert fetched.status_code == 200
        assert fetched.json()["job"]["id"] == job["id"]

    def test_other_owner_gets_404(self, client, job_manager):
        job = job_manager.create_job("user-1", "a.pdf")
        resp = client.get(f"/jobs/{job.id}", headers={"X-User-Id": "user-2"})
        assert resp.status_code == 404
        assert resp.json()["code"] == "JOB_NOT_FOUND"

    def test_list_jobs(self, client, job_manager):
        job_manager.create_job("user-1", "a.pdf")
        job_manager.create_job("user-1", "b.pdf")
        job_manager.create_job("user-2", "c.pdf")
        resp = client.get("/jobs", headers={"X-User-Id": "user-1"})
        assert resp.status_code == 200
        assert sorted(j["file_name"] for j in resp.json()["jobs"]) == ["a.pdf", "b.pdf"]


class TestEstimate:
    def test_estimate(self, client):
        resp = client.post("/estimate", json={"payload_size": 4000, "model": "haiku"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["estimated_tokens"] == 1000 + 500 + 500
        assert body["model"] == "haiku"

    def test_rejects_non_positive_size(self, client):
        resp = client.post("/estimate", json={"payload_size": 0})
        assert resp.status_code == 422
