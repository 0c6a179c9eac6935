"""
FastAPI application — POST /extract, POST /jobs, GET /jobs, GET /jobs/{job_id},
POST /estimate, GET /health.

All extraction work happens in ``statement_extractor``; this module only
validates uploads, reads the caller identity and maps errors to status codes.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Form, Header, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.models import (
    ErrorResponse,
    EstimateRequest,
    EstimateResponse,
    ExtractResponse,
    JobListResponse,
    JobResponse,
)
from statement_extractor import config
from statement_extractor.errors import (
    CostLimitExceeded,
    DocumentParseError,
    ExternalServiceError,
    ExtractionError,
    JobNotFound,
    UploadRejected,
)
from statement_extractor.ingest.pipeline import (
    extract_async,
    extract_transactions,
    get_health_metrics,
    get_job_manager,
    get_job_status,
)
from statement_extractor.llm.cost_tracker import estimate_cost

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not config.ANTHROPIC_API_KEY:
        logger.warning("ANTHROPIC_API_KEY is not set; extraction calls will be rejected.")
    get_job_manager().cleanup_old_jobs()
    yield


app = FastAPI(
    title="Bank Statement Debit Extractor",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error mapping ────────────────────────────────────────────────────────────

_STATUS_BY_ERROR = (
    (JobNotFound, 404),
    (DocumentParseError, 400),
    (CostLimitExceeded, 402),
    (ExternalServiceError, 502),
)


@app.exception_handler(ExtractionError)
async def extraction_error_handler(request: Request, exc: ExtractionError):
    if isinstance(exc, UploadRejected):
        status = exc.status_code
    else:
        status = next((s for cls, s in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "code": exc.code})


# ── Upload validation ────────────────────────────────────────────────────────

async def _read_pdf_upload(file: UploadFile) -> bytes:
    """Reject non-PDF, empty or oversized uploads before they reach the pipeline."""
    filename = (file.filename or "").lower()
    if file.content_type != "application/pdf" and not filename.endswith(".pdf"):
        raise UploadRejected("Only PDF statements are accepted.", status_code=415)

    content = await file.read(config.MAX_UPLOAD_BYTES + 1)
    if len(content) > config.MAX_UPLOAD_BYTES:
        raise UploadRejected(
            f"File exceeds the {config.MAX_UPLOAD_BYTES} byte limit.", status_code=413
        )
    if not content:
        raise UploadRejected("Uploaded file is empty.", status_code=400)
    if not content.startswith(b"%PDF"):
        raise UploadRejected("Uploaded file is not a PDF.", status_code=415)
    return content


# ── POST /extract ────────────────────────────────────────────────────────────

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    402: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    415: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


@app.post("/extract", response_model=ExtractResponse, responses=_ERROR_RESPONSES)
async def extract_endpoint(file: UploadFile, model: Optional[str] = Form(None)):
    """Extract debit transactions inline. Suitable for short statements."""
    content = await _read_pdf_upload(file)
    result = await extract_transactions(content, model=model)
    return ExtractResponse(filename=file.filename or "", result=result)


# ── /jobs ────────────────────────────────────────────────────────────────────

@app.post("/jobs", response_model=JobResponse, status_code=202, responses=_ERROR_RESPONSES)
async def create_job_endpoint(
    file: UploadFile,
    model: Optional[str] = Form(None),
    x_user_id: str = Header(...),
):
    """Start a background extraction and return the job for polling."""
    content = await _read_pdf_upload(file)
    job = await extract_async(
        content,
        owner_id=x_user_id,
        file_name=file.filename,
        file_size=len(content),
        model=model,
    )
    return JobResponse(job=job)


@app.get("/jobs/{job_id}", response_model=JobResponse, responses={404: {"model": ErrorResponse}})
async def get_job_endpoint(job_id: str, x_user_id: str = Header(...)):
    return JobResponse(job=get_job_status(job_id, x_user_id))


@app.get("/jobs", response_model=JobListResponse)
async def list_jobs_endpoint(
    x_user_id: str = Header(...),
    status: Optional[str] = None,
    limit: Optional[int] = None,
):
    return JobListResponse(jobs=get_job_manager().list_jobs(x_user_id, status=status, limit=limit))


# ── POST /estimate ───────────────────────────────────────────────────────────

@app.post("/estimate", response_model=EstimateResponse)
async def estimate_endpoint(request: EstimateRequest):
    return EstimateResponse(**estimate_cost(request.payload_size, request.model))


# ── GET /health ──────────────────────────────────────────────────────────────

@app.get("/health")
async def health():
    return get_health_metrics()
