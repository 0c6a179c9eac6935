"""
Exception taxonomy for the extraction pipeline.
"""

from typing import Optional


class ExtractionError(Exception):
    """Base class for every error raised by the pipeline."""

    code = "EXTRACTION_ERROR"


class DocumentParseError(ExtractionError):
    """The input bytes are not a well-formed PDF or contain zero pages."""

    code = "DOCUMENT_PARSE_ERROR"


class ExternalServiceError(ExtractionError):
    """Non-success, malformed or unreachable response from the model service."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


class RateLimitWait(ExtractionError):
    """Internal backpressure signal; resolved by suspending inside the limiter."""

    code = "RATE_LIMIT_WAIT"

    def __init__(self, wait_seconds: float):
        super().__init__(f"Rate limit reached, wait {wait_seconds:.3f}s")
        self.wait_seconds = wait_seconds


class CostLimitExceeded(ExtractionError):
    code = "COST_LIMIT_EXCEEDED"

    def __init__(self, scope: str, limit: float, current: float):
        super().__init__(
            f"{scope.capitalize()} cost limit of ${limit} exceeded. Current: ${current:.4f}"
        )
        self.scope = scope
        self.limit = limit
        self.current = current


class ChunkParseFailure(ExtractionError):
    """No parsing strategy could recover transactions from a chunk response."""

    code = "CHUNK_PARSE_FAILURE"


class JobNotFound(ExtractionError):
    """No job matches the (job_id, owner) pair."""

    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidJobTransition(ExtractionError):
    code = "INVALID_JOB_TRANSITION"

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move job from '{current}' to '{target}'")
        self.current = current
        self.target = target


class UploadRejected(ExtractionError):
    """Upload refused before it reaches the pipeline (wrong type, too large, empty)."""

    code = "UPLOAD_REJECTED"

    def __init__(self, reason: str, status_code: int = 400):
        super().__init__(reason)
        self.status_code = status_code
