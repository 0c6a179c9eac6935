"""
API request / response models for FastAPI.
"""

from typing import Optional

from pydantic import BaseModel, Field

from statement_extractor.models import ExtractionResult, ProcessingJob


class ExtractResponse(BaseModel):
    filename: str = ""
    result: ExtractionResult


class JobResponse(BaseModel):
    job: ProcessingJob


class JobListResponse(BaseModel):
    jobs: list[ProcessingJob] = Field(default_factory=list)


class EstimateRequest(BaseModel):
    payload_size: int = Field(gt=0)
    model: Optional[str] = None


class EstimateResponse(BaseModel):
    estimated_cost: float
    estimated_cost_in_inr: float
    model: str
    estimated_tokens: int
    currency: str = "USD"


class ErrorResponse(BaseModel):
    detail: str
    code: str
