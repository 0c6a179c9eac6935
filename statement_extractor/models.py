"""
Pydantic models shared across the extraction core.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Chunk(BaseModel):
    """A self-contained sub-document covering pages ``start_page..end_page`` (1-based)."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    start_page: int
    end_page: int
    index: int

    @property
    def page_range(self) -> tuple[int, int]:
        return (self.start_page, self.end_page)

    @property
    def label(self) -> str:
        return f"chunk {self.index + 1} (pages {self.start_page}-{self.end_page})"


class TransactionRecord(BaseModel):
    date: str
    amount: float
    recipient: str

    @property
    def identity(self) -> tuple[str, float, str]:
        return (self.date, self.amount, self.recipient)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class CostInfo(BaseModel):
    cost: float = 0.0
    input_cost: float = 0.0
    output_cost: float = 0.0
    daily_total: float = 0.0
    monthly_total: float = 0.0
    total_requests: int = 0
    cost_in_inr: float = 0.0
    daily_total_in_inr: float = 0.0


class ModelResponse(BaseModel):
    """Result of one orchestrated call to the document-understanding service."""

    content: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: CostInfo = Field(default_factory=CostInfo)
    cached: bool = False
    processing_time: float = 0.0
    timestamp: str = ""


class AggregationResult(BaseModel):
    transactions: list[TransactionRecord] = Field(default_factory=list)
    total: int = 0
    validated: int = 0
    final: int = 0


class ExtractionResult(BaseModel):
    transactions: list[TransactionRecord] = Field(default_factory=list)
    total_pages: int = 0
    chunks_total: int = 0
    chunks_failed: int = 0
    total_transactions: int = 0
    validated_transactions: int = 0
    final_transactions: int = 0


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class ProcessingJob(BaseModel):
    id: str
    user_id: str
    status: JobStatus = JobStatus.PENDING
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    total_pages: Optional[int] = None
    chunks_total: Optional[int] = None
    chunks_processed: int = 0
    total_transactions: int = 0
    validated_transactions: int = 0
    final_transactions: int = 0
    progress_percentage: float = 0.0
    result: Optional[list[dict[str, Any]]] = None
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
