from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

MatchingStatus = Literal["in_progress", "completed", "cancelled"]


class MatchingOut(BaseModel):
    id: int
    job_posting_id: int
    job_seeking_posting_id: int
    matched_at: datetime
    agreed_salary: Decimal
    employer_fee_rate: Decimal
    employee_fee_rate: Decimal
    employer_fee_amount: Decimal | None = None
    employee_fee_amount: Decimal | None = None
    matching_status: MatchingStatus
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class MatchingCreateRequest(BaseModel):
    job_posting_id: int = Field(gt=0)
    job_seeking_posting_id: int = Field(gt=0)
    agreed_salary: Decimal = Field(gt=0, max_digits=15, decimal_places=2)
    employer_fee_rate: Decimal = Field(ge=0, le=100, max_digits=5, decimal_places=2)
    employee_fee_rate: Decimal = Field(ge=0, le=100, max_digits=5, decimal_places=2)
    mark_postings_in_progress: bool | None = None


class MatchingUpdateRequest(BaseModel):
    agreed_salary: Decimal | None = Field(default=None, gt=0, max_digits=15, decimal_places=2)
    employer_fee_rate: Decimal | None = Field(default=None, ge=0, le=100, max_digits=5, decimal_places=2)
    employee_fee_rate: Decimal | None = Field(default=None, ge=0, le=100, max_digits=5, decimal_places=2)
    matching_status: MatchingStatus | None = None
    cancellation_reason: str | None = None


class MatchingCancelRequest(BaseModel):
    cancellation_reason: str | None = None


class FeePreviewRequest(BaseModel):
    agreed_salary: Decimal = Field(ge=0, max_digits=15, decimal_places=2)
    employer_fee_rate: Decimal = Field(ge=0, le=100, max_digits=5, decimal_places=2)
    employee_fee_rate: Decimal = Field(ge=0, le=100, max_digits=5, decimal_places=2)


class FeePreviewOut(BaseModel):
    employer_fee_amount: Decimal
    employee_fee_amount: Decimal
    total_fee_amount: Decimal


class AuditEventOut(BaseModel):
    id: int
    entity_type: str
    entity_id: int
    event_type: str
    actor_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
