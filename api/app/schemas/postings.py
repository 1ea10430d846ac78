from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

PostingType = Literal["job_posting", "job_seeking"]
PostingStatus = Literal["published", "in_progress", "closed", "cancelled"]
SettlementStatus = Literal["unsettled", "settled"]


class PostingSettlementOut(BaseModel):
    id: int
    posting_type: PostingType
    customer_id: int
    salary: Decimal
    description: str = ""
    fee_rate: Decimal | None = None
    calculated_fee: Decimal | None = None
    posting_status: PostingStatus
    settlement_status: SettlementStatus
    settlement_amount: Decimal | None = None
    settlement_memo: str | None = None
    created_at: datetime
    updated_at: datetime


class SettlementUpdateRequest(BaseModel):
    settlement_status: SettlementStatus
    settlement_amount: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    settlement_memo: str | None = None


class SettlementStatsOut(BaseModel):
    unsettled_count: int
    settled_count: int
    unsettled_amount_sum: Decimal
    settled_amount_sum: Decimal
