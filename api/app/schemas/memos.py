from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

MemoEntityType = Literal["matching", "customer"]


class MemoOut(BaseModel):
    id: int
    entity_type: MemoEntityType
    entity_id: int
    memo_content: str
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime


class MemoWriteRequest(BaseModel):
    memo_content: str = Field(min_length=1, max_length=5000)
