from decimal import Decimal

from pydantic import BaseModel


class DashboardStatsOut(BaseModel):
    total_customers: int
    total_job_postings: int
    total_job_seekers: int
    active_matches: int
    total_revenue: Decimal
    pending_settlement_amount: Decimal
