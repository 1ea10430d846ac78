from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Any, Protocol

from opentelemetry import trace

from app.services.matching import MATCHING_ACTIVE, MATCHING_COMPLETED
from app.services.settlement import fold_settlement_stats

tracer = trace.get_tracer(__name__)


class StatsSource(Protocol):
    async def count_customers(self) -> int: ...

    async def summarize_postings(self, *, kind: str) -> list[dict[str, Any]]: ...

    async def summarize_matchings(self) -> list[dict[str, Any]]: ...


async def collect_dashboard_stats(source: StatsSource) -> dict[str, Any]:
    """Fan out once per collection and fold the results into one projection."""
    with tracer.start_as_current_span("dashboard.collect"):
        total_customers = await source.count_customers()
        job_posting_rows = await source.summarize_postings(kind="job_posting")
        job_seeking_rows = await source.summarize_postings(kind="job_seeking")
        matching_rows = await source.summarize_matchings()
    return fold_dashboard_stats(
        total_customers=total_customers,
        job_posting_rows=job_posting_rows,
        job_seeking_rows=job_seeking_rows,
        matching_rows=matching_rows,
    )


async def collect_settlement_stats(source: StatsSource) -> dict[str, Any]:
    with tracer.start_as_current_span("settlement.stats"):
        job_posting_rows = await source.summarize_postings(kind="job_posting")
        job_seeking_rows = await source.summarize_postings(kind="job_seeking")
    return fold_settlement_stats([*job_posting_rows, *job_seeking_rows])


def fold_dashboard_stats(
    *,
    total_customers: int,
    job_posting_rows: Iterable[dict[str, Any]],
    job_seeking_rows: Iterable[dict[str, Any]],
    matching_rows: Iterable[dict[str, Any]],
) -> dict[str, Any]:
    job_posting_rows = list(job_posting_rows)
    job_seeking_rows = list(job_seeking_rows)

    active_matches = 0
    total_revenue = Decimal(0)
    for row in matching_rows:
        status = row["matching_status"]
        if status == MATCHING_ACTIVE:
            active_matches += int(row["matching_count"] or 0)
        elif status == MATCHING_COMPLETED:
            total_revenue += Decimal(row["employer_fee_sum"] or 0) + Decimal(row["employee_fee_sum"] or 0)

    settlement = fold_settlement_stats([*job_posting_rows, *job_seeking_rows])
    return {
        "total_customers": int(total_customers),
        "total_job_postings": sum(int(row["posting_count"] or 0) for row in job_posting_rows),
        "total_job_seekers": sum(int(row["posting_count"] or 0) for row in job_seeking_rows),
        "active_matches": active_matches,
        "total_revenue": total_revenue,
        "pending_settlement_amount": settlement["unsettled_amount_sum"],
    }
