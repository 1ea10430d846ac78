from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from app.services.errors import (
    InvalidAmountError,
    RepositoryInvalidTransitionError,
    RepositoryValidationError,
)
from app.services.fees import AMOUNT_NUMERIC, calculate_fee, require_numeric, to_decimal

SETTLED = "settled"
UNSETTLED = "unsettled"
ZERO = Decimal(0)


@dataclass(frozen=True, slots=True)
class PostingKindSpec:
    kind: str
    label: str
    table: str
    salary_column: str
    fee_rate_column: str
    matching_column: str
    matching_fee_field: str


POSTING_KINDS: dict[str, PostingKindSpec] = {
    "job_posting": PostingKindSpec(
        kind="job_posting",
        label="job posting",
        table="job_postings",
        salary_column="salary",
        fee_rate_column="employer_fee_rate",
        matching_column="job_posting_id",
        matching_fee_field="employer_fee_amount",
    ),
    "job_seeking": PostingKindSpec(
        kind="job_seeking",
        label="job seeking posting",
        table="job_seeking_postings",
        salary_column="desired_salary",
        fee_rate_column="employee_fee_rate",
        matching_column="job_seeking_posting_id",
        matching_fee_field="employee_fee_amount",
    ),
}


@dataclass(slots=True)
class SettleablePosting:
    """Settlement view shared by job postings and job seeking postings."""

    kind: str
    id: int
    customer_id: int
    salary: Decimal
    fee_rate: Decimal | None
    posting_status: str
    settlement_status: str
    settlement_amount: Decimal | None
    settlement_memo: str | None

    @classmethod
    def from_row(cls, kind: str, row: dict[str, Any]) -> SettleablePosting:
        kind_spec = posting_kind_spec(kind)
        return cls(
            kind=kind_spec.kind,
            id=int(row["id"]),
            customer_id=int(row["customer_id"]),
            salary=Decimal(row[kind_spec.salary_column]),
            fee_rate=Decimal(row[kind_spec.fee_rate_column]) if row.get(kind_spec.fee_rate_column) is not None else None,
            posting_status=str(row["posting_status"]),
            settlement_status=str(row["settlement_status"]),
            settlement_amount=Decimal(row["settlement_amount"]) if row.get("settlement_amount") is not None else None,
            settlement_memo=row.get("settlement_memo"),
        )

    def calculated_fee(self, *, places: int) -> Decimal | None:
        if self.fee_rate is None:
            return None
        return calculate_fee(self.salary, self.fee_rate, places=places)


@dataclass(slots=True)
class SettlementChange:
    settlement_status: str
    settlement_amount: Decimal | None
    settlement_memo: str | None
    event_type: str
    from_status: str


def posting_kind_spec(kind: str) -> PostingKindSpec:
    kind_spec = POSTING_KINDS.get(kind)
    if kind_spec is None:
        raise RepositoryValidationError(f"unknown posting kind: {kind}", field="posting_type")
    return kind_spec


def reconcile_posting(posting: SettleablePosting, fee: Decimal | None) -> SettlementChange:
    """Seed the fee of a completed matching onto one side's posting.

    The fee is added to whatever amount is already recorded. A settled posting
    goes back to unsettled since a new receivable now exists; reconciliation
    never marks anything settled.
    """
    seeded = (posting.settlement_amount or ZERO) + (fee or ZERO)
    return SettlementChange(
        settlement_status=UNSETTLED,
        settlement_amount=seeded,
        settlement_memo=posting.settlement_memo,
        event_type="settlement_seeded",
        from_status=posting.settlement_status,
    )


def plan_settlement_change(
    posting: SettleablePosting,
    *,
    settlement_status: str,
    settlement_amount: Any | None = None,
    settlement_memo: str | None = None,
) -> SettlementChange:
    if settlement_status == SETTLED:
        if posting.settlement_status == SETTLED:
            raise RepositoryInvalidTransitionError(f"{posting_kind_spec(posting.kind).label} {posting.id} is already settled")
        event_type = "settled"
    elif settlement_status == UNSETTLED:
        if posting.settlement_status != SETTLED:
            raise RepositoryInvalidTransitionError(f"{posting_kind_spec(posting.kind).label} {posting.id} is not settled")
        event_type = "unsettled"
    else:
        raise RepositoryValidationError(f"unknown settlement status: {settlement_status}", field="settlement_status")

    amount = posting.settlement_amount
    if settlement_amount is not None:
        amount = to_decimal(settlement_amount, field="settlement_amount", error_cls=InvalidAmountError)
        if amount < 0:
            raise InvalidAmountError("settlement_amount must be non-negative", field="settlement_amount")
        require_numeric(amount, field="settlement_amount", numeric=AMOUNT_NUMERIC, error_cls=InvalidAmountError)

    # None keeps the stored memo; an empty or blank string clears it.
    memo = posting.settlement_memo
    if settlement_memo is not None:
        memo = settlement_memo if settlement_memo.strip() else None

    return SettlementChange(
        settlement_status=settlement_status,
        settlement_amount=amount,
        settlement_memo=memo,
        event_type=event_type,
        from_status=posting.settlement_status,
    )


def fold_settlement_stats(summaries: Iterable[dict[str, Any]]) -> dict[str, Any]:
    stats: dict[str, Any] = {
        "unsettled_count": 0,
        "settled_count": 0,
        "unsettled_amount_sum": ZERO,
        "settled_amount_sum": ZERO,
    }
    for row in summaries:
        status = row["settlement_status"]
        if status not in (SETTLED, UNSETTLED):
            continue
        stats[f"{status}_count"] += int(row["posting_count"] or 0)
        stats[f"{status}_amount_sum"] += Decimal(row["amount_sum"] or 0)
    return stats


def describe_posting(kind: str, row: dict[str, Any], *, places: int) -> dict[str, Any]:
    posting = SettleablePosting.from_row(kind, row)
    return {
        "id": posting.id,
        "posting_type": posting.kind,
        "customer_id": posting.customer_id,
        "salary": posting.salary,
        "description": row.get("description") or "",
        "fee_rate": posting.fee_rate,
        "calculated_fee": posting.calculated_fee(places=places),
        "posting_status": posting.posting_status,
        "settlement_status": posting.settlement_status,
        "settlement_amount": posting.settlement_amount,
        "settlement_memo": posting.settlement_memo,
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }
