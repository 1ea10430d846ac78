from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from app.services.errors import (
    InvalidAmountError,
    InvalidRateError,
    RepositoryConflictError,
    RepositoryInvalidTransitionError,
    RepositoryValidationError,
)
from app.services.fees import (
    AMOUNT_NUMERIC,
    RATE_NUMERIC,
    FeeBreakdown,
    calculate_fee_breakdown,
    require_numeric,
    to_decimal,
)

MATCHING_ACTIVE = "in_progress"
MATCHING_COMPLETED = "completed"
MATCHING_CANCELLED = "cancelled"
MATCHING_STATUSES = {MATCHING_ACTIVE, MATCHING_COMPLETED, MATCHING_CANCELLED}
OPEN_POSTING_STATUSES = {"published", "in_progress"}

_ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    MATCHING_ACTIVE: {MATCHING_COMPLETED, MATCHING_CANCELLED},
    MATCHING_COMPLETED: set(),
    MATCHING_CANCELLED: set(),
}


@dataclass(slots=True)
class MatchingTerms:
    agreed_salary: Decimal
    employer_fee_rate: Decimal
    employee_fee_rate: Decimal
    employer_fee_amount: Decimal
    employee_fee_amount: Decimal

    def as_dict(self) -> dict[str, Decimal]:
        return {
            "agreed_salary": self.agreed_salary,
            "employer_fee_rate": self.employer_fee_rate,
            "employee_fee_rate": self.employee_fee_rate,
            "employer_fee_amount": self.employer_fee_amount,
            "employee_fee_amount": self.employee_fee_amount,
        }


@dataclass(slots=True)
class MatchingUpdatePlan:
    terms: MatchingTerms
    terms_changed: bool
    target_status: str
    cancellation_reason: str | None


def price_matching(
    *,
    agreed_salary: Any,
    employer_fee_rate: Any,
    employee_fee_rate: Any,
    places: int,
) -> MatchingTerms:
    salary = to_decimal(agreed_salary, field="agreed_salary", error_cls=InvalidAmountError)
    if salary <= 0:
        raise RepositoryValidationError("agreed_salary must be greater than 0", field="agreed_salary")
    require_numeric(salary, field="agreed_salary", numeric=AMOUNT_NUMERIC, error_cls=InvalidAmountError)
    employer_rate = _rate(employer_fee_rate, field="employer_fee_rate")
    employee_rate = _rate(employee_fee_rate, field="employee_fee_rate")
    fees: FeeBreakdown = calculate_fee_breakdown(
        agreed_salary=salary,
        employer_fee_rate=employer_rate,
        employee_fee_rate=employee_rate,
        places=places,
    )
    return MatchingTerms(
        agreed_salary=salary,
        employer_fee_rate=employer_rate,
        employee_fee_rate=employee_rate,
        employer_fee_amount=fees.employer_fee_amount,
        employee_fee_amount=fees.employee_fee_amount,
    )


def validate_matching_transition(*, from_status: str, to_status: str) -> None:
    allowed = _ALLOWED_TRANSITIONS.get(from_status)
    if allowed is None or to_status not in allowed:
        raise RepositoryInvalidTransitionError(f"invalid matching status transition: {from_status} -> {to_status}")


def require_open_posting(posting: dict[str, Any], *, label: str) -> None:
    if posting.get("posting_status") not in OPEN_POSTING_STATUSES:
        raise RepositoryConflictError(f"{label} is not open for matching (status={posting.get('posting_status')})")


def plan_matching_update(
    current: dict[str, Any],
    *,
    agreed_salary: Any | None = None,
    employer_fee_rate: Any | None = None,
    employee_fee_rate: Any | None = None,
    matching_status: str | None = None,
    cancellation_reason: str | None = None,
    places: int,
) -> MatchingUpdatePlan:
    """Resolve a partial update of an in-progress matching.

    Salary or rate changes reprice both fees. A requested terminal status is
    validated against the state machine; the caller applies it after the new
    terms so completion freezes the repriced amounts.
    """
    from_status = str(current["matching_status"])
    if from_status != MATCHING_ACTIVE:
        raise RepositoryInvalidTransitionError(f"matching is {from_status}; only in_progress matchings can be updated")

    target_status = matching_status or from_status
    if target_status not in MATCHING_STATUSES:
        raise RepositoryValidationError(f"unknown matching status: {target_status}", field="matching_status")
    if target_status != from_status:
        validate_matching_transition(from_status=from_status, to_status=target_status)
    if cancellation_reason is not None and target_status != MATCHING_CANCELLED:
        raise RepositoryValidationError(
            "cancellation_reason is only accepted when cancelling",
            field="cancellation_reason",
        )

    terms_changed = any(value is not None for value in (agreed_salary, employer_fee_rate, employee_fee_rate))
    terms = price_matching(
        agreed_salary=agreed_salary if agreed_salary is not None else current["agreed_salary"],
        employer_fee_rate=employer_fee_rate if employer_fee_rate is not None else current["employer_fee_rate"],
        employee_fee_rate=employee_fee_rate if employee_fee_rate is not None else current["employee_fee_rate"],
        places=places,
    )
    return MatchingUpdatePlan(
        terms=terms,
        terms_changed=terms_changed,
        target_status=target_status,
        cancellation_reason=cancellation_reason,
    )


def terms_payload(matching: dict[str, Any]) -> dict[str, Any]:
    return {
        "matching_status": matching["matching_status"],
        "agreed_salary": str(matching["agreed_salary"]),
        "employer_fee_rate": str(matching["employer_fee_rate"]),
        "employee_fee_rate": str(matching["employee_fee_rate"]),
        "employer_fee_amount": str(matching["employer_fee_amount"]),
        "employee_fee_amount": str(matching["employee_fee_amount"]),
    }


def _rate(value: Any, *, field: str) -> Decimal:
    rate = to_decimal(value, field=field, error_cls=InvalidRateError)
    return require_numeric(rate, field=field, numeric=RATE_NUMERIC, error_cls=InvalidRateError)
