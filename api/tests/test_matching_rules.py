from decimal import Decimal

import pytest

from app.services.errors import (
    InvalidAmountError,
    InvalidRateError,
    RepositoryConflictError,
    RepositoryInvalidTransitionError,
    RepositoryValidationError,
)
from app.services.matching import (
    plan_matching_update,
    price_matching,
    require_open_posting,
    validate_matching_transition,
)


def _matching(status: str = "in_progress") -> dict[str, object]:
    terms = price_matching(agreed_salary=4000000, employer_fee_rate=10, employee_fee_rate=8, places=0)
    return {"id": 1, "matching_status": status, **terms.as_dict()}


def test_price_matching_freezes_both_fees() -> None:
    terms = price_matching(agreed_salary="4000000", employer_fee_rate="10", employee_fee_rate="8", places=0)

    assert terms.employer_fee_amount == Decimal("400000")
    assert terms.employee_fee_amount == Decimal("320000")
    assert terms.agreed_salary == Decimal("4000000")


def test_price_matching_requires_positive_salary() -> None:
    with pytest.raises(RepositoryValidationError) as exc_info:
        price_matching(agreed_salary=0, employer_fee_rate=10, employee_fee_rate=8, places=0)
    assert exc_info.value.field == "agreed_salary"


@pytest.mark.parametrize("field", ["employer_fee_rate", "employee_fee_rate"])
def test_price_matching_rejects_rates_with_more_than_two_decimals(field: str) -> None:
    rates = {"employer_fee_rate": 10, "employee_fee_rate": 8, field: "10.125"}

    with pytest.raises(InvalidRateError) as exc_info:
        price_matching(agreed_salary=4000000, places=0, **rates)
    assert exc_info.value.field == field


@pytest.mark.parametrize("salary", [10**13, "1e30", "4000000.005"])
def test_price_matching_rejects_salaries_outside_the_amount_column(salary: object) -> None:
    with pytest.raises(InvalidAmountError) as exc_info:
        price_matching(agreed_salary=salary, employer_fee_rate=10, employee_fee_rate=8, places=0)
    assert exc_info.value.field == "agreed_salary"


@pytest.mark.parametrize("target", ["completed", "cancelled"])
def test_in_progress_can_reach_terminal_states(target: str) -> None:
    validate_matching_transition(from_status="in_progress", to_status=target)


@pytest.mark.parametrize(
    ("source", "target"),
    [
        ("completed", "completed"),
        ("completed", "cancelled"),
        ("cancelled", "completed"),
        ("cancelled", "in_progress"),
        ("completed", "in_progress"),
        ("in_progress", "in_progress"),
    ],
)
def test_terminal_states_are_final(source: str, target: str) -> None:
    with pytest.raises(RepositoryInvalidTransitionError):
        validate_matching_transition(from_status=source, to_status=target)


def test_open_posting_check() -> None:
    require_open_posting({"posting_status": "published"}, label="job posting")
    require_open_posting({"posting_status": "in_progress"}, label="job posting")
    with pytest.raises(RepositoryConflictError):
        require_open_posting({"posting_status": "closed"}, label="job posting")


def test_update_plan_reprices_only_when_terms_change() -> None:
    unchanged = plan_matching_update(_matching(), places=0)
    assert unchanged.terms_changed is False
    assert unchanged.target_status == "in_progress"

    repriced = plan_matching_update(_matching(), employer_fee_rate="12.5", places=0)
    assert repriced.terms_changed is True
    assert repriced.terms.employer_fee_amount == Decimal("500000")
    assert repriced.terms.employee_fee_amount == Decimal("320000")


def test_update_plan_rejects_terminal_matching() -> None:
    with pytest.raises(RepositoryInvalidTransitionError):
        plan_matching_update(_matching("cancelled"), agreed_salary=100, places=0)


def test_update_plan_rejects_unknown_status() -> None:
    with pytest.raises(RepositoryValidationError) as exc_info:
        plan_matching_update(_matching(), matching_status="archived", places=0)
    assert exc_info.value.field == "matching_status"


def test_update_plan_requires_cancel_for_reason() -> None:
    with pytest.raises(RepositoryValidationError):
        plan_matching_update(_matching(), matching_status="completed", cancellation_reason="why", places=0)

    plan = plan_matching_update(_matching(), matching_status="cancelled", cancellation_reason="why", places=0)
    assert plan.target_status == "cancelled"
    assert plan.cancellation_reason == "why"
