from decimal import Decimal

import pytest

from app.services.errors import InvalidAmountError, InvalidRateError
from app.services.fees import AMOUNT_NUMERIC, RATE_NUMERIC, calculate_fee, calculate_fee_breakdown, require_numeric


def test_fee_is_percentage_of_amount() -> None:
    assert calculate_fee(4000000, 10) == Decimal("400000")
    assert calculate_fee("4000000", "8") == Decimal("320000")


def test_fee_rounds_half_up_once() -> None:
    assert calculate_fee(5, "10") == Decimal("1")
    assert calculate_fee(15, "10") == Decimal("2")
    assert calculate_fee("1234.5", "10", places=2) == Decimal("123.45")
    assert calculate_fee("0.05", "50", places=2) == Decimal("0.03")


def test_zero_rate_and_full_rate() -> None:
    assert calculate_fee(1000, 0) == Decimal("0")
    assert calculate_fee(1000, 100) == Decimal("1000")
    assert calculate_fee(0, 55) == Decimal("0")


def test_float_inputs_use_their_decimal_repr() -> None:
    assert calculate_fee(1000, 12.5, places=1) == Decimal("125.0")


@pytest.mark.parametrize("rate", [-0.01, 100.01, "nan", True, None])
def test_invalid_rate(rate: object) -> None:
    with pytest.raises(InvalidRateError):
        calculate_fee(1000, rate)


@pytest.mark.parametrize("amount", [-1, "Infinity", "abc", object()])
def test_invalid_amount(amount: object) -> None:
    with pytest.raises(InvalidAmountError):
        calculate_fee(amount, 10)


def test_breakdown_reports_offending_field() -> None:
    with pytest.raises(InvalidRateError) as exc_info:
        calculate_fee_breakdown(agreed_salary=1000, employer_fee_rate=10, employee_fee_rate=150)
    assert exc_info.value.field == "employee_fee_rate"

    with pytest.raises(InvalidAmountError) as exc_info:
        calculate_fee_breakdown(agreed_salary=-10, employer_fee_rate=10, employee_fee_rate=5)
    assert exc_info.value.field == "agreed_salary"


def test_breakdown_total() -> None:
    fees = calculate_fee_breakdown(agreed_salary=3000000, employer_fee_rate=10, employee_fee_rate=5)

    assert fees.employer_fee_amount == Decimal("300000")
    assert fees.employee_fee_amount == Decimal("150000")
    assert fees.total_fee_amount == Decimal("450000")


def test_very_large_amounts_keep_full_precision() -> None:
    assert calculate_fee(Decimal("1e30"), 10) == Decimal("1e29")
    assert calculate_fee("123456789012345678901234567890", "12.34", places=2) == Decimal(
        "15234567764123456776412345677.63"
    )


def test_negative_places_round_to_units() -> None:
    assert calculate_fee("1234.5", 10, places=-3) == Decimal("123")


def test_require_numeric_accepts_values_that_fit_the_column() -> None:
    largest = Decimal("9999999999999.99")

    assert require_numeric(largest, field="amount", numeric=AMOUNT_NUMERIC, error_cls=InvalidAmountError) == largest
    assert require_numeric(Decimal("100.00"), field="rate", numeric=RATE_NUMERIC, error_cls=InvalidRateError) == 100
    assert require_numeric(Decimal("0"), field="rate", numeric=RATE_NUMERIC, error_cls=InvalidRateError) == 0


@pytest.mark.parametrize(
    ("value", "message"),
    [
        ("10.125", "at most 2 decimal places"),
        ("10000000000000", "at most 13 integer digits"),
        ("1e30", "at most 13 integer digits"),
    ],
)
def test_require_numeric_rejects_values_the_column_would_alter(value: str, message: str) -> None:
    with pytest.raises(InvalidAmountError) as exc_info:
        require_numeric(Decimal(value), field="agreed_salary", numeric=AMOUNT_NUMERIC, error_cls=InvalidAmountError)
    assert message in str(exc_info.value)
    assert exc_info.value.field == "agreed_salary"
