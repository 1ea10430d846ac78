from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Any

from app.services.errors import InvalidAmountError, InvalidRateError

HUNDRED = Decimal(100)
MIN_RATE = Decimal(0)
MAX_RATE = HUNDRED

# (precision, scale) of the numeric columns in db/schema.sql.
AMOUNT_NUMERIC = (15, 2)
RATE_NUMERIC = (5, 2)


@dataclass(slots=True)
class FeeBreakdown:
    employer_fee_amount: Decimal
    employee_fee_amount: Decimal

    @property
    def total_fee_amount(self) -> Decimal:
        return self.employer_fee_amount + self.employee_fee_amount


def calculate_fee(amount: Any, rate_percent: Any, *, places: int = 0) -> Decimal:
    """Return ``amount * rate_percent / 100`` rounded half-up to ``places`` decimals.

    The product is computed exactly and rounded once, so the employer and
    employee fees of a matching never accumulate intermediate rounding.
    """
    base = to_decimal(amount, field="amount", error_cls=InvalidAmountError)
    rate = to_decimal(rate_percent, field="rate", error_cls=InvalidRateError)
    if base < 0:
        raise InvalidAmountError("amount must be non-negative", field="amount")
    if rate < MIN_RATE or rate > MAX_RATE:
        raise InvalidRateError("rate must be between 0 and 100", field="rate")

    places = max(0, places)
    with localcontext() as ctx:
        # Wide enough to hold the exact product and the quantized result.
        ctx.prec = max(28, _digits(base) + _digits(rate) + places + 4)
        raw = base * rate / HUNDRED
        return raw.quantize(_quantum(places), rounding=ROUND_HALF_UP)


def calculate_fee_breakdown(
    *,
    agreed_salary: Any,
    employer_fee_rate: Any,
    employee_fee_rate: Any,
    places: int = 0,
) -> FeeBreakdown:
    try:
        employer_fee = calculate_fee(agreed_salary, employer_fee_rate, places=places)
    except InvalidRateError as exc:
        raise InvalidRateError(str(exc), field="employer_fee_rate") from exc
    except InvalidAmountError as exc:
        raise InvalidAmountError(str(exc), field="agreed_salary") from exc
    try:
        employee_fee = calculate_fee(agreed_salary, employee_fee_rate, places=places)
    except InvalidRateError as exc:
        raise InvalidRateError(str(exc), field="employee_fee_rate") from exc
    return FeeBreakdown(employer_fee_amount=employer_fee, employee_fee_amount=employee_fee)


def to_decimal(value: Any, *, field: str, error_cls: type[InvalidAmountError] | type[InvalidRateError]) -> Decimal:
    if isinstance(value, bool):
        raise error_cls(f"{field} must be a number", field=field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            # str() keeps floats at their shortest repr instead of the binary expansion.
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise error_cls(f"{field} must be a number", field=field) from exc
    else:
        raise error_cls(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise error_cls(f"{field} must be finite", field=field)
    return result


def require_numeric(
    value: Decimal,
    *,
    field: str,
    numeric: tuple[int, int],
    error_cls: type[InvalidAmountError] | type[InvalidRateError],
) -> Decimal:
    """Reject values a ``numeric(precision, scale)`` column would round or overflow."""
    precision, scale = numeric
    _, digits, exponent = value.normalize().as_tuple()
    if -exponent > scale:
        raise error_cls(f"{field} allows at most {scale} decimal places", field=field)
    if len(digits) + exponent > precision - scale:
        raise error_cls(f"{field} allows at most {precision - scale} integer digits", field=field)
    return value


def _digits(value: Decimal) -> int:
    _, digits, exponent = value.as_tuple()
    return len(digits) + abs(exponent)


def _quantum(places: int) -> Decimal:
    return Decimal(1).scaleb(-max(0, places))
