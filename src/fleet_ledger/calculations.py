from __future__ import annotations

from dataclasses import fields
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping, Optional

from fleet_ledger.errors import ValidationError
from fleet_ledger.models import Financials, OptionalMetrics, RawAmounts


ZERO = Decimal("0")
HUNDRED = Decimal("100")
MAX_RATING = Decimal("5")

AMOUNT_FIELDS = tuple(f.name for f in fields(RawAmounts))
REVENUE_FIELDS = ("cash_collected", "online_earnings")
DEDUCTION_FIELDS = ("diesel_expense", "tolls_parking", "maintenance_repairs", "other_expenses")


def to_decimal(value: Any, field_name: str) -> Decimal:
    if value is None or value == "":
        raise ValidationError(f"{field_name} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    if isinstance(value, float):
        # str() keeps the shortest repr, so 123.45 stays 123.45 instead of the binary expansion.
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return result


def parse_amounts(values: Mapping[str, Any]) -> RawAmounts:
    """Coerce and validate the six raw inputs of a weekly submission."""
    parsed: dict[str, Decimal] = {}
    for name in AMOUNT_FIELDS:
        amount = to_decimal(values.get(name), name)
        if amount < ZERO:
            raise ValidationError(f"{name} must be non-negative, got {amount}")
        parsed[name] = amount
    return RawAmounts(**parsed)


def validate_amounts(amounts: RawAmounts) -> RawAmounts:
    return parse_amounts({name: getattr(amounts, name) for name in AMOUNT_FIELDS})


def validate_metrics(metrics: Optional[OptionalMetrics]) -> OptionalMetrics:
    if metrics is None:
        return OptionalMetrics()

    total_trips = metrics.total_trips
    if total_trips is not None:
        trips = to_decimal(total_trips, "total_trips")
        if trips != trips.to_integral_value():
            raise ValidationError("total_trips must be a whole number")
        total_trips = int(trips)
        if total_trips < 0:
            raise ValidationError("total_trips must be non-negative")

    total_distance = metrics.total_distance
    if total_distance is not None:
        total_distance = to_decimal(total_distance, "total_distance")
        if total_distance < ZERO:
            raise ValidationError("total_distance must be non-negative")

    average_rating = metrics.average_rating
    if average_rating is not None:
        average_rating = to_decimal(average_rating, "average_rating")
        if not ZERO <= average_rating <= MAX_RATING:
            raise ValidationError("average_rating must be between 0 and 5")

    return OptionalMetrics(
        total_trips=total_trips,
        total_distance=total_distance,
        average_rating=average_rating,
    )


def validate_week(week_start: Any, week_end: Any) -> tuple[date, date]:
    start = parse_date(week_start, "week_start")
    end = parse_date(week_end, "week_end")
    if end < start:
        raise ValidationError("week_end must be on or after week_start")
    return start, end


def parse_date(value: Any, field_name: str) -> date:
    if value is None or value == "":
        raise ValidationError(f"{field_name} is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError as exc:
        raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD), got {value!r}") from exc


def calculate_financials(amounts: RawAmounts) -> Financials:
    """Derive revenue, deductions, profit and margin from the raw inputs.

    Totals are exact decimal sums. The margin is kept at full precision;
    it is defined as 0 whenever revenue is 0, whatever the deductions are.
    """
    total_revenue = sum((getattr(amounts, name) for name in REVENUE_FIELDS), ZERO)
    total_deductions = sum((getattr(amounts, name) for name in DEDUCTION_FIELDS), ZERO)
    net_profit = total_revenue - total_deductions
    return Financials(
        total_revenue=total_revenue,
        total_deductions=total_deductions,
        net_profit=net_profit,
        profit_margin=profit_margin(net_profit, total_revenue),
    )


def profit_margin(net_profit: Decimal, total_revenue: Decimal) -> Decimal:
    if total_revenue > ZERO:
        return net_profit / total_revenue * HUNDRED
    return ZERO


def round_margin(value: Decimal) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def week_start_for(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def week_end_for(week_start: date) -> date:
    """Sunday following ``week_start``."""
    return week_start + timedelta(days=6)


__all__ = [
    "AMOUNT_FIELDS",
    "calculate_financials",
    "parse_amounts",
    "parse_date",
    "profit_margin",
    "round_margin",
    "to_decimal",
    "validate_amounts",
    "validate_metrics",
    "validate_week",
    "week_end_for",
    "week_start_for",
]
