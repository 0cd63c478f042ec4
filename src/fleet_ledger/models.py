from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

VehicleStatus = Literal["active", "inactive", "maintenance"]

VEHICLE_STATUSES = ("active", "inactive", "maintenance")


@dataclass(frozen=True)
class Vehicle:
    registration_number: str
    driver_name: str
    driver_phone: str
    status: VehicleStatus = "active"
    notes: Optional[str] = None
    id: Optional[int] = None
    added_date: Optional[date] = None


@dataclass(frozen=True)
class RawAmounts:
    cash_collected: Decimal
    online_earnings: Decimal
    diesel_expense: Decimal
    tolls_parking: Decimal
    maintenance_repairs: Decimal
    other_expenses: Decimal


@dataclass(frozen=True)
class OptionalMetrics:
    total_trips: Optional[int] = None
    total_distance: Optional[Decimal] = None
    average_rating: Optional[Decimal] = None


@dataclass(frozen=True)
class Financials:
    total_revenue: Decimal
    total_deductions: Decimal
    net_profit: Decimal
    profit_margin: Decimal


@dataclass(frozen=True)
class WeeklyLedgerEntry:
    vehicle_id: int
    week_start: date
    week_end: date
    amounts: RawAmounts
    financials: Financials
    metrics: OptionalMetrics = field(default_factory=OptionalMetrics)
    notes: Optional[str] = None
    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def total_revenue(self) -> Decimal:
        return self.financials.total_revenue

    @property
    def total_deductions(self) -> Decimal:
        return self.financials.total_deductions

    @property
    def net_profit(self) -> Decimal:
        return self.financials.net_profit

    @property
    def profit_margin(self) -> Decimal:
        return self.financials.profit_margin


@dataclass(frozen=True)
class TopPerformer:
    registration_number: str
    driver_name: str
    profit: Decimal


@dataclass(frozen=True)
class FleetAggregate:
    week_start: date
    week_end: date
    total_vehicles: int
    active_vehicles: int
    weekly_revenue: Decimal
    weekly_profit: Decimal
    total_deductions: Decimal
    average_profit_margin: Decimal
    top_performers: list[TopPerformer] = field(default_factory=list)


@dataclass(frozen=True)
class TrendPoint:
    week_start: date
    revenue: Decimal
    profit: Decimal
    deductions: Decimal
    profit_margin: Decimal
