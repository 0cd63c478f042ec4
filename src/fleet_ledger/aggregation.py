"""Fleet-wide aggregation over a week window.

Everything here is a pure fold over the entries and roster handed in; the
caller decides which entries fall inside the window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from fleet_ledger.calculations import ZERO, profit_margin
from fleet_ledger.models import FleetAggregate, TopPerformer, TrendPoint, Vehicle, WeeklyLedgerEntry

DEFAULT_TOP_PERFORMERS = 5


@dataclass
class VehicleTotals:
    """Running sums for one vehicle (or the whole fleet) across a window."""

    cash_collected: Decimal = ZERO
    online_earnings: Decimal = ZERO
    total_revenue: Decimal = ZERO
    diesel_expense: Decimal = ZERO
    tolls_parking: Decimal = ZERO
    maintenance_repairs: Decimal = ZERO
    other_expenses: Decimal = ZERO
    total_deductions: Decimal = ZERO
    net_profit: Decimal = ZERO
    notes: list[str] = field(default_factory=list)

    @property
    def profit_margin(self) -> Decimal:
        return profit_margin(self.net_profit, self.total_revenue)

    def add_entry(self, entry: WeeklyLedgerEntry) -> None:
        amounts = entry.amounts
        self.cash_collected += amounts.cash_collected
        self.online_earnings += amounts.online_earnings
        self.total_revenue += entry.total_revenue
        self.diesel_expense += amounts.diesel_expense
        self.tolls_parking += amounts.tolls_parking
        self.maintenance_repairs += amounts.maintenance_repairs
        self.other_expenses += amounts.other_expenses
        self.total_deductions += entry.total_deductions
        self.net_profit += entry.net_profit
        if entry.notes:
            self.notes.append(entry.notes.strip())

    def add_totals(self, other: "VehicleTotals") -> None:
        self.cash_collected += other.cash_collected
        self.online_earnings += other.online_earnings
        self.total_revenue += other.total_revenue
        self.diesel_expense += other.diesel_expense
        self.tolls_parking += other.tolls_parking
        self.maintenance_repairs += other.maintenance_repairs
        self.other_expenses += other.other_expenses
        self.total_deductions += other.total_deductions
        self.net_profit += other.net_profit


def totals_by_vehicle(entries: Iterable[WeeklyLedgerEntry]) -> dict[int, VehicleTotals]:
    by_vehicle: dict[int, VehicleTotals] = {}
    for entry in entries:
        by_vehicle.setdefault(entry.vehicle_id, VehicleTotals()).add_entry(entry)
    return by_vehicle


def select_top_performers(
    entries: Sequence[WeeklyLedgerEntry],
    vehicles_by_id: Mapping[int, Vehicle],
    limit: int = DEFAULT_TOP_PERFORMERS,
) -> list[TopPerformer]:
    # sorted() is stable, so equal profits keep their input order.
    ranked = sorted(entries, key=lambda entry: entry.net_profit, reverse=True)
    performers: list[TopPerformer] = []
    for entry in ranked[:limit]:
        vehicle = vehicles_by_id.get(entry.vehicle_id)
        performers.append(
            TopPerformer(
                registration_number=vehicle.registration_number if vehicle else "",
                driver_name=vehicle.driver_name if vehicle else "",
                profit=entry.net_profit,
            )
        )
    return performers


def aggregate_fleet(
    vehicles: Sequence[Vehicle],
    entries: Sequence[WeeklyLedgerEntry],
    week_start: date,
    week_end: date,
    top_n: int = DEFAULT_TOP_PERFORMERS,
) -> FleetAggregate:
    """Fold the roster and the window's entries into a FleetAggregate.

    Vehicle counts come from the roster alone, so a vehicle without a
    submission still counts toward fleet size. The average margin is
    computed from the summed profit and revenue, never as a mean of the
    per-vehicle margins.
    """
    revenue = ZERO
    profit = ZERO
    deductions = ZERO
    for entry in entries:
        revenue += entry.total_revenue
        profit += entry.net_profit
        deductions += entry.total_deductions

    vehicles_by_id = {vehicle.id: vehicle for vehicle in vehicles}
    return FleetAggregate(
        week_start=week_start,
        week_end=week_end,
        total_vehicles=len(vehicles),
        active_vehicles=sum(1 for vehicle in vehicles if vehicle.status == "active"),
        weekly_revenue=revenue,
        weekly_profit=profit,
        total_deductions=deductions,
        average_profit_margin=profit_margin(profit, revenue),
        top_performers=select_top_performers(entries, vehicles_by_id, top_n),
    )


def build_trend(entries: Sequence[WeeklyLedgerEntry]) -> list[TrendPoint]:
    """Trend points oldest first, from entries ordered newest first."""
    return [
        TrendPoint(
            week_start=entry.week_start,
            revenue=entry.total_revenue,
            profit=entry.net_profit,
            deductions=entry.total_deductions,
            profit_margin=entry.profit_margin,
        )
        for entry in reversed(entries)
    ]


def fleet_totals(rows: Iterable[VehicleTotals]) -> VehicleTotals:
    totals = VehicleTotals()
    for row in rows:
        totals.add_totals(row)
    return totals
