from datetime import date, timedelta
from decimal import Decimal

import pytest

from fleet_ledger.aggregation import aggregate_fleet, build_trend, select_top_performers
from fleet_ledger.calculations import calculate_financials, parse_amounts
from fleet_ledger.errors import ValidationError
from fleet_ledger.models import Vehicle, WeeklyLedgerEntry
from fleet_ledger.services import FleetStatsService

from conftest import WEEK_END, WEEK_START, amounts


def _entry(vehicle_id, cash="0", diesel="0", week_start=WEEK_START, week_end=WEEK_END):
    raw = parse_amounts(amounts(cash=cash, diesel=diesel))
    return WeeklyLedgerEntry(
        vehicle_id=vehicle_id,
        week_start=week_start,
        week_end=week_end,
        amounts=raw,
        financials=calculate_financials(raw),
    )


def _vehicle(vehicle_id, registration, status="active"):
    return Vehicle(
        id=vehicle_id,
        registration_number=registration,
        driver_name=f"Driver {registration}",
        driver_phone="000",
        status=status,
    )


def test_fleet_margin_comes_from_summed_values_not_mean_of_margins():
    vehicles = [_vehicle(1, "AAA111"), _vehicle(2, "BBB222")]
    entries = [
        _entry(1, cash="1000", diesel="500"),  # profit 500, margin 50%
        _entry(2, cash="4000", diesel="6000"),  # profit -2000, margin -50%
    ]

    aggregate = aggregate_fleet(vehicles, entries, WEEK_START, WEEK_END)

    assert aggregate.weekly_revenue == Decimal("5000")
    assert aggregate.weekly_profit == Decimal("-1500")
    assert aggregate.average_profit_margin == Decimal("-30")


def test_counts_include_vehicles_without_entries():
    vehicles = [
        _vehicle(1, "AAA111"),
        _vehicle(2, "BBB222", status="inactive"),
        _vehicle(3, "CCC333", status="maintenance"),
        _vehicle(4, "DDD444"),
    ]

    aggregate = aggregate_fleet(vehicles, [_entry(1, cash="100")], WEEK_START, WEEK_END)

    assert aggregate.total_vehicles == 4
    assert aggregate.active_vehicles == 2
    assert aggregate.weekly_revenue == Decimal("100")


def test_empty_window_has_zero_margin():
    aggregate = aggregate_fleet([_vehicle(1, "AAA111")], [], WEEK_START, WEEK_END)

    assert aggregate.weekly_revenue == Decimal("0")
    assert aggregate.average_profit_margin == Decimal("0")
    assert aggregate.top_performers == []


def test_leaderboard_is_top_five_descending():
    vehicles = [_vehicle(i, f"CAR{i}") for i in range(1, 8)]
    profits = ["300", "700", "100", "900", "500", "200", "800"]
    entries = [_entry(i, cash=profit) for i, profit in enumerate(profits, start=1)]

    performers = aggregate_fleet(vehicles, entries, WEEK_START, WEEK_END).top_performers

    assert len(performers) == 5
    assert [p.profit for p in performers] == [Decimal(v) for v in ("900", "800", "700", "500", "300")]
    assert performers[0].registration_number == "CAR4"
    assert performers[0].driver_name == "Driver CAR4"


def test_leaderboard_ties_keep_input_order():
    vehicles = {1: _vehicle(1, "AAA111"), 2: _vehicle(2, "BBB222"), 3: _vehicle(3, "CCC333")}
    entries = [_entry(2, cash="100"), _entry(1, cash="100"), _entry(3, cash="200")]

    performers = select_top_performers(entries, vehicles, limit=5)

    assert [p.registration_number for p in performers] == ["CCC333", "BBB222", "AAA111"]


def test_fleet_stats_default_to_current_week(conn, ledger, add_vehicle):
    first = add_vehicle("AAA111")
    add_vehicle("BBB222", status="inactive")
    ledger.upsert_weekly_entry(first, date(2024, 1, 8), date(2024, 1, 14), amounts(cash="8000", diesel="3000"))
    ledger.upsert_weekly_entry(first, date(2024, 1, 1), date(2024, 1, 7), amounts(cash="999"))

    stats = FleetStatsService(conn).get_fleet_stats(today=date(2024, 1, 10))

    assert stats.week_start == date(2024, 1, 8)
    assert stats.week_end == date(2024, 1, 14)
    assert stats.total_vehicles == 2
    assert stats.active_vehicles == 1
    assert stats.weekly_revenue == Decimal("8000")
    assert stats.weekly_profit == Decimal("5000")
    assert stats.total_deductions == Decimal("3000")
    assert stats.average_profit_margin == Decimal("62.5")
    assert [p.registration_number for p in stats.top_performers] == ["AAA111"]


def test_fleet_stats_for_explicit_week(conn, ledger, add_vehicle):
    vehicle_id = add_vehicle("AAA111")
    ledger.upsert_weekly_entry(vehicle_id, WEEK_START, WEEK_END, amounts(cash="10"))

    stats = FleetStatsService(conn).get_fleet_stats("2024-01-01")

    assert stats.weekly_revenue == Decimal("10")


def test_trend_returns_latest_weeks_oldest_first(conn, ledger, add_vehicle):
    first = add_vehicle("AAA111")
    second = add_vehicle("BBB222")
    for offset, cash in enumerate(["100", "200", "300", "400", "500"]):
        start = WEEK_START + timedelta(weeks=offset)
        ledger.upsert_weekly_entry(first, start, start + timedelta(days=6), amounts(cash=cash, diesel="50"))
    ledger.upsert_weekly_entry(second, date(2024, 3, 4), date(2024, 3, 10), amounts(cash="9999"))

    service = FleetStatsService(conn)
    points = service.get_trend(first, weeks=3)

    assert [p.week_start for p in points] == [date(2024, 1, 15), date(2024, 1, 22), date(2024, 1, 29)]
    assert [p.revenue for p in points] == [Decimal("300"), Decimal("400"), Decimal("500")]
    assert points[-1].deductions == Decimal("50")
    assert points[-1].profit == Decimal("450")
    assert points[-1].profit_margin == Decimal("90")

    fleet_points = service.get_trend(weeks=1)
    assert [p.revenue for p in fleet_points] == [Decimal("9999")]


def test_trend_requires_positive_week_count(conn):
    with pytest.raises(ValidationError):
        FleetStatsService(conn).get_trend(weeks=0)


def test_build_trend_reverses_newest_first_input():
    newest_first = [
        _entry(1, cash="300", week_start=date(2024, 1, 15), week_end=date(2024, 1, 21)),
        _entry(1, cash="200", week_start=date(2024, 1, 8), week_end=date(2024, 1, 14)),
        _entry(1, cash="100"),
    ]

    points = build_trend(newest_first)

    assert [p.week_start for p in points] == [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)]
    assert [p.revenue for p in points] == [Decimal("100"), Decimal("200"), Decimal("300")]
    assert build_trend([]) == []
