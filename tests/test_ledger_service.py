from datetime import date, datetime, timezone
from decimal import Decimal
import sqlite3

import pytest

from fleet_ledger.errors import NotFound, StorageError, ValidationError
from fleet_ledger.models import OptionalMetrics
from fleet_ledger.repositories import VehicleRepository

from conftest import WEEK_END, WEEK_START, amounts


def test_end_to_end_submission_derives_totals(ledger, add_vehicle):
    vehicle_id = add_vehicle("abc123 ")

    entry = ledger.upsert_weekly_entry(
        vehicle_id,
        WEEK_START,
        WEEK_END,
        amounts(cash="5000", online="3000", diesel="2000", tolls="500", maintenance="300", other="200"),
        metrics=OptionalMetrics(total_trips=50, total_distance=Decimal("1000"), average_rating=Decimal("4.5")),
        notes="  steady week ",
        submitted_by="user-1",
    )

    assert entry.id is not None
    assert entry.total_revenue == Decimal("8000")
    assert entry.total_deductions == Decimal("3000")
    assert entry.net_profit == Decimal("5000")
    assert entry.profit_margin == Decimal("62.5")
    assert entry.metrics.total_trips == 50
    assert entry.notes == "steady week"
    assert entry.submitted_by == "user-1"
    assert VehicleRepository(ledger.conn).get_by_id(vehicle_id).registration_number == "ABC123"


def test_second_submission_overwrites_instead_of_merging(ledger, add_vehicle):
    vehicle_id = add_vehicle("ABC123")
    first_time = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)
    second_time = datetime(2024, 1, 9, 9, 0, tzinfo=timezone.utc)

    first = ledger.upsert_weekly_entry(
        vehicle_id,
        WEEK_START,
        WEEK_END,
        amounts(cash="5000", online="3000", diesel="2000"),
        metrics=OptionalMetrics(total_trips=40, average_rating=Decimal("4.9")),
        notes="first",
        submitted_by="user-a",
        now=first_time,
    )
    second = ledger.upsert_weekly_entry(
        vehicle_id,
        WEEK_START,
        WEEK_END,
        amounts(cash="100", other="50"),
        submitted_by="user-b",
        now=second_time,
    )

    stored = ledger.get_weekly_entries(vehicle_id=vehicle_id)
    assert len(stored) == 1
    assert second.id == first.id
    assert stored[0] == second
    assert stored[0].amounts.cash_collected == Decimal("100")
    assert stored[0].amounts.online_earnings == Decimal("0")
    assert stored[0].amounts.diesel_expense == Decimal("0")
    assert stored[0].total_revenue == Decimal("100")
    assert stored[0].net_profit == Decimal("50")
    assert stored[0].metrics.total_trips is None
    assert stored[0].metrics.average_rating is None
    assert stored[0].notes is None
    assert stored[0].submitted_by == "user-b"
    assert stored[0].submitted_at == second_time


def test_unknown_vehicle_is_not_found(ledger):
    with pytest.raises(NotFound):
        ledger.upsert_weekly_entry(999, WEEK_START, WEEK_END, amounts(cash="10"))


def test_negative_input_is_rejected_before_any_write(ledger, add_vehicle):
    vehicle_id = add_vehicle("ABC123")

    with pytest.raises(ValidationError):
        ledger.upsert_weekly_entry(vehicle_id, WEEK_START, WEEK_END, amounts(cash="-1"))

    assert ledger.get_weekly_entries() == []


def test_week_end_before_week_start_is_rejected(ledger, add_vehicle):
    vehicle_id = add_vehicle("ABC123")

    with pytest.raises(ValidationError):
        ledger.upsert_weekly_entry(vehicle_id, WEEK_END, WEEK_START, amounts(cash="10"))


def test_filters_match_window_and_sort_newest_first(ledger, add_vehicle):
    first = add_vehicle("AAA111")
    second = add_vehicle("BBB222")
    ledger.upsert_weekly_entry(first, date(2024, 1, 1), date(2024, 1, 7), amounts(cash="1"))
    ledger.upsert_weekly_entry(first, date(2024, 1, 8), date(2024, 1, 14), amounts(cash="2"))
    ledger.upsert_weekly_entry(second, date(2024, 1, 8), date(2024, 1, 14), amounts(cash="3"))

    by_vehicle = ledger.get_weekly_entries(vehicle_id=first)
    assert [entry.week_start for entry in by_vehicle] == [date(2024, 1, 8), date(2024, 1, 1)]

    in_window = ledger.get_weekly_entries(week_start="2024-01-08", week_end="2024-01-14")
    assert sorted(entry.vehicle_id for entry in in_window) == [first, second]

    assert ledger.get_weekly_entries(week_start=date(2024, 2, 1)) == []


def test_delete_entry_and_missing_entry(ledger, add_vehicle):
    vehicle_id = add_vehicle("ABC123")
    entry = ledger.upsert_weekly_entry(vehicle_id, WEEK_START, WEEK_END, amounts(cash="10"))

    ledger.delete_weekly_entry(entry.id)

    with pytest.raises(NotFound):
        ledger.get_weekly_entry(entry.id)
    with pytest.raises(NotFound):
        ledger.delete_weekly_entry(entry.id)


def test_deleting_vehicle_cascades_to_entries(ledger, add_vehicle):
    vehicle_id = add_vehicle("ABC123")
    ledger.upsert_weekly_entry(vehicle_id, WEEK_START, WEEK_END, amounts(cash="10"))

    with ledger.conn:
        VehicleRepository(ledger.conn).delete(vehicle_id)

    assert ledger.get_weekly_entries() == []


def test_uniqueness_is_enforced_by_the_store(conn, add_vehicle):
    vehicle_id = add_vehicle("ABC123")
    insert = "INSERT INTO weekly_ledger_entry(vehicle_id, week_start, week_end) VALUES (?, ?, ?)"
    conn.execute(insert, (vehicle_id, "2024-01-01", "2024-01-07"))

    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(insert, (vehicle_id, "2024-01-01", "2024-01-07"))


def test_storage_failures_surface_as_storage_error(ledger, conn):
    conn.execute("DROP TABLE weekly_ledger_entry")

    with pytest.raises(StorageError):
        ledger.get_weekly_entries()


def test_registration_lookup_is_normalised(conn, add_vehicle):
    vehicle_id = add_vehicle(" ca123456 ")
    vehicles = VehicleRepository(conn)

    assert vehicles.get_by_registration("CA123456").id == vehicle_id
    assert vehicles.get_by_registration("ca123456").id == vehicle_id
    assert vehicles.get_by_registration("XX000000") is None


def test_save_reports_create_then_overwrite_and_takes_new_week_end(ledger, add_vehicle):
    vehicle_id = add_vehicle("ABC123")

    first, created = ledger.save_weekly_entry(vehicle_id, WEEK_START, WEEK_END, amounts(cash="10"))
    second, created_again = ledger.save_weekly_entry(
        vehicle_id, WEEK_START, date(2024, 1, 5), amounts(cash="20"), notes="short week"
    )

    assert created is True
    assert created_again is False
    assert second.id == first.id
    stored = ledger.get_weekly_entries(vehicle_id=vehicle_id)
    assert len(stored) == 1
    assert stored[0].week_end == date(2024, 1, 5)
    assert stored[0].total_revenue == Decimal("20")
    assert stored[0].notes == "short week"
