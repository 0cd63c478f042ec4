from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

from backend.services.excel_report import ExcelReportService, read_cells
from fleet_ledger.db import connect_sqlite, initialize_schema
from fleet_ledger.models import Vehicle
from fleet_ledger.repositories import VehicleRepository
from fleet_ledger.services import LedgerService

WEEK_START = date(2026, 2, 2)
WEEK_END = date(2026, 2, 8)


def seed(conn) -> None:
    """Three active vehicles, one without a submission, plus one inactive."""
    vehicles = VehicleRepository(conn)
    with conn:
        first = vehicles.create(Vehicle("CA123456", "Thabo Nkosi", "0821234567"))
        second = vehicles.create(Vehicle("CA654321", "Sipho Dlamini", "0837654321"))
        vehicles.create(Vehicle("CA111222", "Lerato Mokoena", "0841112222"))
        vehicles.create(Vehicle("CA999000", "Pieter Botha", "0849990000", status="inactive"))

    ledger = LedgerService(conn)
    ledger.upsert_weekly_entry(
        first,
        WEEK_START,
        WEEK_END,
        {
            "cash_collected": Decimal("5000"),
            "online_earnings": Decimal("3000"),
            "diesel_expense": Decimal("2000"),
            "tolls_parking": Decimal("500"),
            "maintenance_repairs": Decimal("300"),
            "other_expenses": Decimal("200"),
        },
        notes="Airport runs",
    )
    ledger.upsert_weekly_entry(
        second,
        WEEK_START,
        WEEK_END,
        {
            "cash_collected": Decimal("1000"),
            "online_earnings": Decimal("500"),
            "diesel_expense": Decimal("2000"),
            "tolls_parking": Decimal("500"),
            "maintenance_repairs": Decimal("300"),
            "other_expenses": Decimal("200"),
        },
    )


def main() -> int:
    conn = connect_sqlite()
    initialize_schema(conn)
    seed(conn)

    service = ExcelReportService(conn)
    content = service.generate_weekly_report(WEEK_START)
    sheet_name = service.layout["weekly_report"]["sheet_name"]

    # Three active vehicles on rows 4-6, totals two rows below the last one.
    expected = {
        "A8": "TOTAL",
        "F8": 9500,
        "K8": 6000,
        "L8": 3500,
        "A4": "CA111222",
        "F4": 0,
    }
    values = read_cells(content, list(expected), sheet_name)
    mismatched = [cell for cell, value in expected.items() if values[cell] != value]

    if mismatched:
        print("Verification failed. Unexpected values in:", ", ".join(mismatched))
        return 1

    output_path = Path("artifacts/sample_weekly_report.xlsx")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(content)
    print(f"Verification passed. Report generated at {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
