from __future__ import annotations

import sqlite3
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from fleet_ledger.models import (
    Financials,
    OptionalMetrics,
    RawAmounts,
    Vehicle,
    VehicleStatus,
    WeeklyLedgerEntry,
)


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def normalize_registration(value: str) -> str:
    return value.strip().upper()


ENTRY_COLUMNS = (
    "vehicle_id",
    "week_start",
    "week_end",
    "cash_collected",
    "online_earnings",
    "diesel_expense",
    "tolls_parking",
    "maintenance_repairs",
    "other_expenses",
    "total_revenue",
    "total_deductions",
    "net_profit",
    "profit_margin",
    "total_trips",
    "total_distance",
    "average_rating",
    "notes",
    "submitted_by",
    "submitted_at",
)

# Every column except the conflict key is overwritten on upsert.
_OVERWRITE_COLUMNS = tuple(c for c in ENTRY_COLUMNS if c not in ("vehicle_id", "week_start"))

_ENTRY_ORDERINGS = {
    "newest": "week_start DESC, id DESC",
    "oldest": "week_start ASC, id ASC",
    "insertion": "id ASC",
}


class VehicleRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def create(self, vehicle: Vehicle) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO vehicle(registration_number, driver_name, driver_phone, status, notes)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                normalize_registration(vehicle.registration_number),
                vehicle.driver_name.strip(),
                vehicle.driver_phone.strip(),
                vehicle.status,
                vehicle.notes,
            ),
        )
        return int(cursor.lastrowid)

    def get_by_id(self, vehicle_id: int) -> Optional[Vehicle]:
        row = self.conn.execute("SELECT * FROM vehicle WHERE id = ?", (vehicle_id,)).fetchone()
        return _vehicle_from_row(row) if row else None

    def get_by_registration(self, registration_number: str) -> Optional[Vehicle]:
        row = self.conn.execute(
            "SELECT * FROM vehicle WHERE registration_number = ?",
            (normalize_registration(registration_number),),
        ).fetchone()
        return _vehicle_from_row(row) if row else None

    def list_all(self) -> list[Vehicle]:
        rows = self.conn.execute("SELECT * FROM vehicle ORDER BY registration_number ASC").fetchall()
        return [_vehicle_from_row(row) for row in rows]

    def list_by_status(self, status: VehicleStatus) -> list[Vehicle]:
        rows = self.conn.execute(
            "SELECT * FROM vehicle WHERE status = ? ORDER BY registration_number ASC",
            (status,),
        ).fetchall()
        return [_vehicle_from_row(row) for row in rows]

    def delete(self, vehicle_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM vehicle WHERE id = ?", (vehicle_id,))
        return cursor.rowcount > 0


class LedgerRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def upsert(self, entry: WeeklyLedgerEntry) -> tuple[int, bool]:
        """Insert or fully overwrite the entry keyed by (vehicle_id, week_start).

        Returns the row id and whether a new row was created.
        """
        existing_id = self.find_id(entry.vehicle_id, entry.week_start)
        values = _entry_values(entry)
        placeholders = ", ".join("?" for _ in ENTRY_COLUMNS)
        assignments = ", ".join(f"{column} = excluded.{column}" for column in _OVERWRITE_COLUMNS)
        self.conn.execute(
            f"""
            INSERT INTO weekly_ledger_entry({", ".join(ENTRY_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(vehicle_id, week_start)
            DO UPDATE SET {assignments}, updated_at = CURRENT_TIMESTAMP
            """,
            values,
        )
        entry_id = self.find_id(entry.vehicle_id, entry.week_start)
        return int(entry_id), existing_id is None

    def find_id(self, vehicle_id: int, week_start: date) -> Optional[int]:
        row = self.conn.execute(
            "SELECT id FROM weekly_ledger_entry WHERE vehicle_id = ? AND week_start = ?",
            (vehicle_id, week_start.isoformat()),
        ).fetchone()
        return row[0] if row else None

    def get_by_id(self, entry_id: int) -> Optional[WeeklyLedgerEntry]:
        row = self.conn.execute("SELECT * FROM weekly_ledger_entry WHERE id = ?", (entry_id,)).fetchone()
        return _entry_from_row(row) if row else None

    def list_entries(
        self,
        vehicle_id: Optional[int] = None,
        week_start: Optional[date] = None,
        week_end: Optional[date] = None,
        order: str = "newest",
    ) -> list[WeeklyLedgerEntry]:
        clauses: list[str] = []
        params: list[Any] = []
        if vehicle_id is not None:
            clauses.append("vehicle_id = ?")
            params.append(vehicle_id)
        if week_start is not None:
            clauses.append("week_start >= ?")
            params.append(week_start.isoformat())
        if week_end is not None:
            clauses.append("week_end <= ?")
            params.append(week_end.isoformat())

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT * FROM weekly_ledger_entry {where} ORDER BY {_ENTRY_ORDERINGS[order]}",
            params,
        ).fetchall()
        return [_entry_from_row(row) for row in rows]

    def list_recent(self, limit: int, vehicle_id: Optional[int] = None) -> list[WeeklyLedgerEntry]:
        """The ``limit`` most recent weeks, newest first."""
        if vehicle_id is None:
            rows = self.conn.execute(
                "SELECT * FROM weekly_ledger_entry ORDER BY week_start DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                """
                SELECT * FROM weekly_ledger_entry
                WHERE vehicle_id = ?
                ORDER BY week_start DESC, id DESC
                LIMIT ?
                """,
                (vehicle_id, limit),
            ).fetchall()
        return [_entry_from_row(row) for row in rows]

    def delete(self, entry_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM weekly_ledger_entry WHERE id = ?", (entry_id,))
        return cursor.rowcount > 0


def _entry_values(entry: WeeklyLedgerEntry) -> list[Any]:
    amounts = entry.amounts
    financials = entry.financials
    metrics = entry.metrics
    return [
        _normalize_value(value)
        for value in (
            entry.vehicle_id,
            entry.week_start,
            entry.week_end,
            amounts.cash_collected,
            amounts.online_earnings,
            amounts.diesel_expense,
            amounts.tolls_parking,
            amounts.maintenance_repairs,
            amounts.other_expenses,
            financials.total_revenue,
            financials.total_deductions,
            financials.net_profit,
            financials.profit_margin,
            metrics.total_trips,
            metrics.total_distance,
            metrics.average_rating,
            entry.notes,
            entry.submitted_by,
            entry.submitted_at,
        )
    ]


def _vehicle_from_row(row: sqlite3.Row) -> Vehicle:
    return Vehicle(
        id=row["id"],
        registration_number=row["registration_number"],
        driver_name=row["driver_name"],
        driver_phone=row["driver_phone"],
        status=row["status"],
        notes=row["notes"],
        added_date=date.fromisoformat(row["added_date"][:10]) if row["added_date"] else None,
    )


def _entry_from_row(row: sqlite3.Row) -> WeeklyLedgerEntry:
    return WeeklyLedgerEntry(
        id=row["id"],
        vehicle_id=row["vehicle_id"],
        week_start=date.fromisoformat(row["week_start"]),
        week_end=date.fromisoformat(row["week_end"]),
        amounts=RawAmounts(
            cash_collected=_decimal(row["cash_collected"]),
            online_earnings=_decimal(row["online_earnings"]),
            diesel_expense=_decimal(row["diesel_expense"]),
            tolls_parking=_decimal(row["tolls_parking"]),
            maintenance_repairs=_decimal(row["maintenance_repairs"]),
            other_expenses=_decimal(row["other_expenses"]),
        ),
        financials=Financials(
            total_revenue=_decimal(row["total_revenue"]),
            total_deductions=_decimal(row["total_deductions"]),
            net_profit=_decimal(row["net_profit"]),
            profit_margin=_decimal(row["profit_margin"]),
        ),
        metrics=OptionalMetrics(
            total_trips=row["total_trips"],
            total_distance=_decimal(row["total_distance"]),
            average_rating=_decimal(row["average_rating"]),
        ),
        notes=row["notes"],
        submitted_by=row["submitted_by"],
        submitted_at=datetime.fromisoformat(row["submitted_at"]) if row["submitted_at"] else None,
    )
