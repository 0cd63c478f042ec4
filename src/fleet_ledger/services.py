from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Iterator, Mapping, Optional, Union

from fleet_ledger.aggregation import DEFAULT_TOP_PERFORMERS, aggregate_fleet, build_trend
from fleet_ledger.calculations import (
    calculate_financials,
    parse_amounts,
    parse_date,
    validate_amounts,
    validate_metrics,
    validate_week,
    week_end_for,
    week_start_for,
)
from fleet_ledger.errors import NotFound, StorageError, ValidationError
from fleet_ledger.models import FleetAggregate, OptionalMetrics, RawAmounts, TrendPoint, WeeklyLedgerEntry
from fleet_ledger.repositories import LedgerRepository, VehicleRepository

logger = logging.getLogger(__name__)


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Re-raise sqlite failures as StorageError. No retries."""
    try:
        yield
    except sqlite3.Error as exc:
        logger.error("Storage failure while %s: %s", action, exc)
        raise StorageError(f"Storage failure while {action}") from exc


class LedgerService:
    """Validates weekly submissions, derives their totals and upserts them."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.vehicles = VehicleRepository(conn)
        self.entries = LedgerRepository(conn)

    def upsert_weekly_entry(
        self,
        vehicle_id: int,
        week_start: Union[date, str],
        week_end: Union[date, str],
        amounts: Union[RawAmounts, Mapping[str, Any]],
        metrics: Optional[OptionalMetrics] = None,
        notes: Optional[str] = None,
        submitted_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WeeklyLedgerEntry:
        entry, _ = self.save_weekly_entry(
            vehicle_id,
            week_start,
            week_end,
            amounts,
            metrics=metrics,
            notes=notes,
            submitted_by=submitted_by,
            now=now,
        )
        return entry

    def save_weekly_entry(
        self,
        vehicle_id: int,
        week_start: Union[date, str],
        week_end: Union[date, str],
        amounts: Union[RawAmounts, Mapping[str, Any]],
        metrics: Optional[OptionalMetrics] = None,
        notes: Optional[str] = None,
        submitted_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[WeeklyLedgerEntry, bool]:
        """Like ``upsert_weekly_entry`` but also reports whether a new row was created."""
        start, end = validate_week(week_start, week_end)
        raw = validate_amounts(amounts) if isinstance(amounts, RawAmounts) else parse_amounts(amounts)
        checked_metrics = validate_metrics(metrics)

        entry = WeeklyLedgerEntry(
            vehicle_id=vehicle_id,
            week_start=start,
            week_end=end,
            amounts=raw,
            financials=calculate_financials(raw),
            metrics=checked_metrics,
            notes=(notes or "").strip() or None,
            submitted_by=submitted_by,
            submitted_at=now or datetime.now(timezone.utc),
        )

        with storage_errors("saving weekly entry"), self.conn:
            if self.vehicles.get_by_id(vehicle_id) is None:
                raise NotFound(f"Vehicle {vehicle_id} not found")
            entry_id, created = self.entries.upsert(entry)

        logger.info(
            "%s weekly entry %s for vehicle %s week %s",
            "Created" if created else "Overwrote",
            entry_id,
            vehicle_id,
            start.isoformat(),
        )
        return self.get_weekly_entry(entry_id), created

    def get_weekly_entry(self, entry_id: int) -> WeeklyLedgerEntry:
        with storage_errors("reading weekly entry"):
            entry = self.entries.get_by_id(entry_id)
        if entry is None:
            raise NotFound(f"Weekly entry {entry_id} not found")
        return entry

    def get_weekly_entries(
        self,
        vehicle_id: Optional[int] = None,
        week_start: Union[date, str, None] = None,
        week_end: Union[date, str, None] = None,
    ) -> list[WeeklyLedgerEntry]:
        start = parse_date(week_start, "week_start") if week_start else None
        end = parse_date(week_end, "week_end") if week_end else None
        with storage_errors("listing weekly entries"):
            return self.entries.list_entries(vehicle_id=vehicle_id, week_start=start, week_end=end)

    def delete_weekly_entry(self, entry_id: int) -> None:
        with storage_errors("deleting weekly entry"), self.conn:
            deleted = self.entries.delete(entry_id)
        if not deleted:
            raise NotFound(f"Weekly entry {entry_id} not found")
        logger.info("Deleted weekly entry %s", entry_id)


class FleetStatsService:
    """Read-only fleet dashboard: aggregate stats and trend series."""

    def __init__(self, conn: sqlite3.Connection, top_n: int = DEFAULT_TOP_PERFORMERS):
        self.conn = conn
        self.top_n = top_n
        self.vehicles = VehicleRepository(conn)
        self.entries = LedgerRepository(conn)

    def get_fleet_stats(
        self,
        week_start: Union[date, str, None] = None,
        today: Optional[date] = None,
    ) -> FleetAggregate:
        if week_start:
            start = parse_date(week_start, "week_start")
        else:
            start = week_start_for(today or date.today())
        end = week_end_for(start)

        with storage_errors("aggregating fleet stats"):
            vehicles = self.vehicles.list_all()
            entries = self.entries.list_entries(week_start=start, week_end=end, order="insertion")

        return aggregate_fleet(vehicles, entries, start, end, top_n=self.top_n)

    def get_trend(self, vehicle_id: Optional[int] = None, weeks: int = 4) -> list[TrendPoint]:
        if weeks < 1:
            raise ValidationError("weeks must be at least 1")
        with storage_errors("reading trend"):
            entries = self.entries.list_recent(weeks, vehicle_id=vehicle_id)
        return build_trend(entries)
