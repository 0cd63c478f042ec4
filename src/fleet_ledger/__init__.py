from .aggregation import aggregate_fleet, build_trend, select_top_performers
from .calculations import calculate_financials, round_margin, week_end_for, week_start_for
from .errors import ConflictError, FleetLedgerError, NotFound, StorageError, ValidationError
from .models import (
    FleetAggregate,
    Financials,
    OptionalMetrics,
    RawAmounts,
    TopPerformer,
    TrendPoint,
    Vehicle,
    WeeklyLedgerEntry,
)
from .services import FleetStatsService, LedgerService

__all__ = [
    "ConflictError",
    "FleetAggregate",
    "FleetLedgerError",
    "FleetStatsService",
    "Financials",
    "LedgerService",
    "NotFound",
    "OptionalMetrics",
    "RawAmounts",
    "StorageError",
    "TopPerformer",
    "TrendPoint",
    "ValidationError",
    "Vehicle",
    "WeeklyLedgerEntry",
    "aggregate_fleet",
    "build_trend",
    "calculate_financials",
    "round_margin",
    "select_top_performers",
    "week_end_for",
    "week_start_for",
]
