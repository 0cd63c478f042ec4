from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import AsyncIterator, Iterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from backend.services.excel_report import XLSX_MEDIA_TYPE, ExcelReportService
from fleet_ledger.calculations import round_margin
from fleet_ledger.db import connect_sqlite, initialize_schema
from fleet_ledger.errors import ConflictError, NotFound, StorageError, ValidationError
from fleet_ledger.models import OptionalMetrics, WeeklyLedgerEntry
from fleet_ledger.repositories import VehicleRepository
from fleet_ledger.services import FleetStatsService, LedgerService
from fleet_ledger.settings import settings

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    conn = connect_sqlite(settings.database_path)
    try:
        initialize_schema(conn)
    finally:
        conn.close()
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_conn() -> Iterator[sqlite3.Connection]:
    conn = connect_sqlite(settings.database_path, check_same_thread=False)
    try:
        yield conn
    finally:
        conn.close()


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "; ".join(messages)})


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFound)
async def handle_not_found(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def handle_conflict(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def handle_storage_error(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


class WeeklyEntryCreate(BaseModel):
    vehicle_id: int
    week_start: date
    week_end: date
    cash_collected: Decimal
    online_earnings: Decimal
    diesel_expense: Decimal
    tolls_parking: Decimal
    maintenance_repairs: Decimal
    other_expenses: Decimal
    total_trips: Optional[int] = None
    total_distance: Optional[Decimal] = None
    average_rating: Optional[Decimal] = None
    notes: Optional[str] = None


def serialize_entry(entry: WeeklyLedgerEntry) -> dict:
    amounts = entry.amounts
    return {
        "id": entry.id,
        "vehicle_id": entry.vehicle_id,
        "week_start": entry.week_start.isoformat(),
        "week_end": entry.week_end.isoformat(),
        "cash_collected": float(amounts.cash_collected),
        "online_earnings": float(amounts.online_earnings),
        "diesel_expense": float(amounts.diesel_expense),
        "tolls_parking": float(amounts.tolls_parking),
        "maintenance_repairs": float(amounts.maintenance_repairs),
        "other_expenses": float(amounts.other_expenses),
        "total_revenue": float(entry.total_revenue),
        "total_deductions": float(entry.total_deductions),
        "net_profit": float(entry.net_profit),
        "profit_margin": float(round_margin(entry.profit_margin)),
        "total_trips": entry.metrics.total_trips,
        "total_distance": _optional_float(entry.metrics.total_distance),
        "average_rating": _optional_float(entry.metrics.average_rating),
        "notes": entry.notes,
        "submitted_by": entry.submitted_by,
        "submitted_at": entry.submitted_at.isoformat() if entry.submitted_at else None,
    }


def _optional_float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


@app.get("/vehicles")
def list_vehicles(conn: sqlite3.Connection = Depends(get_conn)):
    return [
        {
            "id": vehicle.id,
            "registration_number": vehicle.registration_number,
            "driver_name": vehicle.driver_name,
            "driver_phone": vehicle.driver_phone,
            "status": vehicle.status,
        }
        for vehicle in VehicleRepository(conn).list_all()
    ]


@app.get("/weekly-data")
def list_weekly_data(
    vehicle_id: Optional[int] = Query(None),
    week_start: Optional[date] = Query(None),
    week_end: Optional[date] = Query(None),
    conn: sqlite3.Connection = Depends(get_conn),
):
    entries = LedgerService(conn).get_weekly_entries(vehicle_id, week_start, week_end)
    return [serialize_entry(entry) for entry in entries]


@app.get("/weekly-data/{entry_id}")
def get_weekly_data(entry_id: int, conn: sqlite3.Connection = Depends(get_conn)):
    return serialize_entry(LedgerService(conn).get_weekly_entry(entry_id))


@app.post("/weekly-data")
def upsert_weekly_data(
    payload: WeeklyEntryCreate,
    response: Response,
    x_user_id: Optional[str] = Header(None),
    conn: sqlite3.Connection = Depends(get_conn),
):
    data = payload.model_dump()
    entry, created = LedgerService(conn).save_weekly_entry(
        vehicle_id=payload.vehicle_id,
        week_start=payload.week_start,
        week_end=payload.week_end,
        amounts=data,
        metrics=OptionalMetrics(
            total_trips=payload.total_trips,
            total_distance=payload.total_distance,
            average_rating=payload.average_rating,
        ),
        notes=payload.notes,
        submitted_by=x_user_id,
    )
    action = "created" if created else "updated"
    logger.info("Weekly data for vehicle %s %s by %s", payload.vehicle_id, action, x_user_id or "anonymous")
    response.status_code = 201 if created else 200
    return {"message": f"Weekly data {action} successfully", "data": serialize_entry(entry)}


@app.delete("/weekly-data/{entry_id}")
def delete_weekly_data(entry_id: int, conn: sqlite3.Connection = Depends(get_conn)):
    LedgerService(conn).delete_weekly_entry(entry_id)
    logger.info("Weekly data %s deleted", entry_id)
    return {"message": "Weekly data deleted successfully"}


@app.get("/dashboard/stats")
def dashboard_stats(
    week_start: Optional[date] = Query(None),
    conn: sqlite3.Connection = Depends(get_conn),
):
    stats = FleetStatsService(conn, top_n=settings.top_performers_limit).get_fleet_stats(week_start)
    return {
        "week_start": stats.week_start.isoformat(),
        "week_end": stats.week_end.isoformat(),
        "total_vehicles": stats.total_vehicles,
        "active_vehicles": stats.active_vehicles,
        "weekly_revenue": float(stats.weekly_revenue),
        "weekly_profit": float(stats.weekly_profit),
        "total_deductions": float(stats.total_deductions),
        "average_profit_margin": float(round_margin(stats.average_profit_margin)),
        "top_performers": [
            {
                "registration_number": performer.registration_number,
                "driver_name": performer.driver_name,
                "profit": float(performer.profit),
            }
            for performer in stats.top_performers
        ],
    }


@app.get("/dashboard/trends")
def dashboard_trends(
    vehicle_id: Optional[int] = Query(None),
    weeks: int = Query(settings.default_trend_weeks),
    conn: sqlite3.Connection = Depends(get_conn),
):
    points = FleetStatsService(conn).get_trend(vehicle_id, weeks)
    return [
        {
            "week": point.week_start.isoformat(),
            "revenue": float(point.revenue),
            "profit": float(point.profit),
            "deductions": float(point.deductions),
            "profit_margin": float(round_margin(point.profit_margin)),
        }
        for point in points
    ]


def _report_service(conn: sqlite3.Connection) -> ExcelReportService:
    if settings.report_layout_path:
        return ExcelReportService(
            conn,
            layout_path=settings.report_layout_path,
            currency_symbol=settings.currency_symbol,
            creator=settings.report_creator,
        )
    return ExcelReportService(conn, currency_symbol=settings.currency_symbol, creator=settings.report_creator)


@app.get("/reports/weekly-excel")
def weekly_excel(
    week_start: Optional[date] = Query(None),
    week_end: Optional[date] = Query(None),
    conn: sqlite3.Connection = Depends(get_conn),
):
    content = _report_service(conn).generate_weekly_report(week_start, week_end)
    label = (week_start or date.today()).isoformat()
    logger.info("Weekly report %s downloaded", label)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=fleet-report-{label}.xlsx"},
    )


@app.get("/reports/vehicle-excel/{vehicle_id}")
def vehicle_excel(
    vehicle_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    conn: sqlite3.Connection = Depends(get_conn),
):
    if start_date is None or end_date is None:
        raise HTTPException(status_code=400, detail="Start date and end date are required")

    content = _report_service(conn).generate_vehicle_report(vehicle_id, start_date, end_date)
    logger.info("Vehicle report for %s downloaded", vehicle_id)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=vehicle-report-{vehicle_id}.xlsx"},
    )


@app.get("/health")
def health():
    return {"status": "ok"}
