from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

import yaml
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from fleet_ledger.aggregation import VehicleTotals, fleet_totals, totals_by_vehicle
from fleet_ledger.calculations import parse_date, round_margin, week_end_for, week_start_for
from fleet_ledger.errors import NotFound, ValidationError
from fleet_ledger.models import Vehicle, WeeklyLedgerEntry
from fleet_ledger.repositories import LedgerRepository, VehicleRepository
from fleet_ledger.services import storage_errors

logger = logging.getLogger(__name__)

DEFAULT_LAYOUT_PATH = Path(__file__).resolve().parent.parent / "config" / "report_layout.yaml"

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

DateInput = Union[date, str, None]


@dataclass(frozen=True)
class WeeklyReportRow:
    vehicle: Vehicle
    totals: VehicleTotals


def margin_style(value: Decimal, palette: Mapping[str, str]) -> Font:
    """Font for a margin cell, keyed only on the sign of the value."""
    color = palette["negative"] if value < 0 else palette["non_negative"]
    return Font(color=color)


def build_weekly_rows(
    vehicles: Sequence[Vehicle],
    entries: Sequence[WeeklyLedgerEntry],
) -> list[WeeklyReportRow]:
    """One row per vehicle, zero-filled when it has no entry in the window."""
    by_vehicle = totals_by_vehicle(entries)
    return [WeeklyReportRow(vehicle=v, totals=by_vehicle.get(v.id, VehicleTotals())) for v in vehicles]


@dataclass
class ExcelReportService:
    """Render fleet and vehicle ledgers into formatted xlsx workbooks."""

    conn: sqlite3.Connection
    layout_path: Path = DEFAULT_LAYOUT_PATH
    currency_symbol: str = "R"
    creator: str = "Fleet Manager"
    layout: dict[str, Any] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.layout = self._load_layout(Path(self.layout_path))
        self.vehicles = VehicleRepository(self.conn)
        self.entries = LedgerRepository(self.conn)

    @staticmethod
    def _load_layout(layout_path: Path) -> dict[str, Any]:
        with layout_path.open("r", encoding="utf-8") as layout_file:
            loaded = yaml.safe_load(layout_file)

        if not isinstance(loaded, dict):
            msg = f"Layout file must contain a dictionary at root: {layout_path}"
            raise ValueError(msg)

        return loaded

    # ------------------------------------------------------------------
    # Weekly fleet report
    # ------------------------------------------------------------------

    def generate_weekly_report(
        self,
        week_start: DateInput = None,
        week_end: DateInput = None,
        today: Optional[date] = None,
    ) -> bytes:
        """Weekly report for every active vehicle, returned as xlsx bytes."""
        anchor = parse_date(week_start, "week_start") if week_start else (today or date.today())
        start = week_start_for(anchor)
        end = parse_date(week_end, "week_end") if week_end else week_end_for(start)
        if end < start:
            raise ValidationError("week_end must be on or after week_start")

        with storage_errors("loading weekly report data"):
            vehicles = self.vehicles.list_by_status("active")
            entries = self.entries.list_entries(week_start=start, week_end=end, order="insertion")

        rows = build_weekly_rows(vehicles, entries)
        workbook = self.render_weekly_workbook(start, end, rows)
        logger.info("Rendered weekly report %s..%s with %d vehicle rows", start, end, len(rows))
        return self._to_bytes(workbook)

    def render_weekly_workbook(self, start: date, end: date, rows: Sequence[WeeklyReportRow]) -> Workbook:
        section = self.layout["weekly_report"]
        styles = self.layout["styles"]
        columns = section["columns"]
        last_column = get_column_letter(len(columns))

        workbook = self._new_workbook()
        sheet = workbook.active
        sheet.title = section["sheet_name"]
        page_setup = section.get("page_setup", {})
        sheet.page_setup.orientation = page_setup.get("orientation", "landscape")
        sheet.page_setup.paperSize = page_setup.get("paper_size", sheet.PAPERSIZE_A4)

        title_row = int(section["title_row"])
        self._write_title(
            sheet,
            f"A{title_row}:{last_column}{title_row}",
            section["title"].format(start=start, end=end),
            styles["title"],
            fill=True,
        )

        header_row = int(section["header_row"])
        self._write_headers(sheet, header_row, columns, styles["header"])
        self._set_widths(sheet, columns)

        row_number = header_row + 1
        for index, row in enumerate(rows):
            self._write_data_row(sheet, row_number, index, row, columns)
            row_number += 1

        totals = fleet_totals(row.totals for row in rows)
        totals_row = row_number + 1
        self._write_totals_row(sheet, totals_row, totals, columns, section["totals_label"])

        self._write_summary(sheet, totals_row + 2, len(rows), totals, section)

        sheet.freeze_panes = section["freeze_panes"]
        return workbook

    def _write_data_row(
        self,
        sheet: Worksheet,
        row_number: int,
        index: int,
        row: WeeklyReportRow,
        columns: Sequence[Mapping[str, Any]],
    ) -> None:
        styles = self.layout["styles"]
        fills = styles["data"]["fills"]
        fill = _solid_fill(fills[index % len(fills)])
        border = _border(styles["data"]["border_color"])

        values = _weekly_row_values(row)
        for col_index, column in enumerate(columns, start=1):
            cell = sheet.cell(row=row_number, column=col_index, value=_cell_value(values[column["key"]], column))
            cell.fill = fill
            cell.border = border
            self._apply_kind(cell, column["kind"])
            if column["kind"] == "margin":
                cell.font = margin_style(row.totals.profit_margin, styles["margin"])

    def _write_totals_row(
        self,
        sheet: Worksheet,
        row_number: int,
        totals: VehicleTotals,
        columns: Sequence[Mapping[str, Any]],
        label: str,
    ) -> None:
        style = self.layout["styles"]["totals"]
        fill = _solid_fill(style["fill"])
        font = Font(**style["font"])
        thin = Side(style="thin")
        double = Side(style="double")
        border = Border(top=double, left=thin, bottom=double, right=thin)

        values = _totals_values(totals)
        for col_index, column in enumerate(columns, start=1):
            key = column["key"]
            if col_index == 1:
                value: Any = label
            elif column["kind"] == "text":
                value = ""
            else:
                value = _cell_value(values[key], column)
            cell = sheet.cell(row=row_number, column=col_index, value=value)
            cell.font = font
            cell.fill = fill
            cell.border = border
            self._apply_kind(cell, column["kind"])
        sheet.row_dimensions[row_number].height = style["row_height"]

    def _write_summary(
        self,
        sheet: Worksheet,
        start_row: int,
        vehicle_count: int,
        totals: VehicleTotals,
        section: Mapping[str, Any],
    ) -> None:
        title = sheet.cell(row=start_row, column=1, value=section["summary_title"])
        title.font = Font(**self.layout["styles"]["summary_title"]["font"])

        values = _totals_values(totals)
        values["active_vehicles"] = vehicle_count
        for offset, metric in enumerate(section["summary"], start=1):
            label = sheet.cell(row=start_row + offset, column=1, value=metric["label"])
            label.font = Font(bold=True)
            kind = metric.get("kind", "text")
            value_cell = sheet.cell(
                row=start_row + offset,
                column=2,
                value=_cell_value(values[metric["key"]], {"kind": kind}),
            )
            if kind != "text":
                value_cell.number_format = self._number_format(kind)

    # ------------------------------------------------------------------
    # Single-vehicle report
    # ------------------------------------------------------------------

    def generate_vehicle_report(self, vehicle_id: int, start_date: DateInput, end_date: DateInput) -> bytes:
        """History of one vehicle between two dates. No totals row."""
        if not start_date or not end_date:
            raise ValidationError("start_date and end_date are required")
        start = parse_date(start_date, "start_date")
        end = parse_date(end_date, "end_date")
        if end < start:
            raise ValidationError("end_date must be on or after start_date")

        with storage_errors("loading vehicle report data"):
            vehicle = self.vehicles.get_by_id(vehicle_id)
            if vehicle is None:
                raise NotFound(f"Vehicle {vehicle_id} not found")
            entries = self.entries.list_entries(
                vehicle_id=vehicle_id, week_start=start, week_end=end, order="oldest"
            )

        workbook = self.render_vehicle_workbook(vehicle, start, end, entries)
        logger.info("Rendered vehicle report for %s with %d weeks", vehicle.registration_number, len(entries))
        return self._to_bytes(workbook)

    def render_vehicle_workbook(
        self,
        vehicle: Vehicle,
        start: date,
        end: date,
        entries: Sequence[WeeklyLedgerEntry],
    ) -> Workbook:
        section = self.layout["vehicle_report"]
        columns = section["columns"]
        last_column = get_column_letter(len(columns))

        workbook = self._new_workbook()
        sheet = workbook.active
        sheet.title = section["sheet_name"]

        title_row = int(section["title_row"])
        self._write_title(
            sheet,
            f"A{title_row}:{last_column}{title_row}",
            section["title"].format(registration_number=vehicle.registration_number),
            self.layout["styles"]["vehicle_title"],
            fill=False,
        )

        info = {
            "driver_name": vehicle.driver_name,
            "driver_phone": vehicle.driver_phone,
            "period": section["period"].format(start=start, end=end),
        }
        for item in section["info_rows"]:
            sheet.cell(row=item["row"], column=1, value=item["label"])
            sheet.cell(row=item["row"], column=2, value=info[item["key"]])

        header_row = int(section["header_row"])
        for col_index, column in enumerate(columns, start=1):
            cell = sheet.cell(row=header_row, column=col_index, value=column["header"])
            cell.font = Font(bold=True)
            cell.alignment = Alignment(horizontal="center")
        self._set_widths(sheet, columns)

        for offset, entry in enumerate(entries, start=1):
            values = {
                "week_start": entry.week_start.strftime(section["week_format"]),
                "total_revenue": entry.total_revenue,
                "total_deductions": entry.total_deductions,
                "net_profit": entry.net_profit,
                "profit_margin": entry.profit_margin,
                "notes": entry.notes or "",
            }
            for col_index, column in enumerate(columns, start=1):
                cell = sheet.cell(
                    row=header_row + offset,
                    column=col_index,
                    value=_cell_value(values[column["key"]], column),
                )
                if column["kind"] != "text":
                    cell.number_format = self._number_format(column["kind"])

        return workbook

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _new_workbook(self) -> Workbook:
        workbook = Workbook()
        workbook.properties.creator = self.creator
        return workbook

    def _write_title(
        self,
        sheet: Worksheet,
        cell_range: str,
        text: str,
        style: Mapping[str, Any],
        fill: bool,
    ) -> None:
        sheet.merge_cells(cell_range)
        anchor = cell_range.split(":")[0]
        cell = sheet[anchor]
        cell.value = text
        cell.font = Font(**style["font"])
        if fill:
            cell.fill = _solid_fill(style["fill"])
        cell.alignment = Alignment(horizontal="center", vertical="center")
        sheet.row_dimensions[cell.row].height = style["row_height"]

    def _write_headers(
        self,
        sheet: Worksheet,
        row_number: int,
        columns: Sequence[Mapping[str, Any]],
        style: Mapping[str, Any],
    ) -> None:
        font = Font(**style["font"])
        fill = _solid_fill(style["fill"])
        border = _border(style["border_color"])
        alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        for col_index, column in enumerate(columns, start=1):
            cell = sheet.cell(row=row_number, column=col_index, value=column["header"])
            cell.font = font
            cell.fill = fill
            cell.border = border
            cell.alignment = alignment
        sheet.row_dimensions[row_number].height = style["row_height"]

    @staticmethod
    def _set_widths(sheet: Worksheet, columns: Sequence[Mapping[str, Any]]) -> None:
        for col_index, column in enumerate(columns, start=1):
            sheet.column_dimensions[get_column_letter(col_index)].width = column["width"]

    def _apply_kind(self, cell: Any, kind: str) -> None:
        if kind == "text":
            cell.alignment = Alignment(horizontal="left", vertical="center")
            return
        cell.number_format = self._number_format(kind)
        cell.alignment = Alignment(horizontal="right", vertical="center")

    def _number_format(self, kind: str) -> str:
        return self.layout["number_formats"][kind].replace("{symbol}", self.currency_symbol)

    @staticmethod
    def _to_bytes(workbook: Workbook) -> bytes:
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()


def _weekly_row_values(row: WeeklyReportRow) -> dict[str, Any]:
    values = _totals_values(row.totals)
    values.update(
        registration_number=row.vehicle.registration_number,
        driver_name=row.vehicle.driver_name,
        driver_phone=row.vehicle.driver_phone,
        notes="; ".join(row.totals.notes),
    )
    return values


def _totals_values(totals: VehicleTotals) -> dict[str, Any]:
    return {
        "cash_collected": totals.cash_collected,
        "online_earnings": totals.online_earnings,
        "total_revenue": totals.total_revenue,
        "diesel_expense": totals.diesel_expense,
        "tolls_parking": totals.tolls_parking,
        "maintenance_repairs": totals.maintenance_repairs,
        "other_expenses": totals.other_expenses,
        "total_deductions": totals.total_deductions,
        "net_profit": totals.net_profit,
        "profit_margin": totals.profit_margin,
    }


def _cell_value(value: Any, column: Mapping[str, Any]) -> Any:
    kind = column.get("kind", "text")
    if kind == "margin":
        return float(round_margin(value))
    if kind == "currency":
        return float(value)
    return value


def _solid_fill(color: str) -> PatternFill:
    return PatternFill(fill_type="solid", start_color=color, end_color=color)


def _border(color: str) -> Border:
    side = Side(style="thin", color=color)
    return Border(top=side, left=side, bottom=side, right=side)


def read_cells(content: bytes, cells: list[str], sheet_name: str) -> dict[str, Any]:
    """Utility for validation/testing: read exact cell values from a rendered workbook."""
    workbook = load_workbook(BytesIO(content), data_only=False)
    sheet = workbook[sheet_name]
    return {cell: sheet[cell].value for cell in cells}
