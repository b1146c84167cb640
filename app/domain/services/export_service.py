"""
Export Service - bot user exports as CSV, JSON or a styled Excel sheet (openpyxl)
"""
import csv
import enum
import io
import json
from datetime import datetime
from typing import Any, Iterable

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from app.db.models.bot_user import BotUser


class ExportFormat(str, enum.Enum):
    CSV = "csv"
    JSON = "json"
    XLSX = "xlsx"


USER_EXPORT_COLUMNS = (
    "telegram_id",
    "username",
    "first_name",
    "last_name",
    "registration_date",
    "last_activity",
    "total_calculations",
    "total_orders",
    "is_subscribed",
)

_HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
_HEADER_FONT = Font(name="Arial", bold=True, color="FFFFFF", size=11)
_TITLE_FONT = Font(name="Arial", bold=True, size=14)
_SUBTITLE_FONT = Font(name="Arial", bold=False, size=10, color="666666")
_THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
_LEFT_ALIGN = Alignment(horizontal="left", vertical="center", wrap_text=True)

# leading characters Excel would evaluate as a formula
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_text(value: Any) -> Any:
    """Prefix formula-like strings with a quote (CSV/Excel injection)"""
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


def user_to_row(user: BotUser) -> dict[str, Any]:
    return {
        "telegram_id": user.telegram_id,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "registration_date": user.registration_date.isoformat() if user.registration_date else None,
        "last_activity": user.last_activity.isoformat() if user.last_activity else None,
        "total_calculations": user.total_calculations,
        "total_orders": user.total_orders,
        "is_subscribed": user.is_subscribed,
    }


def export_users_csv(rows: Iterable[dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=USER_EXPORT_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({key: _sanitize_text(row.get(key)) for key in USER_EXPORT_COLUMNS})
    return output.getvalue()


def export_users_json(rows: Iterable[dict[str, Any]]) -> str:
    return json.dumps(list(rows), ensure_ascii=False, indent=2, default=str)


def _auto_fit_columns(ws: Any) -> None:
    for col_cells in ws.columns:
        longest = max((len(str(c.value)) for c in col_cells if c.value is not None), default=0)
        ws.column_dimensions[get_column_letter(col_cells[0].column)].width = min(max(longest + 4, 10), 40)


def export_users_xlsx(rows: Iterable[dict[str, Any]]) -> bytes:
    """One sheet: title, generation time, header row, one row per user"""
    rows = list(rows)
    wb = Workbook()
    ws = wb.active
    ws.title = "Bot users"

    ws.cell(row=1, column=1, value="SQUARE bot users").font = _TITLE_FONT
    ws.cell(
        row=2,
        column=1,
        value=f"Users: {len(rows)} | Generated: {datetime.now().strftime('%Y-%m-%d %H:%M')}",
    ).font = _SUBTITLE_FONT

    header_row = 4
    for col, header in enumerate(USER_EXPORT_COLUMNS, 1):
        cell = ws.cell(row=header_row, column=col, value=header)
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.border = _THIN_BORDER
        cell.alignment = _LEFT_ALIGN

    for offset, row in enumerate(rows, 1):
        for col, key in enumerate(USER_EXPORT_COLUMNS, 1):
            cell = ws.cell(row=header_row + offset, column=col, value=_sanitize_text(row.get(key)))
            cell.border = _THIN_BORDER
            cell.alignment = _LEFT_ALIGN

    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)
    _auto_fit_columns(ws)

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def export_users(users: Iterable[BotUser], fmt: ExportFormat) -> tuple[bytes, str, str]:
    """Returns (content, media type, file name)"""
    rows = [user_to_row(u) for u in users]
    if fmt == ExportFormat.JSON:
        return export_users_json(rows).encode("utf-8"), "application/json", "bot_users.json"
    if fmt == ExportFormat.XLSX:
        return (
            export_users_xlsx(rows),
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "bot_users.xlsx",
        )
    return export_users_csv(rows).encode("utf-8"), "text/csv; charset=utf-8", "bot_users.csv"
