"""
Tests for bot user exports
"""
import csv
import io
import json
from datetime import datetime

import pytest
from openpyxl import load_workbook

from app.db.models.bot_user import BotUser
from app.domain.services.export_service import (
    USER_EXPORT_COLUMNS,
    ExportFormat,
    _sanitize_text,
    export_users,
    export_users_csv,
    user_to_row,
)


@pytest.fixture
def users() -> list[BotUser]:
    moment = datetime(2026, 3, 1, 12, 30)
    return [
        BotUser(
            telegram_id="111",
            username="anna",
            first_name="Анна",
            last_name=None,
            registration_date=moment,
            last_activity=moment,
            total_calculations=4,
            total_orders=1,
            is_subscribed=True,
        ),
        BotUser(
            telegram_id="222",
            username=None,
            first_name="=HYPERLINK(\"http://evil\")",
            last_name="-1+1",
            registration_date=moment,
            last_activity=moment,
            total_calculations=0,
            total_orders=0,
            is_subscribed=False,
        ),
    ]


class TestSanitizeText:

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("=SUM(A1:A10)", "'=SUM(A1:A10)"),
            ("+cmd|'/C calc'!A0", "'+cmd|'/C calc'!A0"),
            ("-1+1", "'-1+1"),
            ("@SUM(A1)", "'@SUM(A1)"),
            ("\t=cmd", "'\t=cmd"),
        ],
    )
    def test_formula_prefixes_are_quoted(self, value, expected):
        assert _sanitize_text(value) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["Иван Петров", "", 123, None, True])
    def test_other_values_unchanged(self, value):
        assert _sanitize_text(value) == value


class TestUserExports:

    @pytest.mark.unit
    def test_row_shape(self, users):
        row = user_to_row(users[0])

        assert tuple(row) == USER_EXPORT_COLUMNS
        assert row["registration_date"] == "2026-03-01T12:30:00"

    @pytest.mark.unit
    def test_csv(self, users):
        content, media_type, filename = export_users(users, ExportFormat.CSV)

        assert media_type.startswith("text/csv")
        assert filename == "bot_users.csv"
        rows = list(csv.DictReader(io.StringIO(content.decode("utf-8"))))
        assert [r["telegram_id"] for r in rows] == ["111", "222"]
        assert rows[0]["first_name"] == "Анна"
        assert rows[1]["first_name"].startswith("'=")
        assert rows[1]["last_name"] == "'-1+1"

    @pytest.mark.unit
    def test_csv_header_only_when_empty(self):
        assert export_users_csv([]).strip() == ",".join(USER_EXPORT_COLUMNS)

    @pytest.mark.unit
    def test_json_keeps_raw_values(self, users):
        content, media_type, filename = export_users(users, ExportFormat.JSON)

        data = json.loads(content)
        assert media_type == "application/json"
        assert filename == "bot_users.json"
        assert data[1]["first_name"] == "=HYPERLINK(\"http://evil\")"
        assert data[0]["is_subscribed"] is True

    @pytest.mark.unit
    def test_xlsx(self, users):
        content, media_type, filename = export_users(users, ExportFormat.XLSX)

        assert filename == "bot_users.xlsx"
        assert "spreadsheetml" in media_type
        ws = load_workbook(io.BytesIO(content)).active
        assert ws.title == "Bot users"
        assert ws.cell(row=1, column=1).value == "SQUARE bot users"
        assert [ws.cell(row=4, column=c).value for c in range(1, len(USER_EXPORT_COLUMNS) + 1)] == list(
            USER_EXPORT_COLUMNS
        )
        assert ws.cell(row=5, column=1).value == "111"
        assert ws.cell(row=6, column=3).value.startswith("'=")
        assert ws.freeze_panes == "A5"
