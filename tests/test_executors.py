from unittest.mock import AsyncMock, MagicMock

import pytest

from taskbot.executors import ExecutorDirectory, format_directory, parse_executor_rows
from taskbot.models import Executor

HEADER = ["Имя", "Должность", "Отдел", "Код", "Email", "Telegram", "Статус", "Примечание"]


def _row(code: str, telegram: str, status: str = "Подтверждаю") -> list[str]:
    return ["Иван", "Инженер", "ИТ", code, "ivan@example.com", telegram, status]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_parse_keeps_only_approved_complete_rows():
    rows = [
        HEADER,
        _row("ИТ ВУ", "@vu"),
        _row("ФД АК", "@ak", status="Ожидает"),
        _row("", "@empty"),
        _row("ГД НТ", ""),
        ["short"],
    ]

    assert parse_executor_rows(rows) == [Executor(name="ИТ ВУ", short_code="ИТ ВУ", tg_username="@vu")]


def test_format_directory():
    text = format_directory([Executor(name="ИТ ВУ", short_code="ИТ ВУ", tg_username="@vu")])
    assert text == "- ИТ ВУ, @vu"
    assert format_directory([]) == "(список исполнителей пуст)"


@pytest.mark.asyncio
async def test_fallback_codes_without_sheet():
    directory = ExecutorDirectory(None, fallback_codes=["ИТ ВУ", "ГД НТ"])
    assert await directory.codes() == ["ИТ ВУ", "ГД НТ"]


@pytest.mark.asyncio
async def test_sheet_is_cached_for_an_hour():
    clock = FakeClock()
    sheets = MagicMock()
    sheets.read_values = AsyncMock(return_value=[HEADER, _row("ИТ ВУ", "@vu")])
    directory = ExecutorDirectory(sheets, spreadsheet_id="exec-sheet", clock=clock)

    assert await directory.codes() == ["ИТ ВУ"]
    clock.now = 3599
    await directory.codes()
    assert sheets.read_values.await_count == 1

    clock.now = 3600
    await directory.codes()
    assert sheets.read_values.await_count == 2


@pytest.mark.asyncio
async def test_refresh_drops_cache():
    sheets = MagicMock()
    sheets.read_values = AsyncMock(return_value=[HEADER])
    directory = ExecutorDirectory(sheets, spreadsheet_id="exec-sheet", clock=FakeClock())

    await directory.get_executors()
    directory.refresh()
    await directory.get_executors()

    assert sheets.read_values.await_count == 2
