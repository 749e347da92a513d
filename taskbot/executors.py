"""Directory of approved task executors."""

from __future__ import annotations

import logging
import time
from typing import Callable

from taskbot.models import Executor
from taskbot.sheets import GoogleSheetsClient
from taskbot.state import TTLStore

LOGGER = logging.getLogger(__name__)

APPROVED_MARK = "Подтверждаю"
_CACHE_KEY = "approved_executors"
_CACHE_TTL_SECONDS = 3600

# Executors sheet columns.
_CODE_COLUMN = 3
_TELEGRAM_COLUMN = 5
_APPROVAL_COLUMN = 6


class ExecutorDirectory:
    """Approved executors read from a sheet, cached for an hour.

    Without an executors sheet the directory is the fixed list of fallback
    codes from configuration.
    """

    def __init__(
        self,
        sheets: GoogleSheetsClient | None,
        spreadsheet_id: str = "",
        range_: str = "A:H",
        fallback_codes: list[str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sheets = sheets
        self._spreadsheet_id = spreadsheet_id
        self._range = range_
        self._fallback = [Executor(name=code, short_code=code) for code in fallback_codes or []]
        self._cache: TTLStore[list[Executor]] = TTLStore(clock=clock)

    async def get_executors(self) -> list[Executor]:
        if self._sheets is None or not self._spreadsheet_id:
            return list(self._fallback)

        async with self._cache.lock(_CACHE_KEY):
            cached = self._cache.get(_CACHE_KEY)
            if cached is not None:
                return cached
            executors = await self._fetch(self._sheets)
            self._cache.put(_CACHE_KEY, executors, _CACHE_TTL_SECONDS)
            return executors

    async def codes(self) -> list[str]:
        return [executor.short_code for executor in await self.get_executors()]

    def refresh(self) -> None:
        """Drop the cached list so the next read goes to the sheet."""

        self._cache.delete(_CACHE_KEY)

    async def _fetch(self, sheets: GoogleSheetsClient) -> list[Executor]:
        rows = await sheets.read_values(self._spreadsheet_id, self._range)
        executors = parse_executor_rows(rows)
        LOGGER.info("Fetched %d approved executors from %s", len(executors), self._spreadsheet_id)
        return executors


def parse_executor_rows(rows: list[list[str]]) -> list[Executor]:
    """Approved rows of the executors sheet; the first row is a header."""

    executors: list[Executor] = []
    for row in rows[1:]:
        if len(row) <= _APPROVAL_COLUMN:
            continue
        if row[_APPROVAL_COLUMN].strip() != APPROVED_MARK:
            continue
        code = row[_CODE_COLUMN].strip()
        telegram = row[_TELEGRAM_COLUMN].strip()
        if code and telegram:
            executors.append(Executor(name=code, short_code=code, tg_username=telegram))
    return executors


def format_directory(executors: list[Executor]) -> str:
    """Executor list as it appears in the system prompt."""

    if not executors:
        return "(список исполнителей пуст)"
    lines = []
    for executor in executors:
        line = f"- {executor.short_code}"
        if executor.name != executor.short_code:
            line += f" ({executor.name})"
        if executor.tg_username:
            line += f", {executor.tg_username}"
        lines.append(line)
    return "\n".join(lines)
