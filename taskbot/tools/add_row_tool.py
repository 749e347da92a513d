"""Task creation tool: one spreadsheet row per task."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from taskbot.executors import ExecutorDirectory
from taskbot.models import ToolErrorKind, ToolResult
from taskbot.sheets import GoogleSheetsClient
from taskbot.tools.base import Tool

LOGGER = logging.getLogger(__name__)

ADD_ROW_TOOL_NAME = "add_row_to_sheets"
TASK_CREATED_ACK = "💼 Задача поставлена 🔔 Ответственный уведомлен"

PRIORITIES = ["Высокий", "Средний", "Низкий"]
VERIFICATION_CHOICES = ["Да", "Нет"]
DEFAULT_VERIFICATION = "Нет"

REQUIRED_FIELDS = [
    "task_title",
    "task_description",
    "expected_result",
    "priority",
    "task_type",
    "executor",
    "sender_name",
    "requires_verification",
]
FILE_LINK_FIELDS = ["file_link_1", "file_link_2", "file_link_3"]

ROW_WIDTH = 30
# Status, deadline, comments and the rest of the workflow are filled in the sheet.
_WORKFLOW_COLUMNS = 17


def build_parameters_schema(executor_codes: list[str]) -> dict[str, Any]:
    executor: dict[str, Any] = {
        "type": "string",
        "description": "Код Исполнителя задачи (выбери подходящего из списка), например ИТ ВУ",
    }
    if executor_codes:
        executor["enum"] = list(executor_codes)

    properties: dict[str, Any] = {
        "task_title": {"type": "string", "description": "Краткое название задачи"},
        "task_description": {"type": "string", "description": "Подробное описание задачи"},
        "expected_result": {"type": "string", "description": "Ожидаемый конечный результат"},
        "priority": {"type": "string", "enum": PRIORITIES, "description": "Приоритет задачи"},
        "task_type": {
            "type": "string",
            "description": "Тип задачи (например: Разработка, Настройка, Исправление, Анализ и т.д.)",
        },
        "executor": executor,
        "sender_name": {
            "type": "string",
            "description": "Код Отправителя задачи (выбери подходящего из списка), например ГД НТ",
        },
    }
    for index, field in enumerate(FILE_LINK_FIELDS, start=1):
        properties[field] = {
            "type": "string",
            "description": f"Ссылка на файл №{index} от отправителя (опционально)",
        }
    properties["requires_verification"] = {
        "type": "string",
        "enum": VERIFICATION_CHOICES,
        "default": DEFAULT_VERIFICATION,
        "description": (
            "Требуется ли проверка задачи постановщиком перед приемкой. "
            'По умолчанию "Нет" (автоприемка). "Да" - только если явно указано требование проверки'
        ),
    }
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": properties,
        "required": list(REQUIRED_FIELDS),
    }


def build_row(arguments: dict[str, Any], task_id: str, created_at: str) -> list[str]:
    """Positional row in the task sheet's column order."""

    return [
        task_id,
        created_at,
        arguments["sender_name"],
        arguments["executor"],
        arguments["task_type"],
        arguments["task_title"],
        arguments["task_description"],
        arguments["expected_result"],
        arguments["priority"],
        *(arguments.get(field) or "" for field in FILE_LINK_FIELDS),
        *([""] * _WORKFLOW_COLUMNS),
        arguments.get("requires_verification") or DEFAULT_VERIFICATION,
    ]


def _new_task_id() -> str:
    return uuid.uuid4().hex[:8].upper()


class AddRowToSheetsTool(Tool):
    """Appends a task described by the model to the tasks spreadsheet."""

    name = ADD_ROW_TOOL_NAME
    description = "Добавляет новую строку в указанную Google Sheets таблицу с данными задачи"

    def __init__(
        self,
        sheets: GoogleSheetsClient,
        spreadsheet_id: str,
        range_: str = "A:Z",
        executors: ExecutorDirectory | None = None,
        timezone: str = "Europe/Moscow",
        id_factory: Callable[[], str] = _new_task_id,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._sheets = sheets
        self._spreadsheet_id = spreadsheet_id
        self._range = range_
        self._executors = executors
        self._tz = ZoneInfo(timezone)
        self._id_factory = id_factory
        self._now = now or (lambda: datetime.now(self._tz))
        self._executor_codes: list[str] = []

    @property
    def parameters_schema(self) -> dict[str, Any]:  # type: ignore[override]
        return build_parameters_schema(self._executor_codes)

    async def prepare(self) -> None:
        if self._executors is not None:
            self._executor_codes = await self._executors.codes()

    async def run(self, **kwargs: Any) -> ToolResult:
        if not self._spreadsheet_id:
            return ToolResult.fail(self.name, ToolErrorKind.NOT_CONFIGURED, "Не настроен ID таблицы Google Sheets")

        task_id = self._id_factory()
        created_at = self._now().strftime("%Y-%m-%d %H:%M:%S")
        row = build_row(kwargs, task_id=task_id, created_at=created_at)

        result = await self._sheets.append_row(self._spreadsheet_id, self._range, row)
        if not result.success:
            LOGGER.error("Failed to add task %r: %s", kwargs.get("task_title"), result.error_message)
            return ToolResult.fail(
                self.name,
                ToolErrorKind.BACKEND,
                result.error_message or "Google Sheets API request failed",
            )

        LOGGER.info("Added task %s %r (updated_cells=%d)", task_id, kwargs["task_title"], result.updated_cells)
        return ToolResult.ok(
            self.name,
            {
                "message": TASK_CREATED_ACK,
                "task_id": task_id,
                "updated_cells": result.updated_cells,
                "spreadsheet_id": self._spreadsheet_id,
            },
        )
