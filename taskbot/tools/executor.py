"""Executes model-requested tool calls."""

from __future__ import annotations

import logging
from typing import Any

from taskbot.db import Database
from taskbot.models import LLMToolCall, ToolErrorKind, ToolResult
from taskbot.tools.catalog import ArgumentError, ToolCatalog, validate_arguments

LOGGER = logging.getLogger(__name__)


class ToolExecutor:
    """Validates arguments, runs the tool and records every execution.

    Nothing here raises for an ordinary failure: unknown tools, missing fields
    and backend errors all come back as a failed ToolResult.
    """

    def __init__(self, catalog: ToolCatalog, db: Database | None = None) -> None:
        self._catalog = catalog
        self._db = db

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        call_id: str | None = None,
        user_id: int | None = None,
    ) -> ToolResult:
        tool = self._catalog.get(name)
        if tool is None:
            result = ToolResult.fail(name, ToolErrorKind.UNKNOWN_TOOL, f"Неизвестный инструмент: {name}", call_id)
            self._log(user_id, name, arguments, result)
            return result

        try:
            validated = validate_arguments(tool.parameters_schema, arguments)
        except ArgumentError as exc:
            kind = ToolErrorKind.MISSING_FIELD if exc.missing else ToolErrorKind.INVALID_ARGUMENTS
            result = ToolResult.fail(name, kind, str(exc), call_id)
            LOGGER.warning("Rejected %s call %s: %s", name, call_id, exc)
            self._log(user_id, name, arguments, result)
            return result

        try:
            result = await tool.run(**validated)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Tool %s raised", name)
            result = ToolResult.fail(name, ToolErrorKind.BACKEND, f"Произошла ошибка при выполнении: {exc}")

        result.call_id = call_id
        self._log(user_id, name, validated, result)
        return result

    async def execute_turn(self, calls: list[LLMToolCall], user_id: int | None = None) -> list[ToolResult]:
        """Run the calls of one turn, each distinct call id at most once."""

        results: list[ToolResult] = []
        seen: set[str] = set()
        for call in calls:
            if call.call_id is not None:
                if call.call_id in seen:
                    LOGGER.warning("Skipping duplicate tool call %s (%s)", call.call_id, call.name)
                    continue
                seen.add(call.call_id)
            results.append(await self.execute(call.name, call.arguments, call.call_id, user_id))
        return results

    def _log(self, user_id: int | None, name: str, arguments: dict[str, Any], result: ToolResult) -> None:
        LOGGER.info("Tool call %s (%s) success=%s", name, result.call_id, result.success)
        if self._db is None or user_id is None:
            return
        if result.success:
            output: dict[str, Any] = result.payload
        else:
            output = {"error": result.error, "kind": result.error_kind.value if result.error_kind else None}
        self._db.log_tool_execution(user_id, name, arguments, output, result.success, call_id=result.call_id)
