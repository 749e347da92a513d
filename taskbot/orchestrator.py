"""Tool-calling conversation loop."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx

from taskbot.context import ConversationContextStore
from taskbot.executors import ExecutorDirectory, format_directory
from taskbot.llm.base import LLMProvider, LLMProviderError
from taskbot.models import LLMResponse, ToolResult, UserRef
from taskbot.prompts import TASK_CREATION_PROMPT, build_input, describe_tools, render_prompt
from taskbot.tools.add_row_tool import ADD_ROW_TOOL_NAME, TASK_CREATED_ACK
from taskbot.tools.catalog import ToolCatalog
from taskbot.tools.executor import ToolExecutor

LOGGER = logging.getLogger(__name__)

NEED_CONFIRM_MARKER = "<!-- NEED_CONFIRM -->"
APOLOGY_TEXT = "Произошла ошибка при обработке сообщения. Попробуйте еще раз."
DEGRADED_NOTE = "⚠️ Не удалось завершить обработку запроса автоматически. Попробуйте переформулировать сообщение."

_FENCE_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


class ConversationOrchestrator:
    """Bounded multi-turn loop between the user, the model and the tools."""

    def __init__(
        self,
        llm: LLMProvider,
        catalog: ToolCatalog,
        executor: ToolExecutor,
        contexts: ConversationContextStore,
        executors: ExecutorDirectory | None = None,
        max_iterations: int = 5,
        request_timeout_seconds: float = 120.0,
        chain_tool_turns: bool = False,
        user_timezone: str = "Europe/Moscow",
    ) -> None:
        self._llm = llm
        self._catalog = catalog
        self._executor = executor
        self._contexts = contexts
        self._executors = executors
        self._max_iterations = max_iterations
        self._request_timeout_seconds = request_timeout_seconds
        self._chain_tool_turns = chain_tool_turns
        self._user_timezone = user_timezone

    async def process(self, user_text: str, attachment_refs: list[str], user: UserRef) -> str:
        """Handle one logical user message and return the reply text (not yet rendered)."""

        LOGGER.info(
            "Processing message for user %s (length=%d, attachments=%d)",
            user.user_id,
            len(user_text),
            len(attachment_refs),
        )
        try:
            return await self._run(user_text, attachment_refs, user)
        except (httpx.HTTPError, LLMProviderError, asyncio.TimeoutError, sqlite3.Error, ValueError) as exc:
            LOGGER.error("Failed to process message for user %s: %r", user.user_id, exc)
            return APOLOGY_TEXT

    async def _run(self, user_text: str, attachment_refs: list[str], user: UserRef) -> str:
        await self._catalog.prepare()
        instructions = await self._build_instructions()
        tools = self._catalog.list_tool_specs()

        tool_notes: list[str] = []
        failures: list[ToolResult] = []
        best_text = ""

        for iteration in range(1, self._max_iterations + 1):
            response = await self._turn(build_input(user_text, attachment_refs, tool_notes), instructions, tools, user)
            if response.content:
                best_text = response.content

            if not response.tool_calls:
                LOGGER.info("Turn %d finished without tool calls", iteration)
                return _with_failures(parse_reply(response.content), failures)

            known = [call for call in response.tool_calls if call.name in self._catalog]
            if not known:
                LOGGER.warning(
                    "Turn %d requested only unknown tools: %s",
                    iteration,
                    [call.name for call in response.tool_calls],
                )
                return _degraded(parse_reply(best_text) if best_text else "")

            results = await self._executor.execute_turn(known, user_id=user.user_id)
            if any(result.success and result.name == ADD_ROW_TOOL_NAME for result in results):
                # Row committed; the next message starts from a fresh context.
                await self._contexts.clear(user.user_id)
                return TASK_CREATED_ACK

            failures.extend(results)
            tool_notes.extend(result.summary() for result in results)

        LOGGER.warning(
            "Iteration budget of %d exhausted for user %s",
            self._max_iterations,
            user.user_id,
        )
        text = parse_reply(best_text) if best_text else ""
        return _degraded(_with_failures(text, failures))

    async def _turn(self, input_text: str, instructions: str, tools: list[dict], user: UserRef) -> LLMResponse:
        previous_response_id = None
        if self._chain_tool_turns or not tools:
            previous_response_id = await self._contexts.active_context_id(user.user_id)

        response = await asyncio.wait_for(
            self._llm.create_turn(
                input=input_text,
                instructions=instructions,
                tools=tools,
                tool_choice="auto",
                previous_response_id=previous_response_id,
            ),
            timeout=self._request_timeout_seconds,
        )
        if response.is_completed:
            await self._contexts.save(user.user_id, response.response_id)
        else:
            LOGGER.warning("Model turn ended with status %r", response.status)
        return response

    async def _build_instructions(self) -> str:
        executors = await self._executors.get_executors() if self._executors else []
        return render_prompt(
            TASK_CREATION_PROMPT,
            {
                "current_date": datetime.now(ZoneInfo(self._user_timezone)).strftime("%Y-%m-%d"),
                "user_timezone": self._user_timezone,
                "executors": format_directory(executors),
                "tool_schema": describe_tools(self._catalog.list_tool_specs()),
            },
        )


def parse_reply(text: str) -> str:
    """Unwrap a ``{content, need_confirm}`` envelope; plain text passes through."""

    candidate = text.strip()
    fenced = _FENCE_RE.match(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    if not candidate.startswith("{"):
        return text

    try:
        envelope = json.loads(candidate)
    except json.JSONDecodeError:
        return text
    if not isinstance(envelope, dict) or "content" not in envelope:
        return text

    content = str(envelope.get("content") or "")
    if _is_true(envelope.get("need_confirm")):
        content += NEED_CONFIRM_MARKER
    return content


def _with_failures(text: str, failures: list[ToolResult]) -> str:
    lines = [f"❌ Ошибка при добавлении в таблицу: {result.error}" for result in failures if not result.success]
    if not lines:
        return text
    marker = NEED_CONFIRM_MARKER if text.endswith(NEED_CONFIRM_MARKER) else ""
    body = text[: len(text) - len(marker)] if marker else text
    return "\n\n".join(part for part in [body, *lines] if part) + marker


def _degraded(text: str) -> str:
    return f"{text}\n\n{DEGRADED_NOTE}" if text else DEGRADED_NOTE


def _is_true(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True
