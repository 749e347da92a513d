"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging

from taskbot.bot import TaskBot
from taskbot.commands import CommandDispatcher
from taskbot.config import executor_codes, load_settings
from taskbot.context import ConversationContextStore
from taskbot.db import Database
from taskbot.executors import ExecutorDirectory
from taskbot.llm.openai_responses import OpenAIResponsesProvider
from taskbot.media_group import MediaGroupBuffer
from taskbot.orchestrator import ConversationOrchestrator
from taskbot.scheduler import MediaGroupSweeper
from taskbot.sheets import GoogleSheetsClient, static_token
from taskbot.telegram_adapter import TelegramAdapter
from taskbot.tools.add_row_tool import AddRowToSheetsTool
from taskbot.tools.catalog import ToolCatalog
from taskbot.tools.executor import ToolExecutor

logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger(__name__)


async def run() -> None:
    """Initialize app layers and start processing loop."""

    settings = load_settings()

    db = Database(settings.database_path)
    db.initialize()

    provider = OpenAIResponsesProvider(settings)
    sheets = GoogleSheetsClient(static_token(settings.google_sheets_access_token))
    directory = ExecutorDirectory(
        sheets,
        spreadsheet_id=settings.executors_spreadsheet_id,
        range_=settings.executors_range,
        fallback_codes=executor_codes(settings),
    )

    catalog = ToolCatalog()
    catalog.register(
        AddRowToSheetsTool(
            sheets,
            spreadsheet_id=settings.google_sheets_spreadsheet_id,
            range_=settings.google_sheets_default_range,
            executors=directory,
            timezone=settings.user_timezone,
        )
    )

    contexts = ConversationContextStore(db, ttl_seconds=settings.context_ttl_seconds)
    orchestrator = ConversationOrchestrator(
        llm=provider,
        catalog=catalog,
        executor=ToolExecutor(catalog, db),
        contexts=contexts,
        executors=directory,
        max_iterations=settings.max_iterations,
        request_timeout_seconds=settings.request_timeout_seconds,
        chain_tool_turns=settings.chain_tool_turns,
        user_timezone=settings.user_timezone,
    )

    adapter = TelegramAdapter(
        bot_token=settings.telegram_bot_token,
        base_url=settings.telegram_base_url,
        poll_timeout_seconds=settings.telegram_poll_timeout_seconds,
        files_dir=settings.files_dir,
        public_files_base_url=settings.public_files_base_url,
    )
    buffer = MediaGroupBuffer(
        window_seconds=settings.media_group_window_seconds,
        max_items=settings.media_group_max_items,
    )
    bot = TaskBot(
        db=db,
        adapter=adapter,
        buffer=buffer,
        dispatcher=CommandDispatcher(contexts),
        orchestrator=orchestrator,
        llm=provider,
    )

    sweeper = MediaGroupSweeper(
        buffer,
        handler=bot.handle_group,
        poll_interval_seconds=settings.media_group_sweep_interval_seconds,
    )
    sweeper_task = asyncio.create_task(sweeper.run_forever(), name="media-group-sweeper")

    in_flight: set[asyncio.Task[None]] = set()

    def _done(task: asyncio.Task[None]) -> None:
        in_flight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("Update handling failed", exc_info=task.exception())

    try:
        async for unit in adapter.poll_units():
            # Concurrent: album members keep arriving while earlier turns run.
            task = asyncio.create_task(bot.handle_unit(unit))
            in_flight.add(task)
            task.add_done_callback(_done)
    finally:
        sweeper.stop()
        sweeper_task.cancel()
        for task in in_flight:
            task.cancel()
        LOGGER.info("Bot shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
