"""Routes inbound units through commands, album batching and the orchestrator."""

from __future__ import annotations

import logging

import httpx

from taskbot.commands import CALLBACK_CONFIRM, INACTIVE_TEXT, CommandDispatcher, confirmation_text
from taskbot.db import Database
from taskbot.llm.base import LLMProvider
from taskbot.media_group import MediaGroupBuffer, collect_file_ids, collect_text
from taskbot.models import InboundUnit, UserRef
from taskbot.orchestrator import APOLOGY_TEXT, ConversationOrchestrator
from taskbot.telegram_adapter import TelegramAdapter, TelegramError

LOGGER = logging.getLogger(__name__)

UNSUPPORTED_TEXT = "Извините, я поддерживаю только текстовые и голосовые сообщения и файлы."
VOICE_NOT_RECOGNIZED_TEXT = "Не удалось распознать текст из голосового сообщения."


class TaskBot:
    """One inbound unit in, at most one reply out."""

    def __init__(
        self,
        db: Database,
        adapter: TelegramAdapter,
        buffer: MediaGroupBuffer,
        dispatcher: CommandDispatcher,
        orchestrator: ConversationOrchestrator,
        llm: LLMProvider,
    ) -> None:
        self._db = db
        self._adapter = adapter
        self._buffer = buffer
        self._dispatcher = dispatcher
        self._orchestrator = orchestrator
        self._llm = llm

    def _user(self, unit: InboundUnit) -> UserRef:
        return self._db.upsert_user(unit.user_id, unit.chat_id, unit.username, unit.first_name)

    async def handle_unit(self, unit: InboundUnit) -> None:
        user = self._user(unit)
        if not user.is_active:
            LOGGER.info("Ignoring message from inactive user %s", user.user_id)
            await self._adapter.send_message(user.chat_id, INACTIVE_TEXT)
            return

        reply = await self._dispatcher.dispatch(unit, user)
        if reply is not None:
            await self._adapter.send_message(user.chat_id, reply)
            return

        if unit.callback_data is not None:
            if unit.callback_data == CALLBACK_CONFIRM:
                reply = await self._orchestrator.process(confirmation_text(unit.text), [], user)
                await self._adapter.send_message(user.chat_id, reply)
            else:
                LOGGER.info("Ignoring unknown callback %r", unit.callback_data)
            return

        units = await self._buffer.add(unit)
        if units is None:
            return
        await self.handle_group(units)

    async def handle_group(self, units: list[InboundUnit]) -> None:
        """Process a complete album (or a single message) as one request."""

        first = units[0]
        user = self._user(first)
        text = collect_text(units)

        voice = next((unit.voice_file_id for unit in units if unit.voice_file_id), None)
        if voice is not None:
            try:
                audio, _ = await self._adapter.download_file(voice)
                transcript = await self._llm.transcribe(audio)
            except (httpx.HTTPError, TelegramError) as exc:
                LOGGER.error("Voice message %s failed: %s", voice, exc)
                await self._adapter.send_message(user.chat_id, APOLOGY_TEXT)
                return
            if not transcript:
                await self._adapter.send_message(user.chat_id, VOICE_NOT_RECOGNIZED_TEXT)
                return
            text = f"{text}\n\n{transcript}".strip()

        attachment_refs: list[str] = []
        for file_id in collect_file_ids(units):
            link = await self._adapter.save_file(file_id)
            if link:
                attachment_refs.append(link)

        if not text and not attachment_refs:
            await self._adapter.send_message(user.chat_id, UNSUPPORTED_TEXT)
            return

        LOGGER.info(
            "Handling %d message(s) from user %s with %d attachment(s)",
            len(units),
            user.user_id,
            len(attachment_refs),
        )
        reply = await self._orchestrator.process(text, attachment_refs, user)
        await self._adapter.send_message(user.chat_id, reply)
