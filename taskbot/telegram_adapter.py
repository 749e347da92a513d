"""Telegram Bot API adapter."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, AsyncIterator

import httpx

from taskbot.commands import CALLBACK_CANCEL, CALLBACK_CONFIRM, CALLBACK_NEW_TASK
from taskbot.models import InboundUnit
from taskbot.orchestrator import NEED_CONFIRM_MARKER
from taskbot.render import TELEGRAM_LIMIT, render_markdown_v2

LOGGER = logging.getLogger(__name__)

CONFIRM_KEYBOARD = {
    "inline_keyboard": [
        [
            {"text": "Отмена", "callback_data": CALLBACK_CANCEL},
            {"text": "Новая задача", "callback_data": CALLBACK_NEW_TASK},
            {"text": "Отправить", "callback_data": CALLBACK_CONFIRM},
        ]
    ]
}


class TelegramError(RuntimeError):
    """Bot API answered with ``ok: false``."""


class TelegramAdapter:
    """Long-polling client around the Bot API JSON methods."""

    def __init__(
        self,
        bot_token: str,
        base_url: str = "https://api.telegram.org",
        poll_timeout_seconds: int = 30,
        files_dir: Path | None = None,
        public_files_base_url: str = "",
    ) -> None:
        self._bot_token = bot_token
        self._base_url = base_url.rstrip("/")
        self._poll_timeout_seconds = poll_timeout_seconds
        self._files_dir = files_dir
        self._public_files_base_url = public_files_base_url.rstrip("/")
        self._offset: int | None = None

    def _api_url(self, method: str) -> str:
        return f"{self._base_url}/bot{self._bot_token}/{method}"

    async def _call(self, method: str, payload: dict[str, Any], timeout: float = 30.0) -> Any:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(self._api_url(method), json=payload)
            response.raise_for_status()
            data = response.json()
        if not data.get("ok"):
            raise TelegramError(f"{method} failed: {data.get('description')}")
        return data.get("result")

    async def poll_units(self) -> AsyncIterator[InboundUnit]:
        """Long-poll getUpdates and yield normalized units."""

        while True:
            payload: dict[str, Any] = {
                "timeout": self._poll_timeout_seconds,
                "allowed_updates": ["message", "callback_query"],
            }
            if self._offset is not None:
                payload["offset"] = self._offset
            try:
                updates = await self._call("getUpdates", payload, timeout=self._poll_timeout_seconds + 10)
            except (httpx.HTTPError, TelegramError) as exc:
                LOGGER.warning("getUpdates failed: %s", exc)
                await asyncio.sleep(2)
                continue

            for update in updates or []:
                self._offset = int(update["update_id"]) + 1
                unit = to_unit(update)
                if unit is None:
                    continue
                if unit.callback_id:
                    await self.answer_callback(unit.callback_id)
                yield unit

    async def send_message(self, chat_id: int, text: str) -> bool:
        """Render and send a reply; a confirmation marker selects the keyboard path."""

        needs_confirm = NEED_CONFIRM_MARKER in text
        text = text.replace(NEED_CONFIRM_MARKER, "").rstrip()
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": render_markdown_v2(text),
            "parse_mode": "MarkdownV2",
        }
        if needs_confirm:
            payload["reply_markup"] = CONFIRM_KEYBOARD

        try:
            await self._call("sendMessage", payload)
        except (httpx.HTTPStatusError, TelegramError) as exc:
            LOGGER.warning("MarkdownV2 send to %s rejected (%s), retrying as plain text", chat_id, exc)
            payload["text"] = text[:TELEGRAM_LIMIT]
            payload.pop("parse_mode")
            try:
                await self._call("sendMessage", payload)
            except (httpx.HTTPError, TelegramError) as retry_exc:
                LOGGER.error("Failed to send message to %s: %s", chat_id, retry_exc)
                return False
        except httpx.HTTPError as exc:
            LOGGER.error("Failed to send message to %s: %s", chat_id, exc)
            return False

        LOGGER.info("Telegram message sent to %s (confirm=%s)", chat_id, needs_confirm)
        return True

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None:
        payload: dict[str, Any] = {"callback_query_id": callback_id}
        if text is not None:
            payload["text"] = text
        try:
            await self._call("answerCallbackQuery", payload)
        except (httpx.HTTPError, TelegramError) as exc:
            LOGGER.warning("answerCallbackQuery %s failed: %s", callback_id, exc)

    async def download_file(self, file_id: str) -> tuple[bytes, str]:
        """Return (content, telegram file path) for a file id."""

        info = await self._call("getFile", {"file_id": file_id})
        file_path = str(info["file_path"])
        async with httpx.AsyncClient(timeout=60.0) as client:
            response = await client.get(f"{self._base_url}/file/bot{self._bot_token}/{file_path}")
            response.raise_for_status()
            return response.content, file_path

    async def save_file(self, file_id: str) -> str | None:
        """Store a file locally and return the link handed to the model."""

        if self._files_dir is None:
            return None
        try:
            content, file_path = await self.download_file(file_id)
        except (httpx.HTTPError, TelegramError, KeyError) as exc:
            LOGGER.error("Failed to download file %s: %s", file_id, exc)
            return None

        name = f"{uuid.uuid4().hex[:12]}_{PurePosixPath(file_path).name}"
        self._files_dir.mkdir(parents=True, exist_ok=True)
        (self._files_dir / name).write_bytes(content)
        LOGGER.info("Saved file %s as %s (%d bytes)", file_id, name, len(content))

        if self._public_files_base_url:
            return f"{self._public_files_base_url}/{name}"
        return str(self._files_dir / name)


def _largest_photo(photos: list[dict[str, Any]]) -> str | None:
    if not photos:
        return None
    best = max(photos, key=lambda photo: (photo.get("file_size") or 0, photo.get("width") or 0))
    return best.get("file_id")


def to_unit(update: dict[str, Any]) -> InboundUnit | None:
    """Normalize a private-chat message or callback query; ignore everything else."""

    callback = update.get("callback_query")
    if isinstance(callback, dict):
        message = callback.get("message") or {}
        sender = callback.get("from") or {}
        chat = message.get("chat") or {}
        if chat.get("type", "private") != "private" or "id" not in sender:
            return None
        return InboundUnit(
            chat_id=int(chat.get("id", sender["id"])),
            user_id=int(sender["id"]),
            message_id=int(message.get("message_id") or 0),
            timestamp=datetime.now(timezone.utc),
            text=str(message.get("text") or ""),
            callback_data=str(callback.get("data") or ""),
            callback_id=str(callback.get("id") or ""),
            username=sender.get("username"),
            first_name=sender.get("first_name"),
        )

    message = update.get("message")
    if not isinstance(message, dict):
        return None
    chat = message.get("chat") or {}
    sender = message.get("from") or {}
    if chat.get("type") != "private":
        LOGGER.info("Ignoring non-private chat message from chat %s", chat.get("id"))
        return None
    if "id" not in sender:
        return None

    file_ids = [
        file_id
        for file_id in (
            _largest_photo(message.get("photo") or []),
            (message.get("document") or {}).get("file_id"),
        )
        if file_id
    ]
    return InboundUnit(
        chat_id=int(chat["id"]),
        user_id=int(sender["id"]),
        message_id=int(message.get("message_id") or 0),
        timestamp=datetime.fromtimestamp(int(message.get("date") or 0), tz=timezone.utc),
        text=str(message.get("text") or message.get("caption") or "").strip(),
        file_ids=file_ids,
        voice_file_id=(message.get("voice") or {}).get("file_id"),
        media_group_id=message.get("media_group_id"),
        username=sender.get("username"),
        first_name=sender.get("first_name"),
    )
