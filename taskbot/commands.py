"""Slash commands and inline keyboard callbacks.

Commands bypass the model. An unrecognised command returns None, letting the
message fall through to the orchestrator.
"""

from __future__ import annotations

import logging

from taskbot.context import ConversationContextStore
from taskbot.models import InboundUnit, UserRef

LOGGER = logging.getLogger(__name__)

CALLBACK_CONFIRM = "confirm_yes"
CALLBACK_CANCEL = "task_cancel"
CALLBACK_NEW_TASK = "task_new"

START_TEXT = (
    "Здравствуйте! Опишите задачу текстом или голосом, можно приложить до трех файлов. "
    "Я оформлю ее и передам исполнителю."
)
NEW_TASK_TEXT = "Начнем новую задачу. Опишите ее."
CANCELLED_TEXT = "Задача отменена."
INACTIVE_TEXT = "Доступ к боту не активирован. Обратитесь к администратору."


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split a /-prefixed message into (command, args).

    Returns:
        A (command, args) tuple where command is lowercased and stripped of a
        ``@botname`` suffix, or None if text is not a command.
    """
    text = text.strip()
    if not text.startswith("/"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    command = parts[0].split("@", 1)[0].lower()
    if not command:
        return None
    return command, parts[1:]


def confirmation_text(draft: str) -> str:
    """User turn sent to the model when the draft is confirmed with a button."""

    draft = draft.strip()
    if not draft:
        return "Подтверждаю, отправляй задачу."
    return f"Подтверждаю, отправляй задачу:\n\n{draft}"


class CommandDispatcher:
    """Routes commands and keyboard callbacks that never reach the model."""

    def __init__(self, contexts: ConversationContextStore) -> None:
        self._contexts = contexts

    async def dispatch(self, unit: InboundUnit, user: UserRef) -> str | None:
        """Return a reply for recognised commands, or None for everything else."""

        if unit.callback_data is not None:
            return await self._handle_callback(unit.callback_data, user)

        parsed = parse_command(unit.text)
        if parsed is None:
            return None
        command, args = parsed
        LOGGER.info("Command dispatch: command=%r args=%r", command, args)
        if command == "start":
            return START_TEXT
        if command in ("new", "reset"):
            await self._contexts.clear(user.user_id)
            return NEW_TASK_TEXT
        return None

    async def _handle_callback(self, data: str, user: UserRef) -> str | None:
        LOGGER.info("Callback dispatch: data=%r user=%s", data, user.user_id)
        if data == CALLBACK_CANCEL:
            await self._contexts.clear(user.user_id)
            return CANCELLED_TEXT
        if data == CALLBACK_NEW_TASK:
            await self._contexts.clear(user.user_id)
            return NEW_TASK_TEXT
        return None
