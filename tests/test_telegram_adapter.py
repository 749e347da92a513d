"""Tests for the Telegram Bot API adapter."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from taskbot.commands import CALLBACK_CONFIRM
from taskbot.orchestrator import NEED_CONFIRM_MARKER
from taskbot.telegram_adapter import CONFIRM_KEYBOARD, TelegramAdapter, to_unit


def _mock_response(data: dict) -> MagicMock:
    resp = MagicMock()
    resp.json.return_value = data
    resp.raise_for_status = MagicMock()
    resp.content = b"file-bytes"
    return resp


def _mock_client(**methods: AsyncMock) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    for name, method in methods.items():
        setattr(mock_client, name, method)
    return mock_client


def _message(**overrides) -> dict:
    message = {
        "message_id": 11,
        "date": 1760000000,
        "chat": {"id": 50, "type": "private"},
        "from": {"id": 5, "username": "ivan", "first_name": "Иван"},
        "text": " Сделать отчет ",
    }
    message.update(overrides)
    return {"update_id": 100, "message": message}


class TestToUnit:
    def test_text_message(self):
        unit = to_unit(_message())

        assert unit.chat_id == 50
        assert unit.user_id == 5
        assert unit.message_id == 11
        assert unit.text == "Сделать отчет"
        assert unit.username == "ivan"
        assert unit.file_ids == []
        assert unit.media_group_id is None

    def test_album_photo_uses_largest_size_and_caption(self):
        unit = to_unit(
            _message(
                text=None,
                caption="Фото счета",
                media_group_id="album-7",
                photo=[
                    {"file_id": "small", "file_size": 100, "width": 90},
                    {"file_id": "large", "file_size": 9000, "width": 1280},
                ],
            )
        )

        assert unit.text == "Фото счета"
        assert unit.file_ids == ["large"]
        assert unit.media_group_id == "album-7"
        assert unit.is_part_of_media_group

    def test_document_and_voice(self):
        unit = to_unit(_message(text=None, document={"file_id": "doc-1"}, voice={"file_id": "voice-1"}))

        assert unit.file_ids == ["doc-1"]
        assert unit.voice_file_id == "voice-1"

    def test_group_chat_is_ignored(self):
        assert to_unit(_message(chat={"id": -100, "type": "supergroup"})) is None

    def test_callback_query(self):
        update = {
            "update_id": 101,
            "callback_query": {
                "id": "cb-1",
                "data": CALLBACK_CONFIRM,
                "from": {"id": 5, "username": "ivan"},
                "message": {"message_id": 12, "chat": {"id": 50, "type": "private"}, "text": "Черновик"},
            },
        }

        unit = to_unit(update)

        assert unit.callback_data == CALLBACK_CONFIRM
        assert unit.callback_id == "cb-1"
        assert unit.text == "Черновик"
        assert unit.chat_id == 50

    def test_other_updates_are_ignored(self):
        assert to_unit({"update_id": 1, "edited_message": {}}) is None


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_renders_markdown_v2(self):
        post = AsyncMock(return_value=_mock_response({"ok": True, "result": {}}))
        mock_client = _mock_client(post=post)

        with patch("taskbot.telegram_adapter.httpx.AsyncClient", return_value=mock_client):
            sent = await TelegramAdapter("123:abc").send_message(50, "**Готово.**")

        assert sent is True
        url = post.await_args.args[0]
        payload = post.await_args.kwargs["json"]
        assert url == "https://api.telegram.org/bot123:abc/sendMessage"
        assert payload["text"] == "*Готово\\.*"
        assert payload["parse_mode"] == "MarkdownV2"
        assert "reply_markup" not in payload

    @pytest.mark.asyncio
    async def test_marker_adds_keyboard_and_is_stripped(self):
        post = AsyncMock(return_value=_mock_response({"ok": True, "result": {}}))
        mock_client = _mock_client(post=post)

        with patch("taskbot.telegram_adapter.httpx.AsyncClient", return_value=mock_client):
            await TelegramAdapter("123:abc").send_message(50, "Черновик" + NEED_CONFIRM_MARKER)

        payload = post.await_args.kwargs["json"]
        assert payload["text"] == "Черновик"
        assert payload["reply_markup"] == CONFIRM_KEYBOARD

    @pytest.mark.asyncio
    async def test_rejected_markdown_falls_back_to_plain_text(self):
        post = AsyncMock(
            side_effect=[
                _mock_response({"ok": False, "description": "can't parse entities"}),
                _mock_response({"ok": True, "result": {}}),
            ]
        )
        mock_client = _mock_client(post=post)

        with patch("taskbot.telegram_adapter.httpx.AsyncClient", return_value=mock_client):
            sent = await TelegramAdapter("123:abc").send_message(50, "a_b")

        assert sent is True
        retry = post.await_args_list[1].kwargs["json"]
        assert retry["text"] == "a_b"
        assert "parse_mode" not in retry

    @pytest.mark.asyncio
    async def test_network_failure_returns_false(self):
        post = AsyncMock(side_effect=httpx.ConnectError("down"))
        mock_client = _mock_client(post=post)

        with patch("taskbot.telegram_adapter.httpx.AsyncClient", return_value=mock_client):
            assert await TelegramAdapter("123:abc").send_message(50, "hi") is False


class TestFiles:
    @pytest.mark.asyncio
    async def test_save_file_returns_public_link(self, tmp_path):
        post = AsyncMock(return_value=_mock_response({"ok": True, "result": {"file_path": "photos/file_1.jpg"}}))
        get = AsyncMock(return_value=_mock_response({}))
        mock_client = _mock_client(post=post, get=get)

        with patch("taskbot.telegram_adapter.httpx.AsyncClient", return_value=mock_client):
            adapter = TelegramAdapter(
                "123:abc",
                files_dir=tmp_path,
                public_files_base_url="https://files.example.com/tg/",
            )
            link = await adapter.save_file("photo-1")

        assert link.startswith("https://files.example.com/tg/")
        assert link.endswith("_file_1.jpg")
        assert get.await_args.args[0] == "https://api.telegram.org/file/bot123:abc/photos/file_1.jpg"
        saved = list(tmp_path.iterdir())
        assert len(saved) == 1
        assert saved[0].read_bytes() == b"file-bytes"

    @pytest.mark.asyncio
    async def test_save_file_without_storage_returns_none(self):
        assert await TelegramAdapter("123:abc").save_file("photo-1") is None

    @pytest.mark.asyncio
    async def test_failed_download_returns_none(self, tmp_path):
        post = AsyncMock(return_value=_mock_response({"ok": False, "description": "file is too big"}))
        mock_client = _mock_client(post=post)

        with patch("taskbot.telegram_adapter.httpx.AsyncClient", return_value=mock_client):
            assert await TelegramAdapter("123:abc", files_dir=tmp_path).save_file("big") is None


class TestPolling:
    @pytest.mark.asyncio
    async def test_poll_yields_units_and_advances_offset(self):
        updates = [_message(), {"update_id": 101, "edited_message": {}}]
        post = AsyncMock(return_value=_mock_response({"ok": True, "result": updates}))
        mock_client = _mock_client(post=post)

        with patch("taskbot.telegram_adapter.httpx.AsyncClient", return_value=mock_client):
            adapter = TelegramAdapter("123:abc", poll_timeout_seconds=1)
            stream = adapter.poll_units()
            unit = await stream.__anext__()
            await stream.aclose()

        assert unit.text == "Сделать отчет"
        payload = post.await_args.kwargs["json"]
        assert payload["allowed_updates"] == ["message", "callback_query"]
        assert "offset" not in payload
        assert adapter._offset == 101  # noqa: SLF001
