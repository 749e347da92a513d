"""OpenAI Responses API implementation of LLMProvider."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from taskbot.config import Settings
from taskbot.llm.base import LLMProvider, LLMProviderError
from taskbot.models import LLMResponse, LLMToolCall

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [5, 15, 45]


class OpenAIResponsesProvider(LLMProvider):
    """LLM provider using the ``/responses`` and ``/audio/transcriptions`` endpoints."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._settings.openai_api_key}"}

    async def create_turn(
        self,
        input: str,
        instructions: str,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str = "auto",
        previous_response_id: str | None = None,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": self._settings.openai_model,
            "input": input,
            "instructions": instructions,
            "max_output_tokens": self._settings.openai_max_output_tokens,
            "temperature": self._settings.openai_temperature,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = tool_choice
        if previous_response_id:
            payload["previous_response_id"] = previous_response_id

        timeout = httpx.Timeout(self._settings.request_timeout_seconds)
        async with httpx.AsyncClient(base_url=self._settings.openai_base_url, timeout=timeout) as client:
            for attempt in range(_MAX_RETRIES + 1):
                response = await client.post("/responses", headers=self._headers(), json=payload)
                if response.status_code == 429 and attempt < _MAX_RETRIES:
                    wait = _RETRY_BACKOFF_SECONDS[attempt]
                    _LOGGER.warning(
                        "OpenAI rate limited (429), retrying in %ds (attempt %d/%d)",
                        wait,
                        attempt + 1,
                        _MAX_RETRIES,
                    )
                    await asyncio.sleep(wait)
                    continue
                response.raise_for_status()
                break
            data = response.json()

        return parse_response(data)

    async def transcribe(self, audio: bytes, filename: str = "voice_message.ogg") -> str:
        form = {"model": self._settings.transcription_model, "response_format": "json"}
        if self._settings.transcription_language:
            form["language"] = self._settings.transcription_language

        async with httpx.AsyncClient(base_url=self._settings.openai_base_url, timeout=httpx.Timeout(60.0)) as client:
            response = await client.post(
                "/audio/transcriptions",
                headers=self._headers(),
                data=form,
                files={"file": (filename, audio)},
            )
            response.raise_for_status()
            data = response.json()

        text = str(data.get("text") or "").strip()
        _LOGGER.info("Transcribed %d bytes of audio into %d characters", len(audio), len(text))
        return text


def parse_response(data: dict[str, Any]) -> LLMResponse:
    """Map a Responses API payload onto LLMResponse."""

    status = str(data.get("status") or "completed")
    if status == "failed" or data.get("error"):
        raise LLMProviderError(f"Model turn failed: {data.get('error')}")

    content = ""
    tool_calls: list[LLMToolCall] = []
    for item in data.get("output") or []:
        item_type = item.get("type")
        if item_type == "message" and not content:
            for part in item.get("content") or []:
                if part.get("type") == "output_text":
                    content = part.get("text") or ""
                    break
        elif item_type == "function_call":
            tool_calls.append(
                LLMToolCall(
                    name=item.get("name", ""),
                    arguments=normalize_arguments(item.get("arguments")),
                    call_id=item.get("call_id") or item.get("id"),
                )
            )

    _LOGGER.info(
        "LLM response: id=%r status=%r content=%r tool_calls=%r",
        data.get("id"),
        status,
        content[:200],
        [tc.name for tc in tool_calls],
    )
    return LLMResponse(
        content=content,
        tool_calls=tool_calls,
        status=status,
        response_id=data.get("id"),
        raw=data,
    )


def normalize_arguments(raw: Any) -> dict[str, Any]:
    """Tool arguments arrive either structured or as a JSON-encoded string."""

    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}
