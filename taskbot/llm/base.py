"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from taskbot.models import LLMResponse


class LLMProviderError(RuntimeError):
    """Provider answered, but the turn failed."""


class LLMProvider(ABC):
    """Abstract model provider used by the orchestrator."""

    @abstractmethod
    async def create_turn(
        self,
        input: str,
        instructions: str,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str = "auto",
        previous_response_id: str | None = None,
    ) -> LLMResponse:
        """Run one independent model turn."""

    async def transcribe(self, audio: bytes, filename: str = "voice_message.ogg") -> str:
        """Speech to text. Providers without transcription return an empty string."""

        return ""
