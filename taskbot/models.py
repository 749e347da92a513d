"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(slots=True)
class InboundUnit:
    """One Telegram update normalized by the adapter."""

    chat_id: int
    user_id: int
    message_id: int
    timestamp: datetime
    text: str = ""
    file_ids: list[str] = field(default_factory=list)
    voice_file_id: str | None = None
    media_group_id: str | None = None
    callback_data: str | None = None
    callback_id: str | None = None
    username: str | None = None
    first_name: str | None = None

    @property
    def is_part_of_media_group(self) -> bool:
        return bool(self.media_group_id)


@dataclass(slots=True)
class UserRef:
    """Registered bot user."""

    user_id: int
    chat_id: int
    display_name: str = ""
    is_active: bool = True


@dataclass(slots=True)
class ConversationContext:
    """Provider-side conversation handle cached per user."""

    context_id: str | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class LLMToolCall:
    """Tool invocation returned by an LLM provider."""

    name: str
    arguments: dict[str, Any]
    call_id: str | None = None


@dataclass(slots=True)
class LLMResponse:
    """Result from one provider turn."""

    content: str
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    status: str = "completed"
    response_id: str | None = None
    raw: dict[str, Any] | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class ToolErrorKind(str, Enum):
    """Why a tool call did not succeed."""

    UNKNOWN_TOOL = "unknown_tool"
    MISSING_FIELD = "missing_field"
    INVALID_ARGUMENTS = "invalid_arguments"
    NOT_CONFIGURED = "not_configured"
    BACKEND = "backend"


@dataclass(slots=True)
class ToolResult:
    """Outcome of a single tool execution."""

    name: str
    success: bool
    call_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_kind: ToolErrorKind | None = None

    @classmethod
    def ok(cls, name: str, payload: dict[str, Any], call_id: str | None = None) -> ToolResult:
        return cls(name=name, success=True, call_id=call_id, payload=payload)

    @classmethod
    def fail(
        cls,
        name: str,
        kind: ToolErrorKind,
        error: str,
        call_id: str | None = None,
    ) -> ToolResult:
        return cls(name=name, success=False, call_id=call_id, error=error, error_kind=kind)

    def summary(self) -> str:
        """Human-readable one-liner fed back to the model."""

        if self.success:
            return f"{self.name}: успешно"
        return f"{self.name}: ошибка: {self.error}"


@dataclass(slots=True)
class Executor:
    """Approved task executor from the executors sheet."""

    name: str
    short_code: str
    tg_username: str = ""
