"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from taskbot.models import ToolResult


class Tool(ABC):
    """Base class for all model-callable tools."""

    name: str
    description: str
    parameters_schema: dict[str, Any]

    async def prepare(self) -> None:
        """Refresh dynamic parts of the schema before a conversation starts."""

    @abstractmethod
    async def run(self, **kwargs: Any) -> ToolResult:
        """Execute tool with validated arguments."""
