"""Album (media group) batching.

Telegram delivers every file of an album as a separate update sharing one
``media_group_id``; there is no "album complete" signal. Units are buffered per
group until the cap is hit or the group goes quiet for the window. A group
stays buffered until it is flushed, either by a later member or by ``sweep()``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from taskbot.models import InboundUnit
from taskbot.state import KeyedLocks

LOGGER = logging.getLogger(__name__)

MAX_FILES = 3


@dataclass(slots=True)
class _GroupBuffer:
    first_received_at: float
    last_received_at: float
    messages: list[InboundUnit] = field(default_factory=list)


class MediaGroupBuffer:
    """Collects the units of one album into a single batch."""

    def __init__(
        self,
        window_seconds: float = 2.0,
        max_items: int = MAX_FILES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window_seconds = window_seconds
        self._max_items = max_items
        self._clock = clock
        self._groups: dict[str, _GroupBuffer] = {}
        self._locks = KeyedLocks()

    async def add(self, unit: InboundUnit) -> list[InboundUnit] | None:
        """Buffer ``unit``; return the whole group once it is complete."""

        if not unit.is_part_of_media_group:
            return [unit]

        group_id = str(unit.media_group_id)
        async with self._locks.hold(group_id):
            now = self._clock()
            buffer = self._groups.get(group_id)
            if buffer is None:
                buffer = _GroupBuffer(first_received_at=now, last_received_at=now)
                self._groups[group_id] = buffer
            gap = now - buffer.last_received_at
            buffer.messages.append(unit)
            buffer.last_received_at = now

            LOGGER.info(
                "Media group %s buffered message %s (count=%d, gap=%.2fs)",
                group_id,
                unit.message_id,
                len(buffer.messages),
                gap,
            )

            if len(buffer.messages) >= self._max_items or gap >= self._window_seconds:
                del self._groups[group_id]
                LOGGER.info("Media group %s ready with %d messages", group_id, len(buffer.messages))
                return buffer.messages
            return None

    async def sweep(self) -> list[list[InboundUnit]]:
        """Flush every group that has been quiet for at least the window."""

        flushed: list[list[InboundUnit]] = []
        for group_id in list(self._groups):
            async with self._locks.hold(group_id):
                buffer = self._groups.get(group_id)
                if buffer is None:
                    continue
                if self._clock() - buffer.last_received_at < self._window_seconds:
                    continue
                del self._groups[group_id]
            LOGGER.info("Media group %s flushed by sweep with %d messages", group_id, len(buffer.messages))
            flushed.append(buffer.messages)
        return flushed

    def pending_groups(self) -> list[str]:
        return list(self._groups)


def collect_file_ids(units: list[InboundUnit], limit: int = MAX_FILES) -> list[str]:
    """All file ids across the group, in arrival order, capped at ``limit``."""

    file_ids = [file_id for unit in units for file_id in unit.file_ids]
    return file_ids[:limit]


def collect_text(units: list[InboundUnit]) -> str:
    """Album captions usually sit on the first unit only."""

    for unit in units:
        if unit.text:
            return unit.text
    return ""
