"""Periodic sweep of stale media groups."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from taskbot.media_group import MediaGroupBuffer
from taskbot.models import InboundUnit

LOGGER = logging.getLogger(__name__)


class MediaGroupSweeper:
    """Polls the buffer and dispatches groups whose last member never arrived.

    Each flushed group is handled in its own task, so a slow conversation turn
    never holds up the next sweep.
    """

    def __init__(
        self,
        buffer: MediaGroupBuffer,
        handler: Callable[[list[InboundUnit]], Awaitable[None]],
        poll_interval_seconds: float = 0.5,
    ) -> None:
        self._buffer = buffer
        self._handler = handler
        self._poll_interval_seconds = poll_interval_seconds
        self._stop_event = asyncio.Event()
        self._in_flight: set[asyncio.Task[None]] = set()

    async def run_once(self) -> int:
        """Flush stale groups once; return how many were dispatched."""

        groups = await self._buffer.sweep()
        for units in groups:
            task = asyncio.create_task(self._handler(units))
            self._in_flight.add(task)
            task.add_done_callback(self._done)
        return len(groups)

    def _done(self, task: asyncio.Task[None]) -> None:
        self._in_flight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("Failed to handle swept media group", exc_info=task.exception())

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def join(self) -> None:
        """Wait for every dispatched group to finish."""

        while self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def run_forever(self) -> None:
        """Run the sweep loop until stop() is called."""

        while not self._stop_event.is_set():
            await self.run_once()
            await asyncio.sleep(self._poll_interval_seconds)

    def stop(self) -> None:
        """Signal the loop to stop and cancel groups still being handled."""

        self._stop_event.set()
        for task in list(self._in_flight):
            task.cancel()
