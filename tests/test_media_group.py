"""Tests for album batching and the stale-group sweeper."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from taskbot.media_group import MediaGroupBuffer, collect_file_ids, collect_text
from taskbot.models import InboundUnit
from taskbot.scheduler import MediaGroupSweeper


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _unit(message_id: int, group: str | None = "album-1", text: str = "", files: list[str] | None = None) -> InboundUnit:
    return InboundUnit(
        chat_id=10,
        user_id=20,
        message_id=message_id,
        timestamp=datetime.now(timezone.utc),
        text=text,
        file_ids=files if files is not None else [f"file-{message_id}"],
        media_group_id=group,
    )


class TestMediaGroupBuffer:
    @pytest.mark.asyncio
    async def test_unit_without_group_passes_through(self):
        buffer = MediaGroupBuffer(clock=FakeClock())
        unit = _unit(1, group=None)
        assert await buffer.add(unit) == [unit]
        assert buffer.pending_groups() == []

    @pytest.mark.asyncio
    async def test_group_is_returned_once_cap_is_reached(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, max_items=3, clock=clock)

        assert await buffer.add(_unit(1)) is None
        clock.advance(0.1)
        assert await buffer.add(_unit(2)) is None
        clock.advance(0.1)
        group = await buffer.add(_unit(3))

        assert [unit.message_id for unit in group] == [1, 2, 3]
        assert buffer.pending_groups() == []

    @pytest.mark.asyncio
    async def test_late_member_after_quiet_window_flushes_group(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, max_items=3, clock=clock)

        assert await buffer.add(_unit(1)) is None
        clock.advance(2.5)
        group = await buffer.add(_unit(2))

        assert [unit.message_id for unit in group] == [1, 2]

    @pytest.mark.asyncio
    async def test_long_silence_never_drops_buffered_members(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, max_items=3, clock=clock)

        assert await buffer.add(_unit(1)) is None
        clock.advance(8.0)
        assert buffer.pending_groups() == ["album-1"]
        group = await buffer.add(_unit(2))

        assert [unit.message_id for unit in group] == [1, 2]

    @pytest.mark.asyncio
    async def test_sweep_finds_groups_long_after_the_window(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, clock=clock)
        await buffer.add(_unit(1))
        clock.advance(600.0)

        flushed = await buffer.sweep()

        assert [[unit.message_id for unit in group] for group in flushed] == [[1]]

    @pytest.mark.asyncio
    async def test_short_gaps_keep_buffering(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, max_items=5, clock=clock)

        for message_id in range(1, 5):
            assert await buffer.add(_unit(message_id)) is None
            clock.advance(1.5)

        assert buffer.pending_groups() == ["album-1"]

    @pytest.mark.asyncio
    async def test_groups_are_independent(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, max_items=2, clock=clock)

        assert await buffer.add(_unit(1, group="a")) is None
        assert await buffer.add(_unit(2, group="b")) is None
        group = await buffer.add(_unit(3, group="a"))

        assert [unit.message_id for unit in group] == [1, 3]
        assert buffer.pending_groups() == ["b"]

    @pytest.mark.asyncio
    async def test_sweep_leaves_fresh_groups(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, clock=clock)
        await buffer.add(_unit(1))
        clock.advance(1.0)

        assert await buffer.sweep() == []
        assert buffer.pending_groups() == ["album-1"]

    @pytest.mark.asyncio
    async def test_sweep_flushes_quiet_group(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, clock=clock)
        await buffer.add(_unit(1))
        clock.advance(0.5)
        await buffer.add(_unit(2))
        clock.advance(2.0)

        flushed = await buffer.sweep()

        assert [[unit.message_id for unit in group] for group in flushed] == [[1, 2]]
        assert buffer.pending_groups() == []
        assert await buffer.sweep() == []

    @pytest.mark.asyncio
    async def test_group_ids_are_not_reused_after_flush(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, max_items=2, clock=clock)
        await buffer.add(_unit(1))
        await buffer.add(_unit(2))

        assert await buffer.add(_unit(3)) is None
        assert buffer.pending_groups() == ["album-1"]


class TestCollectors:
    def test_file_ids_are_capped_in_arrival_order(self):
        units = [_unit(1, files=["a", "b"]), _unit(2, files=["c"]), _unit(3, files=["d"])]
        assert collect_file_ids(units) == ["a", "b", "c"]

    def test_caption_comes_from_first_unit_with_text(self):
        units = [_unit(1), _unit(2, text="Сделать отчёт"), _unit(3, text="ignored")]
        assert collect_text(units) == "Сделать отчёт"

    def test_no_caption_returns_empty(self):
        assert collect_text([_unit(1)]) == ""


class TestMediaGroupSweeper:
    @pytest.mark.asyncio
    async def test_run_once_dispatches_stale_groups(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, clock=clock)
        await buffer.add(_unit(1))
        clock.advance(3.0)
        handler = AsyncMock()

        sweeper = MediaGroupSweeper(buffer, handler=handler, poll_interval_seconds=0.01)

        assert await sweeper.run_once() == 1
        await sweeper.join()
        handler.assert_awaited_once()
        assert [unit.message_id for unit in handler.await_args.args[0]] == [1]

    @pytest.mark.asyncio
    async def test_handler_failure_is_logged_and_does_not_stop_others(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, clock=clock)
        await buffer.add(_unit(1, group="a"))
        await buffer.add(_unit(2, group="b"))
        clock.advance(3.0)
        handler = AsyncMock(side_effect=[RuntimeError("boom"), None])

        sweeper = MediaGroupSweeper(buffer, handler=handler)

        assert await sweeper.run_once() == 2
        await sweeper.join()
        assert handler.await_count == 2
        assert sweeper.in_flight == 0

    @pytest.mark.asyncio
    async def test_slow_group_does_not_block_next_sweep(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, clock=clock)
        release = asyncio.Event()
        handled: list[list[str]] = []

        async def handler(units: list[InboundUnit]) -> None:
            handled.append([str(unit.media_group_id) for unit in units])
            if units[0].media_group_id == "A":
                await buffer.add(_unit(2, group="B"))
                clock.advance(30.0)
                await release.wait()

        sweeper = MediaGroupSweeper(buffer, handler=handler)
        await buffer.add(_unit(1, group="A"))
        clock.advance(3.0)

        assert await sweeper.run_once() == 1
        await asyncio.sleep(0)
        assert sweeper.in_flight == 1

        assert await sweeper.run_once() == 1
        await asyncio.sleep(0)
        assert ["B"] in handled

        release.set()
        await sweeper.join()
        assert handled == [["A"], ["B"]]

    @pytest.mark.asyncio
    async def test_stop_cancels_running_groups(self):
        clock = FakeClock()
        buffer = MediaGroupBuffer(window_seconds=2.0, clock=clock)
        await buffer.add(_unit(1))
        clock.advance(3.0)
        never = asyncio.Event()

        async def handler(units: list[InboundUnit]) -> None:
            await never.wait()

        sweeper = MediaGroupSweeper(buffer, handler=handler)
        await sweeper.run_once()
        await asyncio.sleep(0)
        sweeper.stop()
        await sweeper.join()

        assert sweeper.in_flight == 0

    @pytest.mark.asyncio
    async def test_run_forever_stops(self):
        buffer = MediaGroupBuffer(clock=FakeClock())
        sweeper = MediaGroupSweeper(buffer, handler=AsyncMock(), poll_interval_seconds=0.01)
        sweeper.stop()

        await sweeper.run_forever()
