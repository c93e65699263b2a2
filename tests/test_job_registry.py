"""Tests for the server job registry."""

import os
import sys
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fakes import START


class TestSchedule:

    @pytest.mark.asyncio
    async def test_future_instant_registers_one_job(self, registry, scheduler):
        callback = AsyncMock()

        assert await registry.schedule("rem_1", START + timedelta(hours=1), callback) is True

        assert registry.has("rem_1")
        assert len(registry) == 1
        assert registry.trigger_time("rem_1") == START + timedelta(hours=1)
        assert [job.id for job in scheduler.get_jobs()] == ["rem_1"]
        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_reschedule_replaces_previous_timer(self, registry, scheduler, clock):
        first = AsyncMock()
        second = AsyncMock()

        await registry.schedule("rem_1", START + timedelta(minutes=10), first)
        await registry.schedule("rem_1", START + timedelta(minutes=20), second)

        assert len(registry) == 1
        assert len(scheduler.get_jobs()) == 1
        assert registry.trigger_time("rem_1") == START + timedelta(minutes=20)

        clock.advance(hours=1)
        assert await registry.run_due() == 1
        first.assert_not_called()
        second.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_past_instant_fires_immediately(self, registry, scheduler):
        callback = AsyncMock()

        registered = await registry.schedule("rem_1", START - timedelta(minutes=5), callback)

        assert registered is False
        callback.assert_awaited_once()
        assert not registry.has("rem_1")
        assert scheduler.get_jobs() == []

    @pytest.mark.asyncio
    async def test_instant_equal_to_now_fires_immediately(self, registry):
        callback = AsyncMock()
        await registry.schedule("rem_1", START, callback)
        callback.assert_awaited_once()
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_sync_callback_supported(self, registry):
        callback = Mock()
        await registry.schedule("rem_1", START - timedelta(seconds=1), callback)
        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_naive_instant_treated_as_utc(self, registry):
        naive = datetime(2025, 6, 1, 9, 0)
        await registry.schedule("rem_1", naive, AsyncMock())
        assert registry.trigger_time("rem_1") == START + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_missing_instant_is_logged_not_registered(self, registry, caplog):
        callback = AsyncMock()

        assert await registry.schedule("rem_1", None, callback) is False

        assert not registry.has("rem_1")
        callback.assert_not_called()
        assert "Failed to schedule reminder rem_1" in caplog.text


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_removes_timer(self, registry, scheduler, clock):
        callback = AsyncMock()
        await registry.schedule("rem_1", START + timedelta(hours=1), callback)

        assert registry.cancel("rem_1") is True

        assert not registry.has("rem_1")
        assert scheduler.get_jobs() == []
        clock.advance(hours=2)
        assert await registry.run_due() == 0
        callback.assert_not_called()

    def test_cancel_unknown_is_noop(self, registry):
        assert registry.cancel("missing") is False

    @pytest.mark.asyncio
    async def test_cancel_leaves_other_timers(self, registry):
        await registry.schedule("rem_1", START + timedelta(hours=1), AsyncMock())
        await registry.schedule("rem_2", START + timedelta(hours=2), AsyncMock())

        registry.cancel("rem_1")

        assert registry.ids() == ["rem_2"]


class TestRunDue:

    @pytest.mark.asyncio
    async def test_fires_only_due_entries(self, registry, clock):
        soon = AsyncMock()
        later = AsyncMock()
        await registry.schedule("soon", START + timedelta(minutes=5), soon)
        await registry.schedule("later", START + timedelta(hours=5), later)

        clock.advance(minutes=10)
        assert await registry.run_due() == 1

        soon.assert_awaited_once()
        later.assert_not_called()
        assert registry.ids() == ["later"]

    @pytest.mark.asyncio
    async def test_entry_fires_once(self, registry, clock):
        callback = AsyncMock()
        await registry.schedule("rem_1", START + timedelta(minutes=5), callback)

        clock.advance(minutes=10)
        await registry.run_due()
        await registry.run_due()

        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_explicit_now(self, registry):
        callback = AsyncMock()
        await registry.schedule("rem_1", START + timedelta(minutes=5), callback)

        assert await registry.run_due(START + timedelta(minutes=5)) == 1
        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_callback_failure_is_swallowed(self, registry, clock, caplog):
        callback = AsyncMock(side_effect=RuntimeError("boom"))
        await registry.schedule("rem_1", START + timedelta(minutes=5), callback)

        clock.advance(minutes=10)
        assert await registry.run_due() == 1

        assert not registry.has("rem_1")
        assert "Reminder rem_1 callback failed" in caplog.text

    @pytest.mark.asyncio
    async def test_callback_may_reschedule_same_id(self, registry, clock):
        async def reschedule():
            await registry.schedule("rem_1", clock() + timedelta(days=1), AsyncMock())

        await registry.schedule("rem_1", START + timedelta(minutes=5), reschedule)

        clock.advance(minutes=10)
        await registry.run_due()

        assert registry.trigger_time("rem_1") == START + timedelta(days=1, minutes=10)
