"""Tests for the async debouncer."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from app.query.debounce import Debouncer


class TestDebouncer:
    @pytest.mark.asyncio
    async def test_burst_runs_once_with_latest_args(self):
        callback = AsyncMock()
        debouncer = Debouncer(0.02, callback)

        debouncer.trigger("a")
        debouncer.trigger("ab")
        task = debouncer.trigger("abc")
        assert debouncer.pending is True

        await task
        callback.assert_awaited_once_with("abc")
        assert debouncer.pending is False

    @pytest.mark.asyncio
    async def test_nothing_runs_before_delay(self):
        callback = AsyncMock()
        debouncer = Debouncer(0.05, callback)
        debouncer.trigger("x")
        await asyncio.sleep(0.01)
        callback.assert_not_awaited()
        debouncer.cancel()

    @pytest.mark.asyncio
    async def test_cancel(self):
        callback = AsyncMock()
        debouncer = Debouncer(0.01, callback)
        debouncer.trigger("x")
        debouncer.cancel()
        await asyncio.sleep(0.03)
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_separate_bursts_each_run(self):
        callback = AsyncMock()
        debouncer = Debouncer(0.01, callback)
        await debouncer.trigger(1)
        await debouncer.trigger(2)
        assert callback.await_count == 2

    @pytest.mark.asyncio
    async def test_running_callback_not_interrupted(self):
        started = asyncio.Event()
        release = asyncio.Event()
        seen = []

        async def slow(value):
            started.set()
            await release.wait()
            seen.append(value)

        debouncer = Debouncer(0, slow)
        first = debouncer.trigger("first")
        await started.wait()

        second = debouncer.trigger("second")
        release.set()
        await asyncio.gather(first, second)
        assert seen == ["first", "second"]

    @pytest.mark.asyncio
    async def test_callback_error_logged(self, caplog):
        debouncer = Debouncer(0, AsyncMock(side_effect=RuntimeError("boom")))
        with caplog.at_level(logging.ERROR):
            assert await debouncer.trigger() is False
        assert "Debounced callback failed" in caplog.text

    @pytest.mark.asyncio
    async def test_task_resolves_to_callback_result(self):
        debouncer = Debouncer(0, AsyncMock(return_value=True))
        assert await debouncer.trigger("x") is True
