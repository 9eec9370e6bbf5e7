"""Tests for PeriodicTask."""

from __future__ import annotations

import asyncio

import pytest

from simrelay.relay.ticker import PeriodicTask
from tests.testing_utils import wait_for


class TestPeriodicTask:
    @pytest.mark.asyncio
    async def test_ticks_until_stopped(self) -> None:
        calls: list[int] = []

        async def tick() -> None:
            calls.append(len(calls))

        task = PeriodicTask(0.01, tick, name="test")
        task.start()
        await wait_for(lambda: len(calls) >= 3)
        await task.stop()
        count = len(calls)
        await asyncio.sleep(0.05)

        assert not task.is_running
        assert len(calls) == count
        assert task.ticks >= 3

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_running(self) -> None:
        calls: list[int] = []

        async def tick() -> None:
            calls.append(1)
            raise RuntimeError("boom")

        task = PeriodicTask(0.01, tick)
        task.start()
        await wait_for(lambda: len(calls) >= 3)

        assert task.is_running
        await task.stop()

    @pytest.mark.asyncio
    async def test_start_twice_and_stop_twice(self) -> None:
        async def tick() -> None:
            pass

        task = PeriodicTask(10.0, tick)
        task.start()
        first = task._task
        task.start()

        assert task._task is first
        await task.stop()
        await task.stop()
        assert not task.is_running

    @pytest.mark.asyncio
    async def test_stop_before_start(self) -> None:
        async def tick() -> None:
            pass

        await PeriodicTask(1.0, tick).stop()
