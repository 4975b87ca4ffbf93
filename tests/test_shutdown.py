"""Shutdown coordinator trigger and wait semantics."""

import asyncio

import pytest

from brc20_watcher.core.shutdown import ShutdownCoordinator


@pytest.mark.asyncio
async def test_trigger_wakes_every_waiter() -> None:
    shutdown = ShutdownCoordinator()
    waiters = [asyncio.ensure_future(shutdown.wait()) for _ in range(3)]
    await asyncio.sleep(0)
    assert not any(waiter.done() for waiter in waiters)

    assert shutdown.trigger("test") is True
    await asyncio.wait_for(asyncio.gather(*waiters), timeout=1.0)
    assert shutdown.triggered


@pytest.mark.asyncio
async def test_second_trigger_is_a_noop() -> None:
    shutdown = ShutdownCoordinator()
    assert shutdown.trigger("first") is True
    assert shutdown.trigger("second") is False
    assert shutdown.reason == "first"

    # waiting after the fact returns immediately
    await asyncio.wait_for(shutdown.wait(), timeout=1.0)


def test_new_coordinator_is_armed() -> None:
    shutdown = ShutdownCoordinator()
    assert not shutdown.triggered
    assert shutdown.reason is None
