import asyncio
from unittest.mock import AsyncMock

import pytest

from navgate.background import BackgroundTasks


def test_spawn_without_loop_is_skipped():
    tasks = BackgroundTasks()
    factory = AsyncMock()
    assert tasks.spawn("tenant-features:t1", factory) is None
    factory.assert_not_called()


@pytest.mark.asyncio
async def test_pending_task_is_shared_per_name():
    gate = asyncio.Event()
    calls = []

    async def fetch():
        calls.append(1)
        await gate.wait()

    tasks = BackgroundTasks()
    first = tasks.spawn("tenant-features:t1", fetch)
    second = tasks.spawn("tenant-features:t1", fetch)
    assert first is second
    assert tasks.pending("tenant-features:t1") is True

    gate.set()
    await tasks.drain()
    assert calls == [1]
    assert tasks.pending("tenant-features:t1") is False


@pytest.mark.asyncio
async def test_failed_task_is_logged_not_raised():
    async def broken():
        raise RuntimeError("boom")

    tasks = BackgroundTasks()
    tasks.spawn("broken", broken)
    await tasks.drain()
    assert tasks.pending("broken") is False


@pytest.mark.asyncio
async def test_cancel_all():
    tasks = BackgroundTasks()
    task = tasks.spawn("slow", lambda: asyncio.sleep(10))
    tasks.cancel_all()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert tasks.pending("slow") is False
