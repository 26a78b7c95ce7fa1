"""Tests for per-key asyncio locks"""

import asyncio

import pytest

from fleetbot.utils.keyed_lock import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLock()
    order = []

    async def worker(name):
        async with locks.hold(1):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_different_keys_do_not_wait():
    locks = KeyedLock()
    entered = asyncio.Event()

    async def holder():
        async with locks.hold(1):
            await entered.wait()

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)

    async with locks.hold(("owner", 1)):
        assert locks.locked(1)
        entered.set()

    await task


@pytest.mark.asyncio
async def test_locks_are_released_when_idle():
    locks = KeyedLock()

    async with locks.hold(7):
        assert len(locks) == 1

    assert len(locks) == 0
    assert not locks.locked(7)


@pytest.mark.asyncio
async def test_lock_released_on_error():
    locks = KeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold(7):
            raise RuntimeError("boom")

    assert len(locks) == 0
