"""Tests for the per-message lock registry."""

import asyncio

import pytest

from quickroll.locks import MessageLocks


@pytest.mark.asyncio
async def test_released_locks_are_forgotten():
    locks = MessageLocks()
    for i in range(50):
        async with locks.hold(f"m{i}"):
            assert f"m{i}" in locks._locks
    assert locks._locks == {}
    assert locks._users == {}


@pytest.mark.asyncio
async def test_lock_forgotten_after_error():
    locks = MessageLocks()
    with pytest.raises(RuntimeError):
        async with locks.hold("m1"):
            raise RuntimeError("boom")
    assert locks._locks == {}


@pytest.mark.asyncio
async def test_holders_of_one_message_run_in_turn():
    locks = MessageLocks()
    events = []

    async def worker(name):
        async with locks.hold("m1"):
            events.append(f"{name} in")
            await asyncio.sleep(0)
            events.append(f"{name} out")

    await asyncio.gather(worker("a"), worker("b"), worker("c"))

    assert events == ["a in", "a out", "b in", "b out", "c in", "c out"]
    assert locks._locks == {}


@pytest.mark.asyncio
async def test_waiter_keeps_lock_alive():
    locks = MessageLocks()
    release = asyncio.Event()

    async def first():
        async with locks.hold("m1"):
            await release.wait()

    async def second():
        async with locks.hold("m1"):
            return locks._locks["m1"]

    a = asyncio.create_task(first())
    await asyncio.sleep(0)
    b = asyncio.create_task(second())
    await asyncio.sleep(0)
    held = locks._locks["m1"]
    assert locks._users["m1"] == 2

    release.set()
    await a
    # The waiter reuses the lock the first holder created.
    assert await b is held
    assert locks._locks == {}
