"""Tests for the background reconciliation loop."""

import asyncio

from storefront.exceptions import StoreError
from storefront.tasks.reconciliation_loop import ReconciliationLoop


class ScriptedWorker:
    """Worker stand-in whose run_once results are scripted per call.

    Each script entry is a batch size to return, an exception to raise,
    or ``"hang"`` to block until cancelled.
    """

    def __init__(self, script, batch_size=10):
        self.script = list(script)
        self.batch_size = batch_size
        self.calls = 0

    async def run_once(self):
        self.calls += 1
        step = self.script.pop(0) if self.script else 0
        if step == "hang":
            await asyncio.sleep(3600)
        if isinstance(step, Exception):
            raise step
        return step


def test_loop_keeps_polling_after_a_failed_poll():
    worker = ScriptedWorker([StoreError("database unavailable"), 0, 0])
    loop = ReconciliationLoop(worker, poll_interval=0.01, enabled=True)

    async def scenario():
        loop.start()
        running = loop.running
        await asyncio.sleep(0.2)
        await loop.stop()
        return running

    assert asyncio.run(scenario()) is True
    assert worker.calls >= 2
    assert loop.running is False


def test_full_batches_are_polled_again_immediately():
    worker = ScriptedWorker([3, 3, 3, 0], batch_size=3)
    loop = ReconciliationLoop(worker, poll_interval=30, enabled=True)

    async def scenario():
        loop.start()
        await asyncio.sleep(0.1)
        await loop.stop()

    asyncio.run(scenario())

    # Three full batches, then one short batch followed by the 30s wait
    assert worker.calls == 4


def test_stop_wakes_an_idle_loop():
    worker = ScriptedWorker([])
    loop = ReconciliationLoop(worker, poll_interval=30, enabled=True, shutdown_timeout=5)

    async def scenario():
        loop.start()
        await asyncio.sleep(0.05)
        started = asyncio.get_running_loop().time()
        await loop.stop()
        return asyncio.get_running_loop().time() - started

    assert asyncio.run(scenario()) < 1
    assert worker.calls == 1


def test_stop_gives_up_on_a_stuck_batch():
    worker = ScriptedWorker(["hang"])
    loop = ReconciliationLoop(worker, poll_interval=0.01, enabled=True, shutdown_timeout=0.05)

    async def scenario():
        loop.start()
        await asyncio.sleep(0.02)
        await loop.stop()

    asyncio.run(scenario())

    assert loop.running is False


def test_disabled_loop_never_polls():
    worker = ScriptedWorker([])
    loop = ReconciliationLoop(worker, poll_interval=0.01, enabled=False)

    async def scenario():
        loop.start()
        await asyncio.sleep(0.05)
        await loop.stop()

    asyncio.run(scenario())

    assert worker.calls == 0
    assert loop.running is False
