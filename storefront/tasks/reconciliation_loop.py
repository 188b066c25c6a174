"""
Reconciliation Loop
===================
Background task that polls the reconciliation queue and runs due jobs.

Features:
- Polls every RECONCILE_POLL_INTERVAL seconds, immediately again while
  batches keep coming back full
- Survives queue/database outages (logs and keeps polling)
- Stops cleanly on shutdown, letting the in-flight batch finish
"""

import asyncio
from typing import Optional

import structlog

from storefront.config import reconciliation_config
from storefront.pipeline.reconciliation import ReconciliationWorker

logger = structlog.get_logger(component="reconciliation_loop")


class ReconciliationLoop:
    """Owns the polling task for one worker"""

    def __init__(
        self,
        worker: ReconciliationWorker,
        poll_interval: float = reconciliation_config.POLL_INTERVAL,
        enabled: bool = reconciliation_config.ENABLED,
        shutdown_timeout: float = 30.0,
    ):
        self.worker = worker
        self.poll_interval = poll_interval
        self.enabled = enabled
        self.shutdown_timeout = shutdown_timeout

        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Start polling on the running event loop"""
        if not self.enabled:
            logger.info("reconciliation_loop_disabled")
            return
        if self.running:
            logger.warning("reconciliation_loop_already_running")
            return

        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="reconciliation-loop")

    async def stop(self):
        """Signal the loop and wait for the current batch"""
        if not self.running:
            return

        self._stop.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning("reconciliation_loop_stop_timeout",
                           timeout=self.shutdown_timeout)
        finally:
            self._task = None

    async def _run(self):
        logger.info("reconciliation_loop_started",
                    interval=self.poll_interval,
                    batch_size=self.worker.batch_size)

        while not self._stop.is_set():
            try:
                processed = await self.worker.run_once()
            except Exception as e:
                logger.error("reconciliation_poll_failed", error=str(e), exc_info=True)
                processed = 0

            if processed >= self.worker.batch_size:
                continue

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("reconciliation_loop_stopped")
