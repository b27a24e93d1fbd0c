"""
Fixed-interval background worker.
Uses asyncio for lightweight scheduling; a busy flag makes overlapping ticks skip instead of queue.
"""
import asyncio
from typing import Optional

from loguru import logger


class PeriodicWorker:
    """
    Runs `tick()` every `interval` seconds until stopped.

    Subclasses implement `_run_tick()`. A tick that raises is logged and the
    loop keeps going; the worker never terminates the process.
    """

    name = "worker"

    def __init__(self, interval: float):
        self._interval = interval
        self._running = False
        self._busy = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_busy(self) -> bool:
        return self._busy

    async def start(self):
        """Start the background loop"""
        if self._running:
            logger.warning(f"{self.name} already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"{self.name} started (interval={self._interval}s)")

    async def stop(self):
        """Stop the background loop and wait for it to exit"""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(f"{self.name} stopped")

    async def tick(self) -> bool:
        """
        Run one tick unless another one is still in flight.

        Returns:
            False if the tick was skipped because the worker was busy
        """
        if self._busy:
            logger.debug(f"{self.name} tick skipped: previous tick still running")
            return False

        self._busy = True
        try:
            await self._run_tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name} tick failed: {e}")
        finally:
            self._busy = False
        return True

    async def _run_tick(self):
        raise NotImplementedError

    async def _loop(self):
        """Main loop"""
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break

            await asyncio.sleep(self._interval)
