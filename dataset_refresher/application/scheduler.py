"""Long-lived loop that re-evaluates freshness on a fixed interval."""

import asyncio
import logging
from typing import Optional

from .service import RefreshOrchestrator


class Scheduler:
    """Runs the orchestrator after a startup delay, then periodically."""

    def __init__(
        self,
        orchestrator: RefreshOrchestrator,
        initial_delay: float,
        interval: float,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.orchestrator = orchestrator
        self.initial_delay = initial_delay
        self.interval = interval

    async def _run_once(self):
        try:
            await self.orchestrator.run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.exception("Refresh cycle failed, will retry next cycle")

    async def run_forever(self, max_cycles: Optional[int] = None):
        """
        Run cycles until cancelled, or until `max_cycles` have run.

        A failing cycle is logged and never stops the loop.
        """

        self.logger.info(
            f"Waiting {self.initial_delay}s for the store to initialize..."
        )
        await asyncio.sleep(self.initial_delay)

        self.logger.info("Running initial data load...")
        await self._run_once()
        cycles = 1

        self.logger.info(f"Starting refresh check loop (interval: {self.interval}s)")
        while max_cycles is None or cycles < max_cycles:
            await asyncio.sleep(self.interval)
            self.logger.info("Checking if data refresh is needed...")
            await self._run_once()
            cycles += 1
