"""Background reclamation of idle abuse-gate windows.

Expiry is already handled lazily by the gate; this only keeps memory bounded
when origin keys have high cardinality (rotating IPs).
"""

import asyncio
import logging

from app.core.abuse_gate import AbuseGate

logger = logging.getLogger(__name__)


class WindowSweeper:
    """Periodically calls ``AbuseGate.sweep`` on the event loop."""

    def __init__(self, gate: AbuseGate, interval_seconds: float = 300.0) -> None:
        self.gate = gate
        self.interval_seconds = interval_seconds
        self.running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self.running:
            logger.warning("Window sweeper already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Window sweeper started (interval: %ss)", self.interval_seconds)

    async def stop(self) -> None:
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Window sweeper stopped")

    def sweep_once(self) -> int:
        try:
            return self.gate.sweep()
        except Exception:
            logger.exception("Risk window sweep failed")
            return 0

    async def _loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.interval_seconds)
            self.sweep_once()
