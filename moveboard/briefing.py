"""
Background triggers that sit beside the board without blocking it:

    DailyBriefing      — fires at most once per calendar day, gated by
                         settings.last_briefing_date
    ConnectivityProbe  — polls gateway health and emits online/offline changes
"""
import asyncio
import inspect
import logging
from datetime import date
from typing import Callable, Optional

from .events import EventBus
from .gateway import MoveGateway

logger = logging.getLogger(__name__)


class DailyBriefing:
    """Runs a briefing callback once per day, in the background."""

    def __init__(self, settings, callback: Callable, bus: Optional[EventBus] = None):
        self.settings = settings
        self.callback = callback
        self.bus = bus or EventBus()
        self._task: Optional[asyncio.Task] = None

    def due(self, today: Optional[date] = None) -> bool:
        today = today or date.today()
        return self.settings.last_briefing_date != today.isoformat()

    def maybe_run(self, today: Optional[date] = None) -> bool:
        """Schedule the briefing if it has not run today. Must be called inside a running loop."""
        today = today or date.today()
        if not self.due(today):
            return False
        # Stamp first so a second call the same day is a no-op even mid-run
        self.settings.update(last_briefing_date=today.isoformat())
        logger.info(f"Daily briefing for {today.isoformat()}")
        self._task = asyncio.get_running_loop().create_task(self._fire())
        return True

    async def _fire(self) -> None:
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Daily briefing failed")
            return
        self.bus.emit("briefing", date=self.settings.last_briefing_date)

    async def wait(self) -> None:
        if self._task is not None:
            await self._task


class ConnectivityProbe:
    """Low-frequency health check against the gateway."""

    def __init__(self, gateway: MoveGateway, bus: EventBus, interval: float = 30.0):
        self.gateway = gateway
        self.bus = bus
        self.interval = interval
        self.online: Optional[bool] = None
        self._task: Optional[asyncio.Task] = None

    async def check(self) -> bool:
        online = await self.gateway.health()
        if online != self.online:
            logger.info(f"Store is {'online' if online else 'offline'}")
            self.online = online
            self.bus.emit("connectivity", online=online)
        return online

    async def _run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
