"""Cancellable scheduled work on the event loop."""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Run callback once after delay seconds unless cancelled first."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]], name: str = ""):
        self.name = name
        self.cancelled = False
        self._callback = callback
        self._task = asyncio.create_task(self._run(delay), name=name or None)

    async def _run(self, delay: float):
        await asyncio.sleep(delay)
        if self.cancelled:
            return
        await self._fire()

    async def _fire(self):
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled task %s failed", self.name)

    @property
    def done(self) -> bool:
        return self.cancelled or self._task.done()

    def cancel(self):
        """Safe from anywhere, including from inside the callback itself."""
        self.cancelled = True
        # Never interrupt ourselves mid-callback; the flag stops further steps.
        if self._task is not asyncio.current_task() and not self._task.done():
            self._task.cancel()


class Countdown(ScheduledTask):
    """Tick once per interval for seconds ticks, then expire.

    on_tick(remaining) runs after every tick, including the last one (remaining == 0);
    on_expire() runs once afterwards. Cancelling during on_tick suppresses on_expire.
    """

    def __init__(
        self,
        seconds: int,
        on_tick: Callable[[int], Awaitable[None]],
        on_expire: Callable[[], Awaitable[None]],
        interval: float = 1.0,
        name: str = "",
    ):
        self.remaining = seconds
        self.interval = interval
        self._on_tick = on_tick
        super().__init__(0, on_expire, name=name)

    async def _run(self, delay: float):
        while self.remaining > 0:
            await asyncio.sleep(self.interval)
            if self.cancelled:
                return
            self.remaining -= 1
            try:
                await self._on_tick(self.remaining)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Countdown %s tick failed", self.name)
            if self.cancelled:
                return
        await self._fire()
