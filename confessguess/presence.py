"""Disconnect grace tracking for participants of running games."""

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Remembers when (code, name) disconnected. Holds no participant records, only keys."""

    def __init__(self, grace_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.grace_seconds = grace_seconds
        self.clock = clock
        self._since: dict[tuple[str, str], float] = {}

    def track(self, code: str, name: str):
        self._since[(code, name)] = self.clock()

    def clear(self, code: str, name: str) -> bool:
        """Forget a disconnect (the participant came back). True if one was tracked."""
        return self._since.pop((code, name), None) is not None

    def forget_session(self, code: str):
        for key in [k for k in self._since if k[0] == code]:
            del self._since[key]

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._since

    def __len__(self) -> int:
        return len(self._since)

    def expired(self) -> list[tuple[str, str]]:
        """Pop and return every entry older than the grace window."""
        now = self.clock()
        out = [k for k, since in self._since.items() if now - since > self.grace_seconds]
        for key in out:
            del self._since[key]
        return out

    async def sweep(self, on_evict: Callable[[str, str], Awaitable[None]]) -> list[tuple[str, str]]:
        evicted = self.expired()
        for code, name in evicted:
            logger.info("Grace period over: %s (%s)", code, name)
            await on_evict(code, name)
        return evicted

    async def run(self, on_evict: Callable[[str, str], Awaitable[None]], interval: float = 60):
        """Sweep forever, every interval seconds."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep(on_evict)
            except Exception:
                logger.exception("Presence sweep failed")
