"""
Countdown ticker for exam sessions.

The session owns its countdown; the ticker only decides when tick() is
called. Production sessions run on the service's asyncio event loop, so
ticks and request handlers never run at the same time. Tests inject a
ticker they advance by hand.
"""

import asyncio
import os
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

TICK_SECONDS = float(os.getenv("CBT_TICK_SECONDS", "1"))


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Ticker(Protocol):
    running: bool

    def start(self, callback: Callable[[], None]) -> None: ...

    def stop(self) -> None: ...


class AsyncioTicker:
    """Calls the callback every `interval` seconds on the event loop."""

    def __init__(self, interval: float = TICK_SECONDS,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.interval = interval
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._callback: Optional[Callable[[], None]] = None
        self.running = False

    def start(self, callback: Callable[[], None]) -> None:
        if self.running:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._callback = callback
        self.running = True
        self._schedule()

    def stop(self) -> None:
        self.running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        self._handle = self._loop.call_later(self.interval, self._fire)

    def _fire(self) -> None:
        if not self.running:
            return
        # Reschedule first: the callback may stop the ticker.
        self._schedule()
        self._callback()
