"""
Game clock
----

A countdown per side, with one second granularity. Only the side on move loses time.

The clock itself does not know about time passing: something has to call `tick()`.
That something is a `Ticker`, a cancellable scheduled task created by the session.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from src.chess.pieces import Color

logger = logging.getLogger(__name__)

DEFAULT_CLOCK_SECONDS = 600


@dataclass
class ChessClock:
    white_seconds: int = DEFAULT_CLOCK_SECONDS
    black_seconds: int = DEFAULT_CLOCK_SECONDS
    running: bool = False
    flagged: Optional[Color] = None

    def remaining(self, color: Color) -> int:
        return self.white_seconds if color == Color.WHITE else self.black_seconds

    def start(self) -> None:
        if self.flagged is None:
            self.running = True

    def stop(self) -> None:
        self.running = False

    def reset(self, seconds: int = DEFAULT_CLOCK_SECONDS) -> None:
        self.white_seconds = seconds
        self.black_seconds = seconds
        self.running = False
        self.flagged = None

    def tick(self, color_to_move: Color) -> Optional[Color]:
        """
        Take one second off the side on move.

        Returns the color that just ran out of time (only once), otherwise None.
        A stopped clock ignores ticks.
        """
        if not self.running:
            return None

        if color_to_move == Color.WHITE:
            self.white_seconds = max(self.white_seconds - 1, 0)
        else:
            self.black_seconds = max(self.black_seconds - 1, 0)

        if self.remaining(color_to_move) == 0:
            self.stop()
            self.flagged = color_to_move
            return color_to_move
        return None


def format_seconds(seconds: int) -> str:
    """10:00, 9:59, 0:05 ..."""
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}:{secs:02d}"


# --- SCHEDULING ---
class Ticker(Protocol):
    def cancel(self) -> None: ...


TickerFactory = Callable[[Callable[[], None]], Ticker]


class AsyncioTicker:
    """Calls `callback` every `interval` seconds on the running event loop until cancelled."""

    def __init__(self, callback: Callable[[], None], interval: float = 1.0) -> None:
        self._callback = callback
        self._interval = interval
        self._loop = asyncio.get_running_loop()
        self._handle: Optional[asyncio.TimerHandle] = None
        self.cancelled = False
        self._schedule()

    def _schedule(self) -> None:
        self._handle = self._loop.call_later(self._interval, self._fire)

    def _fire(self) -> None:
        if self.cancelled:
            return
        try:
            self._callback()
        finally:
            # the callback may have cancelled us (game over)
            if not self.cancelled:
                self._schedule()

    def cancel(self) -> None:
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        logger.debug("Clock ticker cancelled")


def asyncio_ticker_factory(interval: float = 1.0) -> TickerFactory:
    def _create(callback: Callable[[], None]) -> Ticker:
        return AsyncioTicker(callback, interval)

    return _create
