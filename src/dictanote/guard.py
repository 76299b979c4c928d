"""Maximum recording duration enforcement."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from .config import DEFAULT_DURATION_MINUTES, valid_duration
from .errors import GuardBusy, InvalidDuration

logger = logging.getLogger(__name__)


def format_elapsed(elapsed_ms: int) -> str:
    minutes, rest = divmod(max(int(elapsed_ms), 0), 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{minutes:02d}:{seconds:02d}.{millis // 10:02d}"


class DurationGuard:
    """Tracks elapsed capture time and forces a stop at the configured limit.

    The limit is expressed in whole minutes (1-120). While armed, the guard
    reports elapsed time every ``tick_interval_ms`` and owns a one-shot timer
    that fires the forced-stop callback. Both are cleared by ``disarm``.
    """

    ms_per_minute = 60_000

    def __init__(
        self,
        minutes: int = DEFAULT_DURATION_MINUTES,
        tick_interval_ms: int = 10,
        notifier: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not valid_duration(minutes):
            raise InvalidDuration(f"{minutes!r} is outside 1-120 minutes.")
        self._minutes = minutes
        self.tick_interval_ms = tick_interval_ms
        self._notifier = notifier
        self._clock = clock
        self._started_at: Optional[float] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._ticker: Optional[asyncio.Task] = None
        self._on_forced_stop: Optional[Callable[[], Any]] = None
        self._forced_task: Optional[asyncio.Task] = None
        self.forced = False

    @property
    def minutes(self) -> int:
        return self._minutes

    @property
    def max_duration_ms(self) -> int:
        return self._minutes * self.ms_per_minute

    @property
    def armed(self) -> bool:
        return self._started_at is not None

    def set_minutes(self, value: object) -> int:
        if self.armed:
            raise GuardBusy("Duration change rejected while recording.")
        if not valid_duration(value):
            raise InvalidDuration(f"{value!r} is outside 1-120 minutes.")
        self._minutes = value  # type: ignore[assignment]
        logger.info("Max recording duration set to %s min", value)
        return self._minutes

    def elapsed_ms(self) -> int:
        if self._started_at is None:
            return 0
        return int((self._clock() - self._started_at) * 1000)

    def arm(
        self,
        on_forced_stop: Callable[[], Any],
        on_tick: Optional[Callable[[int], None]] = None,
    ) -> None:
        if self.armed:
            raise GuardBusy("Guard is already armed.")
        loop = asyncio.get_running_loop()
        self.forced = False
        self._on_forced_stop = on_forced_stop
        self._started_at = self._clock()
        self._timer = loop.call_later(self.max_duration_ms / 1000, self._fire)
        if on_tick is not None:
            self._ticker = loop.create_task(self._tick_loop(on_tick))

    def disarm(self) -> int:
        elapsed = self.elapsed_ms()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        self._started_at = None
        self._on_forced_stop = None
        return elapsed

    async def wait_forced(self) -> None:
        """Wait for a forced-stop callback that is still running."""
        if self._forced_task is not None:
            await self._forced_task

    async def _tick_loop(self, on_tick: Callable[[int], None]) -> None:
        interval = self.tick_interval_ms / 1000
        while self.armed:
            on_tick(self.elapsed_ms())
            await asyncio.sleep(interval)

    def _fire(self) -> None:
        self._timer = None
        callback = self._on_forced_stop
        if not self.armed or callback is None:
            return
        self.forced = True
        elapsed = self.disarm()
        logger.info("Duration limit reached after %s ms (%s min)", elapsed, self._minutes)
        if self._notifier is not None:
            try:
                self._notifier()
            except Exception as exc:
                logger.warning("Limit notification failed: %s", exc)
        result = callback()
        if asyncio.iscoroutine(result):
            self._forced_task = asyncio.get_running_loop().create_task(result)
