"""
PlaybackClock: virtual replay time advanced by a repeating timer.

Each tick moves current_time forward by the tick interval (times the playback
rate when REPLAY_RATE_SCALES_CLOCK is on) and then notifies the scheduler.
Reaching the end of the timeline pauses playback. Ticks never overlap: the
next one is scheduled only after the previous callback returned.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Callable

from callreplay.config import get_settings
from callreplay.replay.models import PlaybackState

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """
    Calls callback every interval seconds on the running event loop until cancelled.
    cancel() is idempotent and safe from inside the callback.
    """

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self._interval = interval
        self._callback = callback
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self._callback()
            except Exception:
                logger.exception("Timer callback failed")

    def cancel(self) -> None:
        task = self._task
        self._task = None
        # From inside the callback this takes effect at the next sleep
        if task is not None and not task.done():
            task.cancel()


class PlaybackClock:
    """
    Owns play / pause / seek / volume / rate on a PlaybackState.

    on_tick(t): called after every advance with the new current_time.
    on_halt(): called on pause (stop in-flight audio).
    on_seek(t): called after a seek (invalidate the active segment).
    drive_timer=False leaves ticking to the caller (tick()), e.g. in tests.
    """

    def __init__(
        self,
        state: PlaybackState,
        tick_interval: float | None = None,
        rate_scales_clock: bool | None = None,
        min_rate: float | None = None,
        max_rate: float | None = None,
        on_tick: Callable[[float], None] | None = None,
        on_halt: Callable[[], None] | None = None,
        on_seek: Callable[[float], None] | None = None,
        drive_timer: bool = True,
    ) -> None:
        settings = get_settings()
        self._state = state
        self._tick_interval = (
            tick_interval if tick_interval is not None else settings.REPLAY_TICK_INTERVAL_MS / 1000.0
        )
        self._rate_scales_clock = (
            rate_scales_clock if rate_scales_clock is not None else settings.REPLAY_RATE_SCALES_CLOCK
        )
        self._min_rate = min_rate if min_rate is not None else settings.REPLAY_MIN_RATE
        self._max_rate = max_rate if max_rate is not None else settings.REPLAY_MAX_RATE
        self._on_tick = on_tick
        self._on_halt = on_halt
        self._on_seek = on_seek
        self._drive_timer = drive_timer
        self._timer = RepeatingTimer(self._tick_interval, self.tick)

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def tick_interval(self) -> float:
        return self._tick_interval

    @property
    def timer_running(self) -> bool:
        return self._timer.running

    def play(self) -> None:
        if self._state.is_playing or self._state.duration <= 0:
            return
        self._state.is_playing = True
        if self._drive_timer:
            self._timer.start()

    def pause(self) -> None:
        self._state.is_playing = False
        self._timer.cancel()
        if self._on_halt:
            self._on_halt()

    def seek(self, t: float) -> None:
        if not math.isfinite(t):
            return
        self._state.current_time = min(max(0.0, t), self._state.duration)
        if self._on_seek:
            self._on_seek(self._state.current_time)

    def set_volume(self, volume: float) -> None:
        if not math.isfinite(volume):
            return
        self._state.volume = min(max(0.0, volume), 1.0)

    def set_rate(self, rate: float) -> None:
        if not math.isfinite(rate):
            return
        self._state.rate = min(max(self._min_rate, rate), self._max_rate)

    def tick(self) -> None:
        """Advance virtual time by one interval; pause once the end is reached."""
        if not self._state.is_playing:
            return
        step = self._tick_interval * (self._state.rate if self._rate_scales_clock else 1.0)
        new_time = self._state.current_time + step
        self._state.current_time = min(new_time, self._state.duration)
        if self._on_tick:
            self._on_tick(self._state.current_time)
        if new_time >= self._state.duration:
            logger.debug("End of timeline at %.2fs", self._state.duration)
            self.pause()

    def stop(self) -> None:
        """Teardown: stop ticking without callbacks."""
        self._state.is_playing = False
        self._timer.cancel()
