"""
ReplayPlayer: one replay session of a completed call.

Wires store -> segments, PlaybackClock -> SegmentScheduler -> AudioResolver ->
AudioOutput, and exposes the controls surface used by the presentation layer
(play, pause, seek, volume, rate, skip back / forward).

Lifecycle:
- initialize(): loads (or creates) the segment list once. On failure the
  session ends in a terminal error state; controls stay inert.
- close(): stops the clock, cancels the tick timer and pending synthesis,
  revokes synthesized audio and closes the output. Idempotent, safe before
  or during initialize().
"""
from __future__ import annotations

import logging
from typing import Callable

from callreplay.config import get_settings
from callreplay.replay.audio import AudioOutput, AudioResolver, NullAudioOutput
from callreplay.replay.clock import PlaybackClock
from callreplay.replay.models import NO_SEGMENT, PlaybackState, Segment, timeline_duration
from callreplay.replay.scheduler import SegmentScheduler
from callreplay.replay.store import ReplayLoadError, ReplayStore, load_replay_segments

logger = logging.getLogger(__name__)

StateListener = Callable[[PlaybackState], None]


class ReplayPlayer:
    def __init__(
        self,
        call_id: str,
        store: ReplayStore,
        resolver: AudioResolver,
        output: AudioOutput | None = None,
        tick_interval: float | None = None,
        skip_seconds: float | None = None,
        rate_scales_clock: bool | None = None,
        drive_timer: bool = True,
    ) -> None:
        settings = get_settings()
        self._call_id = call_id
        self._store = store
        self._resolver = resolver
        self._output = output or NullAudioOutput()
        self._skip_seconds = skip_seconds if skip_seconds is not None else settings.REPLAY_SKIP_SECONDS
        self._state = PlaybackState(volume=min(max(0.0, settings.REPLAY_DEFAULT_VOLUME), 1.0))
        self._segments: list[Segment] = []
        self._scheduler = SegmentScheduler(self._segments, self._resolver, self._output, self._state)
        self._clock = PlaybackClock(
            self._state,
            tick_interval=tick_interval,
            rate_scales_clock=rate_scales_clock,
            on_tick=self._on_tick,
            on_halt=self._on_halt,
            on_seek=self._on_seek,
            drive_timer=drive_timer,
        )
        self._listeners: list[StateListener] = []
        self._ready = False
        self._closed = False

    @property
    def call_id(self) -> str:
        return self._call_id

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def segments(self) -> list[Segment]:
        return self._segments

    @property
    def clock(self) -> PlaybackClock:
        return self._clock

    @property
    def scheduler(self) -> SegmentScheduler:
        return self._scheduler

    @property
    def is_ready(self) -> bool:
        return self._ready

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Replay state listener failed")

    async def initialize(self) -> bool:
        """Load segments. Returns False (and sets state.error) when replay data is unavailable."""
        if self._ready or self._closed:
            return self._ready
        self._state.is_loading = True
        self._state.error = None
        self._notify()
        try:
            segments = await load_replay_segments(self._store, self._call_id)
        except ReplayLoadError as e:
            logger.error("Error initializing replay for call %s: %s (%s)", self._call_id, e, e.__cause__)
            self._state.is_loading = False
            self._state.error = str(e)
            self._notify()
            return False
        if self._closed:
            return False
        # Mutate in place: the scheduler holds the same list
        self._segments[:] = segments
        self._state.duration = timeline_duration(segments)
        self._state.current_time = 0.0
        self._state.active_segment_index = NO_SEGMENT
        self._state.is_loading = False
        self._ready = True
        logger.info(
            "Replay ready for call %s: %d segments, %.1fs", self._call_id, len(segments), self._state.duration
        )
        self._notify()
        return True

    # --- clock callbacks ---

    def _on_tick(self, t: float) -> None:
        self._scheduler.on_tick(t)
        self._notify()

    def _on_halt(self) -> None:
        self._scheduler.invalidate()
        self._notify()

    def _on_seek(self, t: float) -> None:
        self._scheduler.invalidate()
        self._scheduler.refresh(t)

    # --- controls ---

    def play(self) -> None:
        if not self._ready or self._closed:
            return
        self._clock.play()
        self._notify()

    def pause(self) -> None:
        if not self._ready or self._closed:
            return
        self._clock.pause()

    def seek(self, t: float) -> None:
        if not self._ready or self._closed:
            return
        self._clock.seek(t)
        self._notify()

    def jump_to_time(self, t: float) -> None:
        """Seek used by transcript clicks; same semantics as seek()."""
        self.seek(t)

    def set_volume(self, volume: float) -> None:
        if self._closed:
            return
        self._clock.set_volume(volume)
        self._output.set_volume(self._state.volume)
        self._notify()

    def set_playback_rate(self, rate: float) -> None:
        if self._closed:
            return
        self._clock.set_rate(rate)
        self._output.set_rate(self._state.rate)
        self._notify()

    def skip_back(self) -> None:
        self.seek(self._state.current_time - self._skip_seconds)

    def skip_forward(self) -> None:
        self.seek(self._state.current_time + self._skip_seconds)

    def current_segment(self) -> Segment | None:
        index = self._state.active_segment_index
        if 0 <= index < len(self._segments):
            return self._segments[index]
        return None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._clock.stop()
        await self._scheduler.close()
        await self._resolver.close()
        try:
            self._output.close()
        except Exception as e:
            logger.warning("Audio output close failed: %s", e)
        self._listeners.clear()
        logger.debug("Replay session for call %s closed", self._call_id)
