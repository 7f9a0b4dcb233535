"""
SegmentScheduler: maps replay time to the active segment and plays its audio
once per activation.

A transition happens when a tick lands in a different segment: stop what is
playing, resolve audio for the new segment, play it when ready. Gaps between
segments update the displayed index only. Resolution runs as a task and can
outlive several ticks. A newer transition supersedes it through a generation
counter: the old task still finishes (and may cache its audio) but never starts
playback. Audio always starts at the segment's own beginning; transcript and
audio are only approximately in sync.
"""
from __future__ import annotations

import asyncio
import logging

from callreplay.replay.audio import AudioOutput, AudioResolver
from callreplay.replay.models import NO_SEGMENT, PlaybackState, Segment

logger = logging.getLogger(__name__)


def find_active_segment(segments: list[Segment], t: float) -> int:
    """
    Index of the segment whose [start, end) contains t, or NO_SEGMENT.
    Overlaps: earliest start_offset wins; equal starts resolve by list order.
    """
    best = NO_SEGMENT
    for i, segment in enumerate(segments):
        if segment.contains(t) and (best == NO_SEGMENT or segment.start_offset < segments[best].start_offset):
            best = i
    return best


class SegmentScheduler:
    """Drives segment activation and audio playback from clock ticks."""

    def __init__(
        self,
        segments: list[Segment],
        resolver: AudioResolver,
        output: AudioOutput,
        state: PlaybackState,
    ) -> None:
        self._segments = segments
        self._resolver = resolver
        self._output = output
        self._state = state
        self._current = NO_SEGMENT  # index whose audio was last triggered
        self._generation = 0
        self._pending: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def current_index(self) -> int:
        return self._current

    def on_tick(self, t: float) -> None:
        index = find_active_segment(self._segments, t)
        self._state.active_segment_index = index
        # A gap keeps the last segment's audio going until the next segment starts
        if index == NO_SEGMENT or index == self._current:
            return
        self._transition(index)

    def refresh(self, t: float) -> None:
        """Display-only lookup (after a seek); never triggers audio."""
        self._state.active_segment_index = find_active_segment(self._segments, t)

    def invalidate(self) -> None:
        """Forget the active segment so the next tick starts it again from scratch."""
        self._current = NO_SEGMENT
        self._generation += 1
        self._output.stop()

    def _transition(self, index: int) -> None:
        self._current = index
        self._generation += 1
        self._output.stop()
        logger.debug("Transition to segment %d at %.2fs", index, self._state.current_time)
        task = asyncio.create_task(self._resolve_and_play(index, self._generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._pending = task

    async def _resolve_and_play(self, index: int, generation: int) -> None:
        segment = self._segments[index]
        handle = await self._resolver.resolve(segment)
        if generation != self._generation:
            logger.debug("Segment %d superseded; discarding resolved audio", index)
            return
        if handle is None:
            logger.debug("No audio for segment %d; transcript only", index)
            return
        if not self._state.is_playing:
            return
        self._output.play(handle, self._state.volume, self._state.rate, index)

    async def wait_idle(self) -> None:
        """Wait for the latest resolve/play task to finish."""
        task = self._pending
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        self._generation += 1
        self._pending = None
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._output.stop()
