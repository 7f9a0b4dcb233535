"""
Audio for replay segments: on-demand synthesis with per-segment caching,
and the output sink that actually plays it.

AudioResolver.resolve() is idempotent per segment: the TTS engine is called at
most once for a segment, even when several resolves overlap. Synthesis
failure is not fatal; the segment simply has no audio (transcript-only replay).
Handles created here live until close(), which revokes them.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Mapping

from callreplay.replay.models import AudioHandle, Segment
from callreplay.speakers import Speaker
from callreplay.tts.base import TTSEngine

logger = logging.getLogger(__name__)


class AudioResolver:
    """Resolve a segment to a playable AudioHandle, synthesizing when needed."""

    def __init__(self, engine: TTSEngine | None, voices: Mapping[Speaker, str] | None = None) -> None:
        self._engine = engine
        self._voices = dict(voices or {})
        self._inflight: dict[int, asyncio.Task[AudioHandle | None]] = {}
        self._owned: list[tuple[Segment, AudioHandle]] = []
        self._closed = False

    def voice_for(self, speaker: Speaker) -> str | None:
        return self._voices.get(speaker)

    async def resolve(self, segment: Segment) -> AudioHandle | None:
        """Cached handle, or synthesize + cache. None when there is no audio."""
        if segment.audio_handle is not None and not segment.audio_handle.is_released:
            return segment.audio_handle
        if self._closed or self._engine is None:
            return None
        key = id(segment)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._synthesize(segment))
            self._inflight[key] = task
            task.add_done_callback(partial(self._forget, key))
        # shield: a superseded caller must not cancel synthesis other callers share
        return await asyncio.shield(task)

    def _forget(self, key: int, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _synthesize(self, segment: Segment) -> AudioHandle | None:
        try:
            audio, mime = await self._engine.synthesize(segment.text, self.voice_for(segment.speaker))
        except Exception as e:
            logger.warning("Synthesis failed for segment %s (%s): %s", segment.index, segment.speaker, e)
            return None
        if not audio:
            logger.warning("Synthesis returned no audio for segment %s", segment.index)
            return None
        if self._closed:
            return None
        handle = AudioHandle(data=audio, mime_type=mime or "audio/mpeg")
        segment.audio_handle = handle
        self._owned.append((segment, handle))
        logger.debug("Synthesized %d bytes for segment %s", handle.size, segment.index)
        return handle

    async def close(self) -> None:
        """Cancel pending synthesis and revoke every handle this resolver created. Idempotent."""
        self._closed = True
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._inflight.clear()
        for segment, handle in self._owned:
            handle.release()
            if segment.audio_handle is handle:
                segment.audio_handle = None
        if self._owned:
            logger.debug("Released %d synthesized audio handles", len(self._owned))
        self._owned.clear()


class AudioOutput(ABC):
    """Where resolved audio is played. Implementations must tolerate stop() when idle."""

    @abstractmethod
    def play(self, handle: AudioHandle, volume: float, rate: float, segment_index: int) -> None:
        """Start playing handle from its beginning, replacing anything playing."""
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @abstractmethod
    def set_volume(self, volume: float) -> None:
        ...

    @abstractmethod
    def set_rate(self, rate: float) -> None:
        ...

    def close(self) -> None:
        self.stop()


class NullAudioOutput(AudioOutput):
    """Headless output: logs what would be played."""

    def __init__(self) -> None:
        self.playing_index: int | None = None

    def play(self, handle: AudioHandle, volume: float, rate: float, segment_index: int) -> None:
        self.playing_index = segment_index
        logger.debug("Play segment %d (%d bytes, volume=%.2f, rate=%.2f)", segment_index, handle.size, volume, rate)

    def stop(self) -> None:
        self.playing_index = None

    def set_volume(self, volume: float) -> None:
        pass

    def set_rate(self, rate: float) -> None:
        pass
