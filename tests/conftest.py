"""Shared fakes for replay and transcript tests."""
import asyncio
from typing import Any

import pytest

from callreplay.replay.audio import AudioOutput
from callreplay.replay.models import AudioHandle, Segment
from callreplay.replay.store import CallNotFoundError, ReplayStore
from callreplay.tts.base import TTSEngine


class FakeTTSEngine(TTSEngine):
    """Returns b"audio:<text>"; optionally blocks on a gate or fails."""

    def __init__(self, fail: bool = False, empty: bool = False) -> None:
        self.calls: list[tuple[str, str | None]] = []
        self.gate: asyncio.Event | None = None
        self.fail = fail
        self.empty = empty

    @property
    def format(self) -> str:
        return "audio/mpeg"

    async def synthesize(self, text: str, voice: str | None = None) -> tuple[bytes, str]:
        self.calls.append((text, voice))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("tts down")
        if self.empty:
            return b"", self.format
        return f"audio:{text}".encode(), self.format


class RecordingOutput(AudioOutput):
    def __init__(self) -> None:
        self.played: list[int] = []
        self.stops = 0
        self.volume: float | None = None
        self.rate: float | None = None
        self.closed = False

    def play(self, handle: AudioHandle, volume: float, rate: float, segment_index: int) -> None:
        self.played.append(segment_index)

    def stop(self) -> None:
        self.stops += 1

    def set_volume(self, volume: float) -> None:
        self.volume = volume

    def set_rate(self, rate: float) -> None:
        self.rate = rate

    def close(self) -> None:
        self.closed = True
        super().close()


class InMemoryReplayStore(ReplayStore):
    def __init__(self, replays: dict[str, list[dict[str, Any]]] | None = None, fail: bool = False) -> None:
        self.replays = dict(replays or {})
        self.fail = fail
        self.created: list[str] = []

    async def get_replay(self, call_id: str) -> list[dict[str, Any]] | None:
        if self.fail:
            raise OSError("store unavailable")
        return self.replays.get(call_id)

    async def create_replay(self, call_id: str) -> list[dict[str, Any]]:
        raise CallNotFoundError(call_id)


def make_segments(*spans: tuple[float, float]) -> list[Segment]:
    return [
        Segment(speaker="prospect" if i % 2 else "user", text=f"line {i}", start_offset=start, duration=duration, index=i)
        for i, (start, duration) in enumerate(spans)
    ]


@pytest.fixture
def engine():
    return FakeTTSEngine()


@pytest.fixture
def output():
    return RecordingOutput()
