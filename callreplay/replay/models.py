"""
Replay data model: timestamped utterance segments, playable audio handles,
and the mutable playback state of one replay session.

Segments may overlap or leave gaps in source data; the scheduler decides which
one is active (see scheduler.find_active_segment). A segment's audio handle is
filled lazily by the AudioResolver and lives as long as the replay session.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any

from callreplay.speakers import Speaker, role_to_speaker

NO_SEGMENT = -1


class AudioHandle:
    """
    Playable audio for one segment: raw bytes + MIME type, or an external URL
    when the store already had audio for the segment.
    After release() the handle carries no data and is_released is True.
    """

    def __init__(self, data: bytes | None = None, mime_type: str = "audio/mpeg", url: str | None = None) -> None:
        self._data = data
        self.mime_type = mime_type
        self._url = url
        self._released = False

    @property
    def data(self) -> bytes | None:
        return self._data

    @property
    def url(self) -> str | None:
        """External URL, or a data: URI built from the bytes."""
        if self._url:
            return self._url
        if self._data:
            return f"data:{self.mime_type};base64,{self.to_base64()}"
        return None

    @property
    def size(self) -> int:
        return len(self._data or b"")

    @property
    def is_released(self) -> bool:
        return self._released

    def to_base64(self) -> str:
        return base64.b64encode(self._data or b"").decode("ascii")

    def release(self) -> None:
        """Drop audio data. Idempotent."""
        self._data = None
        self._url = None
        self._released = True

    def __repr__(self) -> str:
        return f"AudioHandle(mime_type={self.mime_type!r}, size={self.size}, released={self._released})"


@dataclass(eq=False)
class Segment:
    """
    One speaker utterance on the replay timeline.

    start_offset, duration: seconds from the start of the replay.
    audio_handle: cached audio; None until resolved.
    index: position in the source transcript (informational).
    """

    speaker: Speaker
    text: str
    start_offset: float
    duration: float
    audio_handle: AudioHandle | None = None
    index: int | None = None

    def __post_init__(self) -> None:
        if self.start_offset < 0:
            raise ValueError(f"start_offset must be >= 0, got {self.start_offset}")
        if self.duration <= 0:
            raise ValueError(f"duration must be > 0, got {self.duration}")

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.duration

    def contains(self, t: float) -> bool:
        """Half-open interval test: start_offset <= t < end_offset."""
        return self.start_offset <= t < self.end_offset

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Segment":
        """
        Build from a persisted row. Accepts "timestamp" or "start_offset" for the
        start time and an optional "audioUrl"/"audio_url" for pre-cached audio.
        Raises ValueError / KeyError / TypeError on unusable rows.
        """
        start = data.get("start_offset", data.get("timestamp"))
        if start is None:
            raise KeyError("timestamp")
        audio_url = data.get("audio_url") or data.get("audioUrl")
        return cls(
            speaker=role_to_speaker(data.get("speaker")),
            text=str(data.get("text") or ""),
            start_offset=float(start),
            duration=float(data["duration"]),
            audio_handle=AudioHandle(url=audio_url) if audio_url else None,
            index=data.get("index"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "speaker": self.speaker,
            "text": self.text,
            "timestamp": self.start_offset,
            "duration": self.duration,
        }


def timeline_duration(segments: list[Segment]) -> float:
    """Max end offset over all segments; 0.0 for an empty list."""
    return max((s.end_offset for s in segments), default=0.0)


@dataclass
class PlaybackState:
    """
    Mutable state of one replay session. 0 <= current_time <= duration always holds;
    only the PlaybackClock and the SegmentScheduler write to it.
    """

    is_playing: bool = False
    current_time: float = 0.0
    duration: float = 0.0
    volume: float = 1.0
    rate: float = 1.0
    active_segment_index: int = NO_SEGMENT
    is_loading: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_playing": self.is_playing,
            "current_time": round(self.current_time, 3),
            "duration": self.duration,
            "volume": self.volume,
            "rate": self.rate,
            "active_segment_index": self.active_segment_index,
            "is_loading": self.is_loading,
            "error": self.error,
        }
