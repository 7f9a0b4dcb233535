"""Replay player: timestamped segments, playback clock, segment scheduler, on-demand audio."""
from callreplay.replay.audio import AudioOutput, AudioResolver, NullAudioOutput
from callreplay.replay.clock import PlaybackClock, RepeatingTimer
from callreplay.replay.models import NO_SEGMENT, AudioHandle, PlaybackState, Segment, timeline_duration
from callreplay.replay.player import ReplayPlayer
from callreplay.replay.scheduler import SegmentScheduler, find_active_segment
from callreplay.replay.segmentation import format_transcript_line, parse_transcript_with_timestamps
from callreplay.replay.store import (
    CallNotFoundError,
    FileReplayStore,
    ReplayLoadError,
    ReplayStore,
    load_replay_segments,
)

__all__ = [
    "AudioHandle",
    "AudioOutput",
    "AudioResolver",
    "CallNotFoundError",
    "FileReplayStore",
    "NO_SEGMENT",
    "NullAudioOutput",
    "PlaybackClock",
    "PlaybackState",
    "RepeatingTimer",
    "ReplayLoadError",
    "ReplayPlayer",
    "ReplayStore",
    "Segment",
    "SegmentScheduler",
    "find_active_segment",
    "format_transcript_line",
    "load_replay_segments",
    "parse_transcript_with_timestamps",
    "timeline_duration",
]
