"""Live transcript: event decoding and dispatch, interim/final merge, append-only persistence."""
from callreplay.transcript.dispatch import EventDispatchAdapter, normalize_event
from callreplay.transcript.events import (
    CallEnd,
    CallStart,
    EventSource,
    LocalEventSource,
    TranscriptEvent,
)
from callreplay.transcript.frames import decode_message
from callreplay.transcript.merger import (
    InterimBuffer,
    RenderEntry,
    TranscriptChunk,
    TranscriptMergeEngine,
)
from callreplay.transcript.session import LiveTranscriptSession
from callreplay.transcript.writer import TranscriptWriterBase, create_transcript_writer

__all__ = [
    "CallEnd",
    "CallStart",
    "EventDispatchAdapter",
    "EventSource",
    "InterimBuffer",
    "LiveTranscriptSession",
    "LocalEventSource",
    "RenderEntry",
    "TranscriptChunk",
    "TranscriptEvent",
    "TranscriptMergeEngine",
    "TranscriptWriterBase",
    "create_transcript_writer",
    "decode_message",
    "normalize_event",
]
