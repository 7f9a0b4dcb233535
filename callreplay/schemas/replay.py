"""
Schemas for the replay and synthesis API.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from callreplay.speakers import Speaker


class SegmentOut(BaseModel):
    """One utterance on the replay timeline."""

    index: int | None = Field(None, description="Line position in the source transcript")
    speaker: Speaker
    text: str
    timestamp: float = Field(..., ge=0.0, description="Start offset in seconds")
    duration: float = Field(..., gt=0.0, description="Duration in seconds")


class ReplayResponse(BaseModel):
    """Response body for GET/POST /api/replays/{call_id}."""

    call_id: str
    duration: float = Field(..., description="Timeline length: max end offset over segments")
    segments: list[SegmentOut]


class SynthesizeRequest(BaseModel):
    """Request body for POST /api/synthesize."""

    text: str = Field(..., min_length=1, description="Text to speak")
    speaker: Speaker = Field("prospect", description="Selects the voice")


class SynthesizeResponse(BaseModel):
    audio: str = Field(..., description="Base64 audio")
    mime_type: str
    size: int = Field(..., description="Decoded audio size in bytes")


class ReplayControl(BaseModel):
    """Client -> server message on /ws/replay/{call_id}."""

    action: Literal["play", "pause", "seek", "volume", "rate", "skip_back", "skip_forward"]
    value: float | None = Field(None, description="seek: seconds; volume: 0..1; rate: multiplier")
