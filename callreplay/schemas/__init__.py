"""Pydantic schemas for API request/response."""
from callreplay.schemas.replay import (
    ReplayControl,
    ReplayResponse,
    SegmentOut,
    SynthesizeRequest,
    SynthesizeResponse,
)

__all__ = [
    "ReplayControl",
    "ReplayResponse",
    "SegmentOut",
    "SynthesizeRequest",
    "SynthesizeResponse",
]
