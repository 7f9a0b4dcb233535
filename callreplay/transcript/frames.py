"""
Inbound "message" frames from the live call event source, decoded into one
well-defined variant before any field is read.

The source sends three message shapes that carry speech:
- transcript:           {"type": "transcript", "role", "transcript", "transcriptType" | "isFinal", "source"?}
  where "transcript" is a plain string or an object with text / transcript / content
- conversation-update:  {"type": "conversation-update", "conversation": [{"role", "content"}, ...]}
- speech-update:        {"type": "speech-update", "role", "speech": {"text"}}
Other message types (status, function calls, ...) decode to None.
"""
from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

PARTIAL_TYPES = ("partial", "interim")


class _Frame(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TranscriptBody(_Frame):
    """Object form of a transcript field."""

    text: str | None = None
    transcript: str | None = None
    content: str | None = None


class TranscriptFrame(_Frame):
    type: Literal["transcript"]
    transcript: str | TranscriptBody | None = None
    role: str | None = None
    transcript_type: str | None = Field(None, alias="transcriptType")
    is_final_flag: bool | None = Field(None, alias="isFinal")
    source: str | None = None
    timestamp: float | None = None

    def extract_text(self) -> str:
        """Plain string, else .text, else .transcript, else .content; first non-empty wins."""
        body = self.transcript
        if isinstance(body, str):
            return body
        if body is None:
            return ""
        for candidate in (body.text, body.transcript, body.content):
            if candidate and candidate.strip():
                return candidate
        return ""

    def is_final(self) -> bool:
        """transcriptType wins over isFinal; neither present -> final."""
        if self.transcript_type:
            return self.transcript_type.strip().lower() not in PARTIAL_TYPES
        if self.is_final_flag is not None:
            return self.is_final_flag
        return True


class ConversationEntry(_Frame):
    role: str | None = None
    content: str | None = None


class ConversationUpdateFrame(_Frame):
    type: Literal["conversation-update"]
    conversation: list[ConversationEntry] = Field(default_factory=list)


class SpeechBody(_Frame):
    text: str | None = None


class SpeechUpdateFrame(_Frame):
    type: Literal["speech-update"]
    role: str | None = None
    speech: SpeechBody | None = None


MessageFrame = Annotated[
    Union[TranscriptFrame, ConversationUpdateFrame, SpeechUpdateFrame],
    Field(discriminator="type"),
]

_KNOWN_TYPES = {"transcript", "conversation-update", "speech-update"}
_adapter: TypeAdapter[MessageFrame] = TypeAdapter(MessageFrame)


def decode_message(payload: Any) -> TranscriptFrame | ConversationUpdateFrame | SpeechUpdateFrame | None:
    """
    Classify a raw message payload. Unknown types -> None (debug log);
    malformed known types -> None (warning log).
    """
    if not isinstance(payload, dict):
        logger.warning("Dropping non-object message frame: %r", type(payload).__name__)
        return None
    frame_type = payload.get("type")
    if frame_type not in _KNOWN_TYPES:
        logger.debug("Ignoring message type %r", frame_type)
        return None
    try:
        return _adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning("Malformed %s frame dropped: %s", frame_type, e.errors()[:3])
        return None
