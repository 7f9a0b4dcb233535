"""
TTS engine interface. Implementations: Edge TTS (local, free), OpenAI speech API.
"""
from __future__ import annotations

from abc import ABC, abstractmethod


class TTSEngine(ABC):
    """Abstract TTS. synthesize(text, voice) returns (audio_bytes, mime_type)."""

    @abstractmethod
    async def synthesize(self, text: str, voice: str | None = None) -> tuple[bytes, str]:
        """
        Convert text to speech with the given voice (engine default when None).
        Returns (raw_audio_bytes, mime_type), e.g. (mp3_bytes, "audio/mpeg").
        Empty bytes means no audio was produced.
        """
        ...

    @property
    @abstractmethod
    def format(self) -> str:
        """MIME type of output, e.g. 'audio/mpeg'."""
        ...
