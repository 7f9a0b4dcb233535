"""
Edge TTS engine (Microsoft Edge online TTS). Free, no API key.
On 403 from Microsoft: check network/region or set TTS_BACKEND=none.
"""
from __future__ import annotations

import logging
import re
from typing import Iterator, List

import edge_tts

from callreplay.config import get_settings
from callreplay.tts.base import TTSEngine

logger = logging.getLogger(__name__)

DEFAULT_VOICE = "en-US-GuyNeural"

# Requests above this size get 403s; longer utterances are sent in pieces and the MP3s concatenated
MAX_CHARS_PER_REQUEST = 800

_SENTENCE_END_RE = re.compile(r"(?<=[.!?\n])\s+")


def iter_text_pieces(text: str, limit: int = MAX_CHARS_PER_REQUEST) -> Iterator[str]:
    """Yield pieces of at most limit chars, cutting between sentences where possible."""
    buffered = ""
    for sentence in _SENTENCE_END_RE.split((text or "").strip()):
        if not sentence:
            continue
        candidate = f"{buffered} {sentence}" if buffered else sentence
        if len(candidate) <= limit:
            buffered = candidate
            continue
        if buffered:
            yield buffered
        # A single sentence over the limit is cut hard
        while len(sentence) > limit:
            yield sentence[:limit]
            sentence = sentence[limit:]
        buffered = sentence
    if buffered:
        yield buffered


class EdgeTTSEngine(TTSEngine):
    """TTS via edge-tts. Output: MP3. rate is an edge-tts prosody string such as "+10%"."""

    def __init__(self, voice: str | None = None, rate: str | None = None) -> None:
        self._voice = (voice or DEFAULT_VOICE).strip() or DEFAULT_VOICE
        self._rate = rate or get_settings().TTS_EDGE_RATE

    @property
    def format(self) -> str:
        return "audio/mpeg"

    async def _stream_piece(self, piece: str, voice: str) -> bytes:
        """MP3 bytes for one request; b"" when the service refuses or drops the stream."""
        audio = bytearray()
        try:
            async for message in edge_tts.Communicate(piece, voice, rate=self._rate).stream():
                if message.get("type") == "audio" and message.get("data"):
                    audio.extend(message["data"])
        except Exception as e:
            logger.error("Edge TTS stream failed for voice %s (403 = region/network?): %s", voice, e)
            return b""
        return bytes(audio)

    async def synthesize(self, text: str, voice: str | None = None) -> tuple[bytes, str]:
        voice = (voice or "").strip() or self._voice
        parts: List[bytes] = []
        for piece in iter_text_pieces(text):
            audio = await self._stream_piece(piece, voice)
            if not audio:
                # Stop at the first failed piece
                logger.warning("Edge TTS returned no audio for a %d-char piece", len(piece))
                break
            parts.append(audio)
        return b"".join(parts), self.format
