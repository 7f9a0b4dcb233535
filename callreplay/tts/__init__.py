"""
TTS: text-to-speech for replay segments.

- edge: Edge TTS (local / free, Microsoft).
- openai: OpenAI speech API.
"""
from __future__ import annotations

from callreplay.tts.base import TTSEngine
from callreplay.tts.edge_tts import EdgeTTSEngine
from callreplay.tts.openai_tts import OpenAITTSEngine
from callreplay.tts.service import get_tts_engine, synthesize_speech, voice_map

__all__ = [
    "TTSEngine",
    "EdgeTTSEngine",
    "OpenAITTSEngine",
    "get_tts_engine",
    "synthesize_speech",
    "voice_map",
]
