"""
TTS service: pick engine and per-speaker voices from config.
- edge: Edge TTS (free).
- openai: OpenAI speech API (tts-1).
- none: TTS disabled; replay is silent.
synthesize_speech(text, speaker) -> (audio_base64 | None, mime_type).
"""
from __future__ import annotations

import base64
import logging
from typing import Tuple

from callreplay.config import Settings, get_settings
from callreplay.speakers import PROSPECT, USER, Speaker
from callreplay.tts.base import TTSEngine
from callreplay.tts.edge_tts import EdgeTTSEngine
from callreplay.tts.openai_tts import OpenAITTSEngine

logger = logging.getLogger(__name__)


def get_tts_engine(settings: Settings | None = None) -> TTSEngine | None:
    """Return TTS engine from config (edge / openai / none)."""
    settings = settings or get_settings()
    backend = (settings.TTS_BACKEND or "").strip().lower()
    if backend in ("", "none"):
        return None
    if backend == "edge":
        return EdgeTTSEngine(voice=settings.TTS_EDGE_VOICE_PROSPECT)
    if backend == "openai":
        if not settings.OPENAI_API_KEY:
            logger.warning("TTS_BACKEND=openai but OPENAI_API_KEY is empty; TTS disabled")
            return None
        return OpenAITTSEngine(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_TTS_MODEL,
            voice=settings.OPENAI_TTS_VOICE_PROSPECT,
            url=settings.OPENAI_TTS_URL,
            timeout=settings.OPENAI_TTS_TIMEOUT_SECONDS,
            max_attempts=settings.TTS_RETRY_ATTEMPTS,
        )
    logger.warning("Unknown TTS_BACKEND=%s; use edge, openai or none", backend)
    return None


def voice_map(settings: Settings | None = None) -> dict[Speaker, str]:
    """Voice per speaker for the configured backend. Prospect and user always sound different."""
    settings = settings or get_settings()
    if (settings.TTS_BACKEND or "").strip().lower() == "openai":
        return {PROSPECT: settings.OPENAI_TTS_VOICE_PROSPECT, USER: settings.OPENAI_TTS_VOICE_USER}
    return {PROSPECT: settings.TTS_EDGE_VOICE_PROSPECT, USER: settings.TTS_EDGE_VOICE_USER}


async def synthesize_speech(
    text: str,
    speaker: Speaker = PROSPECT,
    engine: TTSEngine | None = None,
    voices: dict[Speaker, str] | None = None,
) -> Tuple[str | None, str]:
    """
    Generate TTS audio for text in the speaker's voice. Returns (base64_audio, mime_type).
    If TTS disabled or fails, returns (None, "").
    """
    if not (text or "").strip():
        return None, ""
    engine = engine or get_tts_engine()
    if not engine:
        logger.info("TTS disabled (TTS_BACKEND=none or misconfigured); audio=null")
        return None, ""
    voices = voices or voice_map()
    try:
        audio_bytes, mime = await engine.synthesize(text, voices.get(speaker))
    except Exception as e:
        logger.warning("TTS synthesize failed: %s", e)
        return None, ""
    if not audio_bytes:
        logger.warning("TTS returned no audio (engine=%s)", type(engine).__name__)
        return None, mime or "audio/mpeg"
    return base64.b64encode(audio_bytes).decode("ascii"), mime
