"""
OpenAI speech API engine (tts-1, MP3 output). Requires OPENAI_API_KEY.
"""
from __future__ import annotations

import logging

import httpx

from callreplay.config import get_settings
from callreplay.tts.base import TTSEngine
from callreplay.utils.retry import retry_async

logger = logging.getLogger(__name__)

DEFAULT_VOICE = "alloy"


class OpenAITTSEngine(TTSEngine):
    """
    TTS via POST /v1/audio/speech. Raises on HTTP errors so callers can decide
    how to degrade; retries only when max_attempts > 1.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        voice: str | None = None,
        url: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self._model = model or settings.OPENAI_TTS_MODEL
        self._voice = (voice or DEFAULT_VOICE).strip() or DEFAULT_VOICE
        self._url = url or settings.OPENAI_TTS_URL
        self._timeout = timeout if timeout is not None else settings.OPENAI_TTS_TIMEOUT_SECONDS
        self._max_attempts = max_attempts if max_attempts is not None else settings.TTS_RETRY_ATTEMPTS
        self._transport = transport

    @property
    def format(self) -> str:
        return "audio/mpeg"

    async def _request(self, text: str, voice: str) -> bytes:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        body = {"model": self._model, "input": text, "voice": voice, "response_format": "mp3"}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.post(self._url, headers=headers, json=body)
        if resp.status_code != 200:
            raise RuntimeError(f"OpenAI TTS error {resp.status_code}: {resp.text[:200]}")
        return resp.content

    async def synthesize(self, text: str, voice: str | None = None) -> tuple[bytes, str]:
        if not (text or "").strip():
            return b"", self.format
        if not self._api_key:
            raise RuntimeError("OPENAI_API_KEY not configured")
        voice = (voice or "").strip() or self._voice
        text = text.strip()
        logger.info("Synthesizing %d chars with voice %s", len(text), voice)
        audio = await retry_async(lambda: self._request(text, voice), max_attempts=self._max_attempts)
        logger.debug("OpenAI TTS returned %d bytes", len(audio))
        return audio, self.format
