import base64
import json

import httpx
import pytest

from callreplay.config import Settings
from callreplay.tts.edge_tts import EdgeTTSEngine, iter_text_pieces
from callreplay.tts.openai_tts import OpenAITTSEngine
from callreplay.tts.service import get_tts_engine, synthesize_speech, voice_map
from callreplay.utils.retry import retry_async

from conftest import FakeTTSEngine


class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise RuntimeError("nope")
            return "ok"

        assert await retry_async(flaky, max_attempts=3, base_delay=0) == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise ValueError(f"fail {len(attempts)}")

        with pytest.raises(ValueError, match="fail 2"):
            await retry_async(broken, max_attempts=2, base_delay=0)

    @pytest.mark.asyncio
    async def test_zero_attempts_means_one(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise ValueError("x")

        with pytest.raises(ValueError):
            await retry_async(broken, max_attempts=0)
        assert len(attempts) == 1


class TestEngineSelection:
    def test_none_backend(self):
        assert get_tts_engine(Settings(TTS_BACKEND="none")) is None

    def test_edge_backend(self):
        assert isinstance(get_tts_engine(Settings(TTS_BACKEND="edge")), EdgeTTSEngine)

    def test_openai_without_key_is_disabled(self):
        assert get_tts_engine(Settings(TTS_BACKEND="openai", OPENAI_API_KEY="")) is None

    def test_openai_with_key(self):
        assert isinstance(get_tts_engine(Settings(TTS_BACKEND="openai", OPENAI_API_KEY="k")), OpenAITTSEngine)

    def test_voices_differ_per_speaker(self):
        edge = voice_map(Settings(TTS_BACKEND="edge"))
        assert edge["prospect"] != edge["user"]
        openai = voice_map(Settings(TTS_BACKEND="openai"))
        assert openai == {"prospect": "alloy", "user": "nova"}


class TestSynthesizeSpeech:
    @pytest.mark.asyncio
    async def test_returns_base64(self):
        engine = FakeTTSEngine()
        audio, mime = await synthesize_speech("hi", "user", engine=engine, voices={"user": "u", "prospect": "p"})
        assert base64.b64decode(audio) == b"audio:hi"
        assert mime == "audio/mpeg"
        assert engine.calls == [("hi", "u")]

    @pytest.mark.asyncio
    async def test_failure_returns_none(self):
        audio, mime = await synthesize_speech("hi", engine=FakeTTSEngine(fail=True), voices={})
        assert audio is None
        assert mime == ""

    @pytest.mark.asyncio
    async def test_blank_text(self):
        assert await synthesize_speech("  ", engine=FakeTTSEngine()) == (None, "")


class TestOpenAITTSEngine:
    @pytest.mark.asyncio
    async def test_posts_speech_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"mp3-bytes")

        engine = OpenAITTSEngine(
            api_key="sk-test", model="tts-1", voice="alloy", url="https://tts.test/v1/audio/speech",
            timeout=5, max_attempts=1, transport=httpx.MockTransport(handler),
        )
        audio, mime = await engine.synthesize(" Hello ", "nova")
        assert audio == b"mp3-bytes"
        assert mime == "audio/mpeg"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {"model": "tts-1", "input": "Hello", "voice": "nova", "response_format": "mp3"}

    @pytest.mark.asyncio
    async def test_http_error_raises_after_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(500, text="server error")

        engine = OpenAITTSEngine(
            api_key="sk-test", url="https://tts.test/v1/audio/speech", max_attempts=2,
            transport=httpx.MockTransport(handler),
        )
        with pytest.raises(RuntimeError, match="500"):
            await engine.synthesize("Hello")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_missing_key(self):
        engine = OpenAITTSEngine(api_key="", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
            await engine.synthesize("Hello")


class TestTextPieces:
    def test_short_text_is_one_piece(self):
        assert list(iter_text_pieces("  Hello there.  ")) == ["Hello there."]
        assert list(iter_text_pieces("   ")) == []

    def test_cuts_between_sentences(self):
        text = "One sentence here. " * 20
        pieces = list(iter_text_pieces(text, limit=60))
        assert all(len(p) <= 60 for p in pieces)
        assert all(p.endswith(".") for p in pieces)
        assert " ".join(pieces).split() == text.split()

    def test_hard_cut_for_long_sentence(self):
        pieces = list(iter_text_pieces("x" * 25, limit=10))
        assert pieces == ["x" * 10, "x" * 10, "x" * 5]
