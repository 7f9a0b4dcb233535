"""Application configuration. Loads from env vars."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    """App settings. Override via environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Replay clock: one tick every N ms of wall-clock time
    REPLAY_TICK_INTERVAL_MS: int = 100
    REPLAY_SKIP_SECONDS: float = 10.0  # skip back / forward step
    REPLAY_DEFAULT_VOLUME: float = 1.0
    # Playback rate bounds; out-of-range requests are clamped, never rejected
    REPLAY_MIN_RATE: float = 0.25
    REPLAY_MAX_RATE: float = 4.0
    # True: virtual clock advances tick * rate, so transcript progress follows audio speed.
    # False: clock advances at wall-clock speed and rate only affects audio playback.
    REPLAY_RATE_SCALES_CLOCK: bool = True

    # Replay segment lists: one JSON file per call_id
    REPLAY_DIR: str = "./replays"

    # Session transcript storage: one .txt per live session, append-only (final chunks only).
    # Files use "You said:" / "Prospect said:" lines so they can be replayed later.
    TRANSCRIPT_SAVE_ENABLED: bool = True
    TRANSCRIPT_DIR: str = "./transcripts"
    # Live view: include the latest interim per (speaker, source) in the render projection
    TRANSCRIPT_SHOW_INTERIM: bool = True
    # finalize(): start a new paragraph after a pause longer than this
    TRANSCRIPT_PARAGRAPH_PAUSE_MS: int = 3000
    # Interims not updated for this long are dropped from the live view (0 = keep until final)
    TRANSCRIPT_INTERIM_MAX_AGE_MS: int = 5000

    # TTS for replay segments: edge = Edge TTS (free), openai = OpenAI speech API, none = silent replay.
    TTS_BACKEND: Literal["edge", "openai", "none"] = "edge"
    TTS_EDGE_VOICE_PROSPECT: str = "en-US-GuyNeural"
    TTS_EDGE_VOICE_USER: str = "en-US-JennyNeural"
    TTS_EDGE_RATE: str = "+0%"  # edge-tts prosody, e.g. "+10%"
    OPENAI_API_KEY: str = ""
    OPENAI_TTS_URL: str = "https://api.openai.com/v1/audio/speech"
    OPENAI_TTS_MODEL: str = "tts-1"
    OPENAI_TTS_VOICE_PROSPECT: str = "alloy"
    OPENAI_TTS_VOICE_USER: str = "nova"
    OPENAI_TTS_TIMEOUT_SECONDS: float = 30.0
    # 1 = single attempt (no retry). Higher values enable exponential backoff.
    TTS_RETRY_ATTEMPTS: int = 1

    # Logging: level (DEBUG, INFO, WARNING, ERROR); file path = also write to file (empty = console only).
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""


def get_settings() -> Settings:
    return Settings()
