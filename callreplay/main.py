"""
FastAPI app: call replay and live transcript service.

HTTP API: replay segment lists (load-or-create) and one-off speech synthesis.
WebSocket:
  /ws/replay/{call_id}  server-driven replay of a completed call
  /ws/transcript        live transcript merge for an in-progress call
"""
from __future__ import annotations

import base64
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from callreplay.config import get_settings
from callreplay.logging_setup import setup_logging
from callreplay.replay.models import Segment, timeline_duration
from callreplay.replay.store import (
    CallNotFoundError,
    FileReplayStore,
    ReplayLoadError,
    ReplayStore,
    load_replay_segments,
    segments_from_rows,
)
from callreplay.schemas.replay import (
    ReplayResponse,
    SegmentOut,
    SynthesizeRequest,
    SynthesizeResponse,
)
from callreplay.tts.service import get_tts_engine, synthesize_speech, voice_map
from callreplay.websocket_manager import LiveTranscriptWebSocketManager, ReplayWebSocketManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings)
    app.state.replay_store = FileReplayStore(settings.REPLAY_DIR, settings.TRANSCRIPT_DIR)
    app.state.tts_engine = get_tts_engine(settings)
    app.state.voices = voice_map(settings)
    logger.info(
        "Service ready: replays=%s transcripts=%s tts=%s",
        settings.REPLAY_DIR,
        settings.TRANSCRIPT_DIR,
        settings.TTS_BACKEND,
    )
    yield
    app.state.tts_engine = None


app = FastAPI(
    title="Call Replay",
    description="Timed TTS replay of completed calls and live transcript merging",
    lifespan=lifespan,
)


def _replay_response(call_id: str, segments: list[Segment]) -> ReplayResponse:
    return ReplayResponse(
        call_id=call_id,
        duration=timeline_duration(segments),
        segments=[SegmentOut(**s.to_dict()) for s in segments],
    )


def _load_error(call_id: str, message: str, cause: BaseException | None) -> HTTPException:
    if isinstance(cause, CallNotFoundError):
        return HTTPException(status_code=404, detail=f"Call not found: {call_id}")
    logger.error("Replay load failed for call %s: %s (%s)", call_id, message, cause)
    return HTTPException(status_code=502, detail=message)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/api/replays/{call_id}", response_model=ReplayResponse)
async def get_replay(call_id: str, request: Request) -> ReplayResponse:
    """Stored segment list for the call; created from its transcript on first request."""
    store: ReplayStore = request.app.state.replay_store
    try:
        segments = await load_replay_segments(store, call_id)
    except ReplayLoadError as e:
        raise _load_error(call_id, str(e), e.__cause__) from e
    return _replay_response(call_id, segments)


@app.post("/api/replays/{call_id}", response_model=ReplayResponse)
async def create_replay(call_id: str, request: Request) -> ReplayResponse:
    """Rebuild the segment list from the stored transcript, replacing any existing one."""
    store: ReplayStore = request.app.state.replay_store
    try:
        rows = await store.create_replay(call_id)
    except Exception as e:
        raise _load_error(call_id, "Failed to create replay", e) from e
    return _replay_response(call_id, segments_from_rows(rows))


@app.post("/api/synthesize", response_model=SynthesizeResponse)
async def synthesize(body: SynthesizeRequest, request: Request) -> SynthesizeResponse:
    engine = request.app.state.tts_engine
    if engine is None:
        raise HTTPException(status_code=503, detail="TTS is disabled")
    audio, mime = await synthesize_speech(body.text, body.speaker, engine=engine, voices=request.app.state.voices)
    if not audio:
        raise HTTPException(status_code=502, detail="Speech synthesis failed")
    return SynthesizeResponse(audio=audio, mime_type=mime, size=len(base64.b64decode(audio)))


async def _close_websocket(websocket: WebSocket) -> None:
    """Close from the server side unless the client already went away."""
    if websocket.client_state != WebSocketState.CONNECTED:
        return
    try:
        await websocket.close()
    except Exception as e:
        logger.debug("WebSocket close failed: %s", e)


@app.websocket("/ws/replay/{call_id}")
async def websocket_replay(websocket: WebSocket, call_id: str) -> None:
    """
    WebSocket: client sends {"action": ..., "value": ...} controls.
    Server sends JSON: replay (segments), state (each tick/change), audio, stop, error.
    """
    await websocket.accept()
    state = websocket.app.state
    manager = ReplayWebSocketManager(websocket, call_id, state.replay_store, state.tts_engine, state.voices)
    try:
        await manager.run()
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Replay WebSocket failed for call %s", call_id)
    await _close_websocket(websocket)


@app.websocket("/ws/transcript")
async def websocket_transcript(websocket: WebSocket) -> None:
    """
    WebSocket: client sends {"event": "call-start" | "call-end" | "message", "payload": {...}}.
    Server sends JSON: session, transcript (merged view after each change), final_transcript.
    """
    await websocket.accept()
    manager = LiveTranscriptWebSocketManager(websocket)
    try:
        await manager.run()
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Transcript WebSocket failed")
    await _close_websocket(websocket)
