"""
WebSocket session managers.

ReplayWebSocketManager: one WebSocket = one server-driven replay. The client
sends control messages ({"action": "play"} / {"action": "seek", "value": 12.5} ...);
the server streams "replay", "state", "audio", "stop", "volume", "rate" and
"error" JSON messages. Audio arrives as base64 when a segment becomes active.

LiveTranscriptWebSocketManager: one WebSocket = one live call transcript.
The client forwards raw call events as {"event": "message", "payload": {...}}
("call-start" / "call-end" need no payload); the server answers with the merged
render projection after every change and the assembled transcript on call end.

Outgoing messages go through a queue drained by a sender task, so player and
engine callbacks never await the socket.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import WebSocket
from pydantic import ValidationError

from callreplay.replay.audio import AudioOutput, AudioResolver
from callreplay.replay.models import AudioHandle, PlaybackState
from callreplay.replay.player import ReplayPlayer
from callreplay.replay.store import ReplayStore
from callreplay.schemas.replay import ReplayControl
from callreplay.speakers import Speaker
from callreplay.transcript.events import LocalEventSource
from callreplay.transcript.merger import TranscriptMergeEngine
from callreplay.transcript.session import LiveTranscriptSession
from callreplay.transcript.writer import create_transcript_writer
from callreplay.tts.base import TTSEngine

logger = logging.getLogger(__name__)


class _JsonSender:
    """Queue + worker task that serializes outgoing JSON messages to one WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self.closed = False

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._worker())

    def send(self, payload: dict[str, Any]) -> None:
        if self.closed:
            return
        self._queue.put_nowait(payload)

    async def _worker(self) -> None:
        while True:
            payload = await self._queue.get()
            if payload is None:
                break
            if self.closed:
                continue
            try:
                await self._ws.send_text(json.dumps(payload))
            except Exception:
                self.closed = True

    async def close(self) -> None:
        if self._task is None:
            return
        self._queue.put_nowait(None)
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self.closed = True


class WebSocketAudioOutput(AudioOutput):
    """Plays audio by handing it to the client; the browser does the actual playback."""

    def __init__(self, sender: _JsonSender) -> None:
        self._sender = sender
        self._playing = False

    def play(self, handle: AudioHandle, volume: float, rate: float, segment_index: int) -> None:
        payload: dict[str, Any] = {
            "type": "audio",
            "segment_index": segment_index,
            "mime_type": handle.mime_type,
            "volume": volume,
            "rate": rate,
        }
        if handle.data:
            payload["audio"] = handle.to_base64()
        else:
            payload["url"] = handle.url
        self._sender.send(payload)
        self._playing = True

    def stop(self) -> None:
        if self._playing:
            self._sender.send({"type": "stop"})
            self._playing = False

    def set_volume(self, volume: float) -> None:
        self._sender.send({"type": "volume", "value": volume})

    def set_rate(self, rate: float) -> None:
        self._sender.send({"type": "rate", "value": rate})


def apply_control(player: ReplayPlayer, control: ReplayControl) -> None:
    """Apply one client control message to the player."""
    action = control.action
    if action == "play":
        player.play()
    elif action == "pause":
        player.pause()
    elif action == "skip_back":
        player.skip_back()
    elif action == "skip_forward":
        player.skip_forward()
    elif control.value is None:
        raise ValueError(f"'{action}' requires a value")
    elif action == "seek":
        player.seek(control.value)
    elif action == "volume":
        player.set_volume(control.value)
    elif action == "rate":
        player.set_playback_rate(control.value)


class ReplayWebSocketManager:
    def __init__(
        self,
        websocket: WebSocket,
        call_id: str,
        store: ReplayStore,
        engine: TTSEngine | None,
        voices: dict[Speaker, str] | None = None,
    ) -> None:
        self._ws = websocket
        self._sender = _JsonSender(websocket)
        self._player = ReplayPlayer(
            call_id,
            store,
            AudioResolver(engine, voices),
            WebSocketAudioOutput(self._sender),
        )

    @property
    def player(self) -> ReplayPlayer:
        return self._player

    def _on_state(self, state: PlaybackState) -> None:
        self._sender.send({"type": "state", **state.to_dict()})

    async def run(self) -> None:
        self._sender.start()
        try:
            if not await self._player.initialize():
                self._sender.send({"type": "error", "message": self._player.state.error or "Replay unavailable"})
                return
            self._sender.send(
                {
                    "type": "replay",
                    "call_id": self._player.call_id,
                    "duration": self._player.state.duration,
                    "segments": [s.to_dict() for s in self._player.segments],
                }
            )
            self._player.add_listener(self._on_state)
            while not self._sender.closed:
                try:
                    raw = await self._ws.receive_text()
                except Exception:
                    break
                try:
                    control = ReplayControl.model_validate_json(raw)
                    apply_control(self._player, control)
                except (ValidationError, ValueError) as e:
                    logger.warning("Invalid replay control: %s", e)
                    self._sender.send({"type": "error", "message": "Invalid control message"})
        finally:
            await self._player.close()
            await self._sender.close()


class LiveTranscriptWebSocketManager:
    def __init__(self, websocket: WebSocket, session_id: str | None = None) -> None:
        self._ws = websocket
        self._sender = _JsonSender(websocket)
        self._source = LocalEventSource()
        session_id = session_id or uuid.uuid4().hex[:12]
        engine = TranscriptMergeEngine(session_id=session_id)
        engine.add_listener(self._on_change)
        self._session = LiveTranscriptSession(
            self._source,
            engine,
            create_transcript_writer(session_id),
            on_final_transcript=self._on_final_transcript,
        )

    @property
    def session(self) -> LiveTranscriptSession:
        return self._session

    def _on_change(self, engine: TranscriptMergeEngine) -> None:
        self._sender.send({"type": "transcript", "entries": [e.to_dict() for e in engine.render()]})

    def _on_final_transcript(self, text: str) -> None:
        self._sender.send({"type": "final_transcript", "session_id": self._session.session_id, "text": text})

    async def run(self) -> None:
        self._sender.start()
        await self._session.start()
        self._sender.send({"type": "session", "session_id": self._session.session_id})
        try:
            while not self._sender.closed:
                try:
                    raw = await self._ws.receive_text()
                except Exception:
                    break
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Dropping non-JSON frame")
                    continue
                if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                    logger.warning("Dropping frame without event name")
                    continue
                self._source.emit(frame["event"], frame.get("payload"))
        finally:
            await self._session.stop()
            await self._sender.close()
