"""
LiveTranscriptSession: one live call's transcript pipeline.

EventSource -> EventDispatchAdapter -> TranscriptMergeEngine -> TranscriptWriter.
The session owns its event source subscription; start() and stop() are both
idempotent and stop() is safe even when start() never ran.
"""
from __future__ import annotations

import logging
from typing import Callable, Literal

from callreplay.replay.clock import RepeatingTimer
from callreplay.transcript.dispatch import EventDispatchAdapter
from callreplay.transcript.events import EventSource, TranscriptEvent
from callreplay.transcript.merger import TranscriptMergeEngine
from callreplay.transcript.writer import NoOpTranscriptWriter, TranscriptWriterBase

logger = logging.getLogger(__name__)

SessionStatus = Literal["idle", "connecting", "active", "ended", "failed"]

_EXPIRE_CHECK_SECONDS = 1.0


class LiveTranscriptSession:
    def __init__(
        self,
        source: EventSource,
        engine: TranscriptMergeEngine | None = None,
        writer: TranscriptWriterBase | None = None,
        on_final_transcript: Callable[[str], None] | None = None,
    ) -> None:
        self._source = source
        self._engine = engine or TranscriptMergeEngine()
        self._writer = writer or NoOpTranscriptWriter()
        self._on_final_transcript = on_final_transcript
        self._adapter = EventDispatchAdapter(
            on_call_start=self._handle_call_start,
            on_call_end=self._handle_call_end,
            on_transcript=self._handle_transcript,
        )
        self._status: SessionStatus = "idle"
        self._final_transcript = ""
        self._started = False
        self._stopped = False
        self._expiry = RepeatingTimer(_EXPIRE_CHECK_SECONDS, self._engine.expire_interims)

    @property
    def session_id(self) -> str:
        return self._engine.session_id

    @property
    def engine(self) -> TranscriptMergeEngine:
        return self._engine

    @property
    def adapter(self) -> EventDispatchAdapter:
        return self._adapter

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def final_transcript(self) -> str:
        return self._final_transcript

    def _set_status(self, status: SessionStatus) -> None:
        if status != self._status:
            logger.info("Transcript session %s: %s -> %s", self.session_id, self._status, status)
            self._status = status

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._set_status("connecting")
        try:
            await self._writer.start()
            self._adapter.attach(self._source)
            self._expiry.start()
        except Exception:
            self._set_status("failed")
            raise

    def _handle_call_start(self) -> None:
        self._set_status("active")

    def _handle_call_end(self) -> None:
        self._finish()

    def _handle_transcript(self, event: TranscriptEvent) -> None:
        if self._status in ("ended", "failed"):
            logger.debug("Transcript event after call end dropped")
            return
        if self._status != "active":
            self._set_status("active")
        chunk = self._engine.apply(event)
        if chunk is not None:
            self._writer.append_final(chunk.text, chunk.speaker)

    def _finish(self) -> None:
        if self._status == "ended":
            return
        flushed = self._engine.flush_interims()
        for chunk in flushed:
            self._writer.append_final(chunk.text, chunk.speaker)
        self._final_transcript = self._engine.finalize()
        self._set_status("ended")
        if self._on_final_transcript:
            try:
                self._on_final_transcript(self._final_transcript)
            except Exception:
                logger.exception("Final transcript callback failed")

    async def stop(self) -> str:
        """Detach, finalize (if the call never ended cleanly) and close the writer."""
        if self._stopped:
            return self._final_transcript
        self._stopped = True
        self._expiry.cancel()
        self._adapter.detach()
        if self._started and self._status != "failed":
            self._finish()
        await self._writer.close()
        return self._final_transcript
