"""
Append-only transcript files for live sessions.

Each FINAL chunk becomes one "You said: ..." / "Prospect said: ..." line in
{TRANSCRIPT_DIR}/{session_id}.txt, the format FileReplayStore parses when a
replay is created for the call. Interim text never reaches the file.
"""
from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import IO, Optional

from callreplay.config import get_settings
from callreplay.replay.segmentation import format_transcript_line
from callreplay.speakers import Speaker

logger = logging.getLogger(__name__)

_CLOSE_TIMEOUT_SECONDS = 5.0


class TranscriptWriterBase(ABC):
    @abstractmethod
    async def start(self) -> None:
        """Prepare the destination. Called once when the session starts."""
        ...

    @abstractmethod
    def append_final(self, text: str, speaker: Speaker) -> None:
        """Queue one final chunk. Must not block the caller."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Write out everything queued. Idempotent."""
        ...

    @property
    def path(self) -> Optional[str]:
        return None


class NoOpTranscriptWriter(TranscriptWriterBase):
    """Used when TRANSCRIPT_SAVE_ENABLED is off."""

    async def start(self) -> None:
        return None

    def append_final(self, text: str, speaker: Speaker) -> None:
        return None

    async def close(self) -> None:
        return None


class TranscriptWriter(TranscriptWriterBase):
    """
    Lines go through a queue; a single drain task owns the file handle, so
    lines land in the order append_final() was called.
    I/O errors are logged and the session carries on without persistence.
    """

    def __init__(self, session_id: str, transcript_dir: Optional[str] = None) -> None:
        self._session_id = session_id
        directory = transcript_dir or get_settings().TRANSCRIPT_DIR
        self._dir = directory
        self._path = os.path.join(directory, f"{session_id}.txt")
        self._lines: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._drain: Optional[asyncio.Task] = None

    @property
    def path(self) -> str:
        return self._path

    def _open(self) -> Optional[IO[str]]:
        try:
            os.makedirs(self._dir, exist_ok=True)
            return open(self._path, "a", encoding="utf-8")
        except OSError as e:
            logger.warning("Cannot open transcript %s: %s", self._path, e)
            return None

    async def _drain_lines(self, handle: Optional[IO[str]]) -> None:
        written = 0
        try:
            while True:
                line = await self._lines.get()
                if line is None:
                    break
                if handle is None:
                    continue
                try:
                    handle.write(f"{line}\n")
                    handle.flush()
                    written += 1
                except OSError as e:
                    logger.warning("Transcript write failed for %s: %s", self._path, e)
        finally:
            if handle is not None:
                handle.close()
            logger.debug("Transcript %s closed after %d lines", self._path, written)

    async def start(self) -> None:
        if self._drain is None:
            self._drain = asyncio.create_task(self._drain_lines(self._open()))

    def append_final(self, text: str, speaker: Speaker) -> None:
        text = " ".join((text or "").split())
        if text and self._drain is not None:
            self._lines.put_nowait(format_transcript_line(speaker, text))

    async def close(self) -> None:
        drain, self._drain = self._drain, None
        if drain is None:
            return
        self._lines.put_nowait(None)
        try:
            await asyncio.wait_for(drain, timeout=_CLOSE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Transcript %s: timed out flushing session %s", self._path, self._session_id)
            drain.cancel()
            try:
                await drain
            except asyncio.CancelledError:
                pass


def create_transcript_writer(session_id: str) -> TranscriptWriterBase:
    """File writer when TRANSCRIPT_SAVE_ENABLED is true; else no-op."""
    if not get_settings().TRANSCRIPT_SAVE_ENABLED:
        return NoOpTranscriptWriter()
    return TranscriptWriter(session_id=session_id)
