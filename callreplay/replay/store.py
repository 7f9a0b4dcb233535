"""
Replay store: where segment lists and call transcripts come from.

ReplayStore is the collaborator contract; FileReplayStore keeps
  {REPLAY_DIR}/{call_id}.json      precomputed segment list (JSON array)
  {TRANSCRIPT_DIR}/{call_id}.txt   stored call transcript ("You said:" lines)
The transcript files are the ones TranscriptWriter produces for live sessions.

load_replay_segments() is the one-shot initialization step of a replay:
use the stored list if there is one, else ask the store to create it.
No retry; any failure surfaces as ReplayLoadError.
"""
from __future__ import annotations

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any

from callreplay.config import get_settings
from callreplay.replay.models import Segment
from callreplay.replay.segmentation import parse_transcript_with_timestamps

logger = logging.getLogger(__name__)

_CALL_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


class ReplayLoadError(Exception):
    """Replay data could not be loaded or created. Terminal for the session."""


class CallNotFoundError(LookupError):
    """No stored call (transcript) for this call_id."""


class ReplayStore(ABC):
    """Persists and retrieves replay segment lists for completed calls."""

    @abstractmethod
    async def get_replay(self, call_id: str) -> list[dict[str, Any]] | None:
        """Stored segment rows for call_id, or None when no replay exists yet."""
        ...

    @abstractmethod
    async def create_replay(self, call_id: str) -> list[dict[str, Any]]:
        """Derive segment rows from the call's stored transcript, persist and return them."""
        ...


class FileReplayStore(ReplayStore):
    """JSON segment lists and plain-text transcripts on local disk."""

    def __init__(self, replay_dir: str | None = None, transcript_dir: str | None = None) -> None:
        settings = get_settings()
        self._replay_dir = replay_dir or settings.REPLAY_DIR
        self._transcript_dir = transcript_dir or settings.TRANSCRIPT_DIR

    @staticmethod
    def _check_id(call_id: str) -> str:
        if not call_id or not _CALL_ID_RE.match(call_id):
            raise CallNotFoundError(f"Invalid call id: {call_id!r}")
        return call_id

    def replay_path(self, call_id: str) -> str:
        return os.path.join(self._replay_dir, f"{self._check_id(call_id)}.json")

    def transcript_path(self, call_id: str) -> str:
        return os.path.join(self._transcript_dir, f"{self._check_id(call_id)}.txt")

    async def get_replay(self, call_id: str) -> list[dict[str, Any]] | None:
        path = self.replay_path(call_id)
        if not os.path.exists(path):
            return None
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"Replay file {path} does not hold a segment list")
        return data

    async def create_replay(self, call_id: str) -> list[dict[str, Any]]:
        transcript_path = self.transcript_path(call_id)
        if not os.path.exists(transcript_path):
            raise CallNotFoundError(f"Call not found: {call_id}")
        with open(transcript_path, encoding="utf-8") as f:
            transcript = f.read()
        rows = parse_transcript_with_timestamps(transcript)
        os.makedirs(self._replay_dir, exist_ok=True)
        path = self.replay_path(call_id)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(rows, f, ensure_ascii=False, indent=2)
        logger.info("Replay created for call %s: %d segments -> %s", call_id, len(rows), path)
        return rows


def segments_from_rows(rows: list[dict[str, Any]]) -> list[Segment]:
    """Build Segments; rows with missing or invalid fields are dropped with a warning."""
    segments: list[Segment] = []
    for i, row in enumerate(rows):
        try:
            segments.append(Segment.from_dict(row))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Dropping invalid replay segment #%d: %s", i, e)
    return segments


async def load_replay_segments(store: ReplayStore, call_id: str) -> list[Segment]:
    """Load the call's segment list, creating it from the transcript if needed. Single attempt."""
    try:
        rows = await store.get_replay(call_id)
    except Exception as e:
        raise ReplayLoadError("Failed to load replay data") from e
    if rows is None:
        try:
            rows = await store.create_replay(call_id)
        except Exception as e:
            raise ReplayLoadError("Failed to create replay") from e
    return segments_from_rows(rows or [])
