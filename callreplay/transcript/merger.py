"""
TranscriptMergeEngine: live interim/final reconciliation for one call.

- INTERIM: at most one per (speaker, source); each new partial for that key
  replaces the previous one. Never persisted, only shown. An interim not
  updated within interim_max_age_ms expires.
- FINAL: immutable chunk appended in arrival order; clears the interim of its
  own key and no other. When the final is empty or shorter than that interim,
  the interim text is kept instead.

render() merges finals with the live interims (stamped "now", since interims
have no stable capture time) into one time-ordered list. Interims therefore
sort after every final with an earlier or equal capture time.

Delivery within one key is assumed in order. A partial that carries a
capture timestamp not newer than the key's last final is stale and dropped.

Duplicate finals: normalized words + speaker + source. Streaming sources also
key on the capture second, so a phrase repeated later in the call is kept.
Snapshot sources resend the whole conversation each time and key on text only.
"""
from __future__ import annotations

import hashlib
import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Iterable

from callreplay.config import get_settings
from callreplay.speakers import Speaker
from callreplay.transcript.dispatch import CONVERSATION_SOURCE
from callreplay.transcript.events import TranscriptEvent

logger = logging.getLogger(__name__)

InterimKey = tuple[str, str]  # (speaker, source)

# Words allowed to repeat back to back ("no no", "you you")
ALLOWED_REPEATS = frozenset({"the", "a", "an", "and", "or", "but", "yes", "no", "i", "you", "we", "they"})


def _unix_ms() -> int:
    return int(time.time() * 1000)


def remove_repeated_words(text: str) -> str:
    """Drop a word that repeats the previous one (case-insensitive), except ALLOWED_REPEATS."""
    kept: list[str] = []
    previous = ""
    for word in text.split():
        lowered = word.lower()
        if lowered != previous or lowered in ALLOWED_REPEATS:
            kept.append(word)
        previous = lowered
    return " ".join(kept)


def normalize_text(text: str) -> str:
    """Strip, collapse whitespace and repeated punctuation ("!!" -> "!"), drop stuttered words."""
    if not text:
        return ""
    text = re.sub(r"\s+", " ", text.strip())
    text = re.sub(r"([.!?,;:])\1+", r"\1", text)
    return remove_repeated_words(text)


def chunk_hash(text: str, speaker: str, source: str, timestamp_ms: int | None = None) -> str:
    """Identity of a final: normalized words + speaker + source (+ capture second when given)."""
    words = re.sub(r"[^\w\s]", "", text.lower())
    words = re.sub(r"\s+", " ", words).strip()
    key = f"{words}-{speaker}-{source}"
    if timestamp_ms is not None:
        key = f"{key}-{timestamp_ms // 1000}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]


@dataclass(frozen=True)
class TranscriptChunk:
    """Final transcript fragment. Never mutated or removed once appended."""

    id: str
    text: str
    speaker: Speaker
    timestamp_ms: int
    source: str
    hash: str


@dataclass
class InterimBuffer:
    """Latest partial text for one (speaker, source)."""

    text: str
    speaker: Speaker
    source: str
    hash: str
    received_ms: int
    updated_ms: int

    @property
    def is_final(self) -> bool:
        return False


@dataclass(frozen=True)
class RenderEntry:
    text: str
    speaker: Speaker
    timestamp_ms: int
    source: str
    is_interim: bool = False

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "speaker": self.speaker,
            "timestamp": self.timestamp_ms,
            "source": self.source,
            "is_interim": self.is_interim,
        }


class TranscriptMergeEngine:
    """
    Holds the finals list and interim slots for one live call.
    Listeners are called with the engine after every change.
    """

    def __init__(
        self,
        session_id: str | None = None,
        show_interim: bool | None = None,
        paragraph_pause_ms: int | None = None,
        clock: Callable[[], int] = _unix_ms,
        interim_max_age_ms: int | None = None,
        snapshot_sources: Iterable[str] = (CONVERSATION_SOURCE,),
    ) -> None:
        settings = get_settings()
        self._session_id = session_id or uuid.uuid4().hex[:12]
        self._show_interim = show_interim if show_interim is not None else settings.TRANSCRIPT_SHOW_INTERIM
        self._paragraph_pause_ms = (
            paragraph_pause_ms if paragraph_pause_ms is not None else settings.TRANSCRIPT_PARAGRAPH_PAUSE_MS
        )
        self._interim_max_age_ms = (
            interim_max_age_ms if interim_max_age_ms is not None else settings.TRANSCRIPT_INTERIM_MAX_AGE_MS
        )
        self._snapshot_sources = frozenset(snapshot_sources)
        self._clock = clock
        self._finals: list[TranscriptChunk] = []
        self._hashes: set[str] = set()
        self._interims: dict[InterimKey, InterimBuffer] = {}
        self._last_final_ms: dict[InterimKey, int] = {}
        self._listeners: list[Callable[["TranscriptMergeEngine"], None]] = []

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def finals(self) -> list[TranscriptChunk]:
        return list(self._finals)

    @property
    def interims(self) -> dict[InterimKey, InterimBuffer]:
        return dict(self._interims)

    def add_listener(self, listener: Callable[["TranscriptMergeEngine"], None]) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Transcript listener failed")

    def _final_hash(self, text: str, speaker: str, source: str, timestamp_ms: int) -> str:
        if source in self._snapshot_sources:
            return chunk_hash(text, speaker, source)
        return chunk_hash(text, speaker, source, timestamp_ms)

    def _drop_expired(self) -> bool:
        if self._interim_max_age_ms <= 0 or not self._interims:
            return False
        now = self._clock()
        expired = [k for k, b in self._interims.items() if now - b.updated_ms > self._interim_max_age_ms]
        for key in expired:
            del self._interims[key]
        if expired:
            logger.debug("Expired %d interim(s) older than %d ms", len(expired), self._interim_max_age_ms)
        return bool(expired)

    def expire_interims(self) -> bool:
        """Drop interims not updated within interim_max_age_ms. Returns True if any were dropped."""
        if not self._drop_expired():
            return False
        self._notify()
        return True

    def apply(self, event: TranscriptEvent) -> TranscriptChunk | None:
        """Route a canonical TranscriptEvent to apply_final / apply_partial."""
        if event.is_final:
            return self.apply_final(event.text, event.speaker, event.source, event.timestamp_ms)
        self.apply_partial(event.text, event.speaker, event.source, event.timestamp_ms)
        return None

    def apply_partial(
        self, text: str, speaker: Speaker, source: str, timestamp_ms: int | None = None
    ) -> None:
        """Upsert the interim for (speaker, source). Empty text is ignored."""
        expired = self._drop_expired()
        text = normalize_text(text)
        key = (speaker, source)
        last_final = self._last_final_ms.get(key)
        if not text:
            accepted = False
        elif timestamp_ms is not None and last_final is not None and timestamp_ms <= last_final:
            logger.debug("Stale interim for %s dropped (t=%d <= last final %d)", key, timestamp_ms, last_final)
            accepted = False
        else:
            now = self._clock()
            self._interims[key] = InterimBuffer(
                text=text,
                speaker=speaker,
                source=source,
                hash=chunk_hash(text, speaker, source),
                received_ms=timestamp_ms if timestamp_ms is not None else now,
                updated_ms=now,
            )
            accepted = True
        if accepted or expired:
            self._notify()

    def apply_final(
        self, text: str, speaker: Speaker, source: str, timestamp_ms: int | None = None
    ) -> TranscriptChunk | None:
        """
        Append a final chunk and clear this key's interim. When the final text is
        empty or shorter than that interim, the interim text is used instead.
        Returns None when there is nothing to append or the chunk is a duplicate.
        """
        expired = self._drop_expired()
        text = normalize_text(text)
        key = (speaker, source)
        buffered = self._interims.pop(key, None)
        changed = expired or buffered is not None
        if buffered is not None and len(buffered.text) > len(text):
            logger.debug("Final for %s shorter than its interim, keeping interim text", key)
            text = buffered.text
        if not text:
            if changed:
                self._notify()
            return None
        timestamp_ms = timestamp_ms if timestamp_ms is not None else self._clock()
        self._last_final_ms[key] = max(timestamp_ms, self._last_final_ms.get(key, timestamp_ms))
        digest = self._final_hash(text, speaker, source, timestamp_ms)
        if digest in self._hashes:
            logger.debug("Skipping duplicate final chunk %s", digest)
            if changed:
                self._notify()
            return None
        self._hashes.add(digest)
        chunk = TranscriptChunk(
            id=f"{self._session_id}-{uuid.uuid4().hex[:9]}",
            text=text,
            speaker=speaker,
            timestamp_ms=timestamp_ms,
            source=source,
            hash=digest,
        )
        self._finals.append(chunk)
        logger.debug("Final: %s said %r", speaker, text[:50])
        self._notify()
        return chunk

    def render(self) -> list[RenderEntry]:
        """Finals + (optionally) live interims, sorted by timestamp. Stable: finals win ties."""
        entries = [
            RenderEntry(c.text, c.speaker, c.timestamp_ms, c.source, is_interim=False) for c in self._finals
        ]
        if self._show_interim and self._interims:
            now = self._clock()
            entries.extend(
                RenderEntry(b.text, b.speaker, now, b.source, is_interim=True)
                for b in self._interims.values()
                if self._interim_max_age_ms <= 0 or now - b.updated_ms <= self._interim_max_age_ms
            )
        entries.sort(key=lambda e: e.timestamp_ms)
        return entries

    def flush_interims(self) -> list[TranscriptChunk]:
        """Promote every live interim to a final (capture time = when it was received)."""
        self._drop_expired()
        flushed: list[TranscriptChunk] = []
        for buffer in list(self._interims.values()):
            chunk = self.apply_final(buffer.text, buffer.speaker, buffer.source, buffer.received_ms)
            if chunk is not None:
                flushed.append(chunk)
        self._interims.clear()
        return flushed

    def finalize(self) -> str:
        """
        Close out the call: flush interims, then assemble the finals in time order
        into paragraphs. A paragraph breaks on a speaker change or a pause longer
        than paragraph_pause_ms. Paragraphs are separated by a blank line.
        """
        self.flush_interims()
        chunks = sorted(self._finals, key=lambda c: c.timestamp_ms)
        paragraphs: list[str] = []
        current: list[str] = []
        previous: TranscriptChunk | None = None
        for chunk in chunks:
            if previous is not None and current:
                speaker_changed = chunk.speaker != previous.speaker
                long_pause = chunk.timestamp_ms - previous.timestamp_ms > self._paragraph_pause_ms
                if speaker_changed or long_pause:
                    paragraphs.append(" ".join(current))
                    current = []
            current.append(chunk.text)
            previous = chunk
        if current:
            paragraphs.append(" ".join(current))
        text = "\n\n".join(paragraphs).strip()
        logger.info("Finalized transcript %s: %d chars, %d paragraphs", self._session_id, len(text), len(paragraphs))
        self._notify()
        return text

    def clear(self) -> None:
        self._finals.clear()
        self._hashes.clear()
        self._interims.clear()
        self._last_final_ms.clear()
        self._notify()
