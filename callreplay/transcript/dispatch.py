"""
EventDispatchAdapter: raw live-call events -> canonical actions -> handlers.

normalize_event() is pure: lifecycle events become CallStart / CallEnd and
message frames become TranscriptEvents. Text that is empty after stripping
never reaches a handler. Conversation-update and speech-update frames are
always final; they skip the interim path entirely.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from callreplay.speakers import PROSPECT, role_to_speaker
from callreplay.transcript.events import (
    CALL_END,
    CALL_START,
    MESSAGE,
    Action,
    CallEnd,
    CallStart,
    EventSource,
    TranscriptEvent,
)
from callreplay.transcript.frames import (
    ConversationUpdateFrame,
    SpeechUpdateFrame,
    TranscriptFrame,
    decode_message,
)

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "call"
CONVERSATION_SOURCE = "call-conversation"
SPEECH_SOURCE = "call-speech"


def _transcript_actions(frame: TranscriptFrame) -> list[Action]:
    text = frame.extract_text()
    if not text.strip():
        return []
    timestamp_ms = int(frame.timestamp) if frame.timestamp is not None else None
    return [
        TranscriptEvent(
            text=text,
            speaker=role_to_speaker(frame.role),
            is_final=frame.is_final(),
            source=(frame.source or "").strip() or DEFAULT_SOURCE,
            timestamp_ms=timestamp_ms,
        )
    ]


def _conversation_actions(frame: ConversationUpdateFrame) -> list[Action]:
    # User turns already arrive as transcript frames; only the prospect's lines are taken from the snapshot
    actions: list[Action] = []
    for entry in frame.conversation:
        if role_to_speaker(entry.role) != PROSPECT:
            continue
        if entry.content and entry.content.strip():
            actions.append(TranscriptEvent(entry.content, PROSPECT, True, CONVERSATION_SOURCE))
    return actions


def _speech_actions(frame: SpeechUpdateFrame) -> list[Action]:
    text = frame.speech.text if frame.speech else None
    if not text or not text.strip():
        return []
    return [TranscriptEvent(text, role_to_speaker(frame.role), True, SPEECH_SOURCE)]


def normalize_event(name: str, payload: Any = None) -> list[Action]:
    """Map one raw event to zero or more canonical actions."""
    if name == CALL_START:
        return [CallStart()]
    if name == CALL_END:
        return [CallEnd()]
    if name != MESSAGE:
        logger.debug("Ignoring event %r", name)
        return []
    frame = decode_message(payload)
    if isinstance(frame, TranscriptFrame):
        return _transcript_actions(frame)
    if isinstance(frame, ConversationUpdateFrame):
        return _conversation_actions(frame)
    if isinstance(frame, SpeechUpdateFrame):
        return _speech_actions(frame)
    return []


class EventDispatchAdapter:
    """
    Routes normalized actions to registered handlers and manages the
    subscription to an EventSource. attach() / detach() are idempotent.
    """

    def __init__(
        self,
        on_call_start: Callable[[], None] | None = None,
        on_call_end: Callable[[], None] | None = None,
        on_transcript: Callable[[TranscriptEvent], None] | None = None,
        on_message: Callable[[Any], None] | None = None,
    ) -> None:
        self._on_call_start = on_call_start
        self._on_call_end = on_call_end
        self._on_transcript = on_transcript
        self._on_message = on_message
        self._source: EventSource | None = None
        self._listeners = {
            CALL_START: self._handle_call_start,
            CALL_END: self._handle_call_end,
            MESSAGE: self._handle_message,
        }

    @property
    def attached(self) -> bool:
        return self._source is not None

    def update_handlers(self, **handlers: Callable | None) -> None:
        """Replace handlers by name: on_call_start, on_call_end, on_transcript, on_message."""
        for name, handler in handlers.items():
            if name not in ("on_call_start", "on_call_end", "on_transcript", "on_message"):
                raise TypeError(f"Unknown handler: {name}")
            setattr(self, f"_{name}", handler)

    def attach(self, source: EventSource) -> None:
        if self._source is source:
            return
        if self._source is not None:
            self.detach()
        for event, listener in self._listeners.items():
            source.on(event, listener)
        self._source = source
        logger.debug("Event listeners attached")

    def detach(self) -> None:
        source = self._source
        if source is None:
            return
        self._source = None
        for event, listener in self._listeners.items():
            try:
                source.off(event, listener)
            except Exception as e:
                logger.warning("Error detaching %s listener: %s", event, e)
        logger.debug("Event listeners detached")

    def _handle_call_start(self, payload: Any = None) -> None:
        self.dispatch(CALL_START, payload)

    def _handle_call_end(self, payload: Any = None) -> None:
        self.dispatch(CALL_END, payload)

    def _handle_message(self, payload: Any = None) -> None:
        self.dispatch(MESSAGE, payload)

    def dispatch(self, name: str, payload: Any = None) -> list[Action]:
        """Normalize and route one raw event. Returns the actions it produced."""
        if name == MESSAGE and self._on_message:
            self._call(self._on_message, payload)
        actions = normalize_event(name, payload)
        for action in actions:
            if isinstance(action, CallStart):
                logger.info("Call started")
                if self._on_call_start:
                    self._call(self._on_call_start)
            elif isinstance(action, CallEnd):
                logger.info("Call ended")
                if self._on_call_end:
                    self._call(self._on_call_end)
            elif self._on_transcript:
                self._call(self._on_transcript, action)
        return actions

    @staticmethod
    def _call(handler: Callable, *args: Any) -> None:
        try:
            handler(*args)
        except Exception:
            logger.exception("Event handler %s failed", getattr(handler, "__name__", handler))
