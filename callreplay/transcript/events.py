"""
Canonical transcript-side events and the event-source contract.

EventSource is what a live call client looks like from here: named events
("call-start", "call-end", "message") with attach/detach of handlers.
LocalEventSource is an explicitly owned in-process emitter; each session
constructs its own.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable

from callreplay.speakers import Speaker

logger = logging.getLogger(__name__)

CALL_START = "call-start"
CALL_END = "call-end"
MESSAGE = "message"

EventHandler = Callable[[Any], None]


@dataclass(frozen=True)
class CallStart:
    pass


@dataclass(frozen=True)
class CallEnd:
    pass


@dataclass(frozen=True)
class TranscriptEvent:
    """One speech fragment. timestamp_ms is the capture time when the source provides one."""

    text: str
    speaker: Speaker
    is_final: bool
    source: str
    timestamp_ms: int | None = None


Action = CallStart | CallEnd | TranscriptEvent


class EventSource(ABC):
    """Subscription-style live event source."""

    @abstractmethod
    def on(self, event: str, handler: EventHandler) -> None:
        ...

    @abstractmethod
    def off(self, event: str, handler: EventHandler) -> None:
        ...


class LocalEventSource(EventSource):
    """In-process emitter. Handlers run synchronously in registration order."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event].append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def emit(self, event: str, payload: Any = None) -> None:
        for handler in list(self._handlers.get(event, ())):
            handler(payload)
