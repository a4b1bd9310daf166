# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Engine events delivered to listeners.

Each event kind is its own dataclass carrying its payload; ReadAlongEvent is
the union of all of them. Listeners are called synchronously, at the point
the event occurs, in subscription order.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Union

from .timing import Word

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Event kinds an engine emits."""
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    MOVE = "move"
    NEWLINE = "newline"
    COMPLETE = "complete"


@dataclass(frozen=True)
class StartEvent:
    """Playback started at the first word of a block."""
    block_id: str
    words: tuple[Word, ...]
    duration: int
    rate: float
    kind: EventKind = EventKind.START


@dataclass(frozen=True)
class PauseEvent:
    """Playback paused before the last word."""
    word: Word
    kind: EventKind = EventKind.PAUSE


@dataclass(frozen=True)
class ResumeEvent:
    """Playback resumed at a word."""
    word: Word
    kind: EventKind = EventKind.RESUME


@dataclass(frozen=True)
class MoveEvent:
    """Position moved by a seek while playing."""
    word: Word
    kind: EventKind = EventKind.MOVE


@dataclass(frozen=True)
class NewlineEvent:
    """The current word wrapped onto a new layout line."""
    prev_offset: float
    new_offset: float
    percent_complete: int
    kind: EventKind = EventKind.NEWLINE


@dataclass(frozen=True)
class CompleteEvent:
    """The block (or range) finished."""
    block_id: str
    kind: EventKind = EventKind.COMPLETE


ReadAlongEvent = Union[StartEvent, PauseEvent, ResumeEvent, MoveEvent, NewlineEvent, CompleteEvent]


class ReadAlongListener(Protocol):
    """Receives every engine event."""

    def on_event(self, event: ReadAlongEvent) -> None:
        """Handle one event."""


class EventDispatcher:
    """Fans events out to subscribed listeners."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[EventKind | None, Callable[[ReadAlongEvent], None]]] = []

    def subscribe(
        self,
        callback: Callable[[ReadAlongEvent], None],
        kind: EventKind | None = None
    ) -> Callable[[], None]:
        """
        Register a callback for one event kind, or all kinds when kind is None.

        Returns:
            A function that removes the subscription.
        """
        entry = (kind, callback)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def add_listener(self, listener: ReadAlongListener) -> Callable[[], None]:
        """Register an object implementing ReadAlongListener."""
        return self.subscribe(listener.on_event)

    def emit(self, event: ReadAlongEvent) -> None:
        """Deliver an event to every matching subscriber."""
        logger.debug("Event: %s", event.kind.value)
        for kind, callback in list(self._subscribers):
            if kind is None or kind == event.kind:
                callback(event)


class CallbackListener:
    """
    Listener built from optional per-event callables.

    Usage:
        engine.events.add_listener(CallbackListener(
            on_complete=lambda block_id: print("done", block_id)
        ))
    """

    def __init__(
        self,
        on_start: Callable[[str, tuple[Word, ...], int, float], None] | None = None,
        on_pause: Callable[[Word], None] | None = None,
        on_resume: Callable[[Word], None] | None = None,
        on_move: Callable[[Word], None] | None = None,
        on_newline: Callable[[float, float, int], None] | None = None,
        on_complete: Callable[[str], None] | None = None
    ) -> None:
        self.on_start = on_start
        self.on_pause = on_pause
        self.on_resume = on_resume
        self.on_move = on_move
        self.on_newline = on_newline
        self.on_complete = on_complete

    def on_event(self, event: ReadAlongEvent) -> None:
        if isinstance(event, StartEvent):
            if self.on_start:
                self.on_start(event.block_id, event.words, event.duration, event.rate)
        elif isinstance(event, PauseEvent):
            if self.on_pause:
                self.on_pause(event.word)
        elif isinstance(event, ResumeEvent):
            if self.on_resume:
                self.on_resume(event.word)
        elif isinstance(event, MoveEvent):
            if self.on_move:
                self.on_move(event.word)
        elif isinstance(event, NewlineEvent):
            if self.on_newline:
                self.on_newline(event.prev_offset, event.new_offset, event.percent_complete)
        elif isinstance(event, CompleteEvent):
            if self.on_complete:
                self.on_complete(event.block_id)
