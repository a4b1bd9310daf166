# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Highlight state machine.

Owns which word is current, which words carry a highlight mark, and the
pending transition. It does not touch any UI: every change is expressed as
an ordered list of HighlightIntents executed against a HighlightSink.

States: IDLE (nothing loaded) -> LOADED -> PLAYING <-> PAUSED -> ENDED.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from . import debug_log
from .config import EngineConfig, clamp_rate
from .events import EventDispatcher, NewlineEvent
from .locator import WordLocator
from .scheduler import TransitionScheduler, round_ms
from .timing import TimingTable, Word
from .transport import PlaybackState

logger = logging.getLogger(__name__)


class HighlightKind(str, Enum):
    """Mark types a word can carry."""
    CURRENT = "current"
    TRAIL = "trail"


class IntentAction(str, Enum):
    """Whether an intent adds or removes a mark."""
    APPLY = "apply"
    RETRACT = "retract"


@dataclass(frozen=True)
class HighlightIntent:
    """One mark change requested from the highlight sink."""
    action: IntentAction
    kind: HighlightKind
    index: int  # Word index in the active table


class HighlightSink(Protocol):
    """Receives highlight changes (e.g. adds/removes CSS classes)."""

    def apply(self, ref: Any, kind: HighlightKind) -> None:
        """Add a mark to the word identified by ref."""

    def retract(self, ref: Any, kind: HighlightKind) -> None:
        """Remove a mark from the word identified by ref."""

    def offset_of(self, ref: Any) -> float | None:
        """Vertical layout offset of the word, or None if unknown."""


class ScrollSink(Protocol):
    """Scrolls the view when the highlight moves to a new line."""

    def scroll_by(self, delta_px: float, duration_ms: int) -> None:
        """Scroll by delta_px over duration_ms."""


class MachineState(str, Enum):
    """Lifecycle of the highlight state machine for one block."""
    IDLE = "idle"
    LOADED = "loaded"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


@dataclass
class EngineState:
    """Mutable runtime state, rebuilt whenever a table is loaded."""
    current_word: Word | None = None
    last_resolved: Word | None = None
    prev_line_offset: float = 0.0
    marks: set[tuple[int, HighlightKind]] = field(default_factory=set)
    rate: float | None = None


def plan_transition(
    word: Word,
    is_newline: bool,
    highlight_trail: bool = True,
    trail_window: int = 4,
    flush_window: int = 14
) -> list[HighlightIntent]:
    """
    Intents for making `word` current.

    The previous word loses its current mark and, with trails enabled, takes a
    trail mark. Older trail marks within trail_window words behind it are
    retracted. On a line break the trail is flushed back over flush_window
    words so no marks are left on the previous line.

    Args:
        word: The word becoming current.
        is_newline: Whether the word starts a new layout line.
        highlight_trail: Whether to leave a trail mark on the previous word.
        trail_window: Trail marks retracted behind the previous word.
        flush_window: Words scanned back on a line break.

    Returns:
        Intents in the order they must be executed.
    """
    i = word.index
    intents: list[HighlightIntent] = [
        HighlightIntent(IntentAction.APPLY, HighlightKind.CURRENT, i)
    ]
    if i > 0:
        intents.append(HighlightIntent(IntentAction.RETRACT, HighlightKind.CURRENT, i - 1))

    retracted: set[int] = set()
    for j in range(i - 2, i - 2 - trail_window, -1):
        if j < 0:
            break
        intents.append(HighlightIntent(IntentAction.RETRACT, HighlightKind.TRAIL, j))
        retracted.add(j)

    if is_newline:
        for j in range(i - 1, i - 1 - flush_window, -1):
            if j < 0:
                break
            if j not in retracted:
                intents.append(HighlightIntent(IntentAction.RETRACT, HighlightKind.TRAIL, j))
    elif highlight_trail and i > 0:
        intents.append(HighlightIntent(IntentAction.APPLY, HighlightKind.TRAIL, i - 1))

    return intents


class HighlightStateMachine:
    """
    Drives highlight marks and transition timing for the loaded table.

    Args:
        config: Engine configuration.
        scheduler: Owner of the single transition timer.
        sink: Receives highlight intents.
        events: Dispatcher for newline events.
        snapshot: Returns the transport state at the moment of the call.
        on_block_end: Called once when the block (or range) finishes.
        scroll_sink: Optional scroller for forced line scrolling.
        play_start_latency: Returns the last measured play-start latency in ms.
    """

    def __init__(
        self,
        config: EngineConfig,
        scheduler: TransitionScheduler,
        sink: HighlightSink,
        events: EventDispatcher,
        snapshot: Callable[[], PlaybackState],
        on_block_end: Callable[[], None],
        scroll_sink: ScrollSink | None = None,
        play_start_latency: Callable[[], int] | None = None
    ) -> None:
        self.config: EngineConfig = config
        self.scheduler: TransitionScheduler = scheduler
        self.sink: HighlightSink = sink
        self.events: EventDispatcher = events
        self.snapshot: Callable[[], PlaybackState] = snapshot
        self.on_block_end: Callable[[], None] = on_block_end
        self.scroll_sink: ScrollSink | None = scroll_sink
        self.play_start_latency: Callable[[], int] = play_start_latency or (lambda: 0)

        self.phase: MachineState = MachineState.IDLE
        self.table: TimingTable | None = None
        self.locator: WordLocator | None = None
        self.state: EngineState = EngineState()
        self.block_id: str | None = None
        self.last_intents: list[HighlightIntent] = []

    # -- lifecycle -----------------------------------------------------------

    def load(self, table: TimingTable, block_id: str | None = None,
             prev_line_offset: float = 0.0) -> None:
        """Make `table` active, discarding all state of the previous one."""
        self.scheduler.cancel()
        self.retract_all()
        self.table = table
        self.block_id = block_id
        self.locator = WordLocator(table)
        self.state = EngineState(prev_line_offset=prev_line_offset)
        self.phase = MachineState.LOADED
        logger.debug("Loaded table for block %s: %d words", block_id, len(table))

    def resolve(self, position_ms: float) -> Word | None:
        """Word at position_ms (updates the locator cache), or None when idle."""
        if self.locator is None:
            return None
        word = self.locator.locate(position_ms)
        self.state.last_resolved = word
        return word

    def play(self) -> None:
        """Start advancing the highlight from the transport position."""
        if self.table is None:
            return
        self.phase = MachineState.PLAYING
        self.state.rate = clamp_rate(self.snapshot().playback_rate)
        self._select(force=True)

    def pause(self) -> Word | None:
        """
        Stop advancing; returns the word paused on.

        With keep_highlight_on_pause disabled every mark is retracted.
        """
        if self.phase != MachineState.PLAYING:
            return None
        self.scheduler.cancel()
        self.phase = MachineState.PAUSED
        word = self.resolve(self.snapshot().position_ms)
        if not self.config.keep_highlight_on_pause:
            self.retract_all()
        if word is not None:
            debug_log.log_transition(self.block_id, word.index, "pause")
        return word

    def halt(self) -> None:
        """Fall back to PAUSED after a play request failed."""
        self.scheduler.cancel()
        if self.phase != MachineState.IDLE:
            self.phase = MachineState.PAUSED

    def seek(self) -> Word | None:
        """Re-resolve after a position jump; re-arms when playing."""
        if self.table is None:
            return None
        self.scheduler.cancel()
        playback = self.snapshot()
        word = self.resolve(playback.position_ms)
        if word is None:
            return None

        if self.phase == MachineState.ENDED:
            self.phase = MachineState.PLAYING if playback.is_playing else MachineState.PAUSED

        self.retract_all()
        self.state.current_word = None
        if self.phase == MachineState.PLAYING or self.config.keep_highlight_on_pause:
            self._show(word)
        debug_log.log_transition(self.block_id, word.index, "seek")

        if self.phase == MachineState.PLAYING and playback.is_playing:
            self._arm(word, playback)
        return word

    def rate_change(self, rate: float) -> bool:
        """
        Adopt a new playback rate.

        Returns:
            False if the (clamped) rate was unchanged and nothing was done.
        """
        rate = clamp_rate(rate)
        if rate == self.state.rate:
            return False
        self.state.rate = rate
        if self.phase == MachineState.PLAYING:
            self._select()
        return True

    def reschedule(self) -> None:
        """Re-arm from the current transport position without forcing intents."""
        if self.phase == MachineState.PLAYING:
            self._select()

    def transition_fire(self) -> None:
        """Handle the armed transition coming due."""
        word = self.state.current_word
        if self.table is None or word is None:
            return
        playback = self.snapshot()
        if not playback.is_playing:
            # Paused right at the end: the block is still finished
            if self.table.is_last(word):
                self.end()
            return

        if self.table.is_last(word):
            self.end()
            return

        self._select()

    def end(self) -> None:
        """Finish the block: retract everything and notify the sequencer once."""
        if self.phase in (MachineState.IDLE, MachineState.ENDED):
            return
        self.scheduler.cancel()
        self.retract_all()
        self.state.current_word = None
        self.phase = MachineState.ENDED
        debug_log.log_transition(self.block_id, self.table.last_index if self.table else -1, "end")
        logger.debug("Block %s ended", self.block_id)
        self.on_block_end()

    # -- intents -------------------------------------------------------------

    def retract_all(self) -> None:
        """Retract every mark currently applied."""
        if self.table is None or not self.state.marks:
            return
        intents = [
            HighlightIntent(IntentAction.RETRACT, kind, index)
            for index, kind in sorted(self.state.marks, key=lambda m: (m[0], m[1].value))
        ]
        self._execute(intents)

    def _execute(self, intents: list[HighlightIntent]) -> None:
        assert self.table is not None
        for intent in intents:
            ref = self.table[intent.index].ref
            if intent.action == IntentAction.APPLY:
                self.sink.apply(ref, intent.kind)
                self.state.marks.add((intent.index, intent.kind))
            else:
                self.sink.retract(ref, intent.kind)
                self.state.marks.discard((intent.index, intent.kind))
        self.last_intents = intents

    def _show(self, word: Word) -> None:
        """Make `word` current: execute its intents and detect line breaks."""
        assert self.table is not None
        offset = self.sink.offset_of(word.ref)
        prev_offset = self.state.prev_line_offset
        is_newline = word.index > 0 and offset is not None and offset > prev_offset

        self._execute(plan_transition(
            word, is_newline,
            highlight_trail=self.config.highlight_trail,
            trail_window=self.config.trail_window,
            flush_window=self.config.newline_flush_window
        ))

        if is_newline and offset is not None:
            percent = round_ms((word.index + 1) / len(self.table) * 100)
            self.events.emit(NewlineEvent(prev_offset, offset, percent))
            if self.config.force_line_scroll and self.scroll_sink is not None:
                self.scroll_sink.scroll_by(offset - prev_offset, self.config.line_scroll_ms)
        if offset is not None:
            self.state.prev_line_offset = offset

        self.state.current_word = word
        debug_log.log_transition(self.block_id, word.index)

    def _select(self, force: bool = False) -> None:
        """Resolve the word at the transport position, show it and arm the next transition."""
        if self.table is None:
            return
        self.scheduler.cancel()
        playback = self.snapshot()
        word = self.resolve(playback.position_ms)
        if word is None:
            return
        if force or word != self.state.current_word:
            self._show(word)
        if self.phase == MachineState.PLAYING and playback.is_playing:
            self._arm(word, playback)

    def _arm(self, word: Word, playback: PlaybackState) -> None:
        assert self.table is not None
        self.scheduler.arm(
            word, self.table, playback,
            on_fire=self.transition_fire,
            play_start_latency_ms=self.play_start_latency()
        )
