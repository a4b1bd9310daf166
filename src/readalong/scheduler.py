# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Schedules the next highlight transition.

Position reports from a media transport arrive roughly every 250ms, which is
far too coarse to move a highlight word by word. Instead a single timer is
armed to fire exactly when the next word begins (or, for the last word, when
the block should finish). Any change to position, rate or play state re-arms
the timer from scratch; there is never more than one pending transition.
"""

import logging
import math
from collections.abc import Callable

from . import debug_log
from .clock import Clock, TimerHandle
from .timing import TimingTable, Word
from .transport import PlaybackState

logger = logging.getLogger(__name__)


def round_ms(value: float) -> int:
    """Round half up to whole milliseconds."""
    return int(math.floor(value + 0.5))


def compute_delay(
    word: Word,
    table: TimingTable,
    playback: PlaybackState,
    stop_latency_ms: int = 200,
    play_start_latency_ms: int = 0
) -> int:
    """
    Milliseconds of wall time until the transition after `word` is due.

    For the last word the target is its end (or the stop boundary, whichever
    comes first). The transport needs stop_latency_ms to honour a stop, so the
    wake-up is brought forward by that much, then pushed back by the start-up
    latency measured at the last play request.

    Returns:
        Delay in ms, never negative.
    """
    next_word = table.next_word(word)
    stop_at_ms = playback.stop_at_ms
    if next_word is None:
        target = word.end
        if stop_at_ms is not None:
            target = min(target, stop_at_ms)
        delay = (round_ms((target - playback.position_ms) / playback.playback_rate)
                 - stop_latency_ms + play_start_latency_ms)
    else:
        target = next_word.begin
        delay = round_ms((target - playback.position_ms) / playback.playback_rate)
    return max(delay, 0)


class TransitionScheduler:
    """Owns the single pending transition timer of an engine."""

    def __init__(self, clock: Clock, stop_latency_ms: int = 200) -> None:
        self.clock: Clock = clock
        self.stop_latency_ms: int = stop_latency_ms
        self.handle: TimerHandle | None = None
        self.last_delay: int | None = None
        self.cancel_count: int = 0

    @property
    def pending(self) -> bool:
        """Whether a transition is armed."""
        return self.handle is not None

    def cancel(self) -> bool:
        """
        Cancel the pending transition, if any.

        Returns:
            True if a timer was cancelled.
        """
        if self.handle is None:
            return False
        self.handle.cancel()
        self.handle = None
        self.cancel_count += 1
        return True

    def arm(
        self,
        word: Word,
        table: TimingTable,
        playback: PlaybackState,
        on_fire: Callable[[], None],
        play_start_latency_ms: int = 0
    ) -> int:
        """
        Arm the transition that follows `word`, replacing any pending one.

        Args:
            word: The currently highlighted word.
            table: The active timing table.
            playback: Transport snapshot taken now.
            on_fire: Called when the transition is due.
            play_start_latency_ms: Last measured play-start latency.

        Returns:
            The delay in milliseconds.
        """
        self.cancel()
        delay = compute_delay(
            word, table, playback,
            stop_latency_ms=self.stop_latency_ms,
            play_start_latency_ms=play_start_latency_ms
        )

        def fire() -> None:
            # The handle only exists between arming and firing
            self.handle = None
            on_fire()

        self.handle = self.clock.call_later(delay / 1000.0, fire)
        self.last_delay = delay

        logger.debug("Armed transition after word %d in %dms (pos=%d, rate=%.2f)",
                     word.index, delay, playback.position_ms, playback.playback_rate)
        debug_log.log_schedule(word.index, delay, playback.position_ms, playback.playback_rate)
        return delay
