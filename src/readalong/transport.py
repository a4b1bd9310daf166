# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Playback transport boundary.

The engine never decodes or plays audio itself. It drives a Transport (a
browser media element behind a bridge, a native player, or the in-process
SimulatedTransport below) and listens to the events it emits.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .clock import Clock, TimerHandle
from .config import clamp_rate

logger = logging.getLogger(__name__)


class TransportEvent(str, Enum):
    """Events a transport reports, named after the media element events."""
    PLAY = "play"
    PLAYING = "playing"
    PAUSE = "pause"
    SEEKED = "seeked"
    RATECHANGE = "ratechange"
    TIMEUPDATE = "timeupdate"
    ENDED = "ended"


@dataclass(frozen=True)
class PlaybackState:
    """Snapshot of the transport as the engine sees it."""
    position_ms: int
    is_playing: bool
    playback_rate: float
    stop_at: float | None = None  # Hard stop boundary in transport seconds

    @property
    def stop_at_ms(self) -> int | None:
        """Stop boundary in milliseconds."""
        if self.stop_at is None:
            return None
        return int(round(self.stop_at * 1000))


class Transport(Protocol):
    """What the engine needs from a media player."""

    src: str | None
    current_time: float  # seconds
    playback_rate: float

    @property
    def paused(self) -> bool:
        """Whether playback is paused."""

    @property
    def duration(self) -> float:
        """Media duration in seconds."""

    def play(self) -> Any:
        """Start playback. May raise TransportRejectedPlay or return a future."""

    def pause(self) -> None:
        """Pause playback."""

    def subscribe(self, handler: Callable[[TransportEvent], None]) -> None:
        """Register a handler for transport events."""


class SimulatedTransport:
    """
    In-process media clock.

    Position advances with the clock while playing, scaled by the playback
    rate. Events are delivered synchronously to subscribers, in the order a
    media element would fire them. Used by the headless server session and
    by the simulate command; no audio is produced.

    Args:
        clock: Time source and timer factory.
        durations: Optional mapping of src to media duration in seconds.
        start_latency: Seconds between play() and the "playing" event.
        timeupdate_interval: Seconds between "timeupdate" events while playing.
    """

    def __init__(
        self,
        clock: Clock,
        durations: dict[str, float] | None = None,
        start_latency: float = 0.0,
        timeupdate_interval: float = 0.25
    ) -> None:
        self.clock: Clock = clock
        self.durations: dict[str, float] = dict(durations or {})
        self.start_latency: float = start_latency
        self.timeupdate_interval: float = timeupdate_interval
        self._handlers: list[Callable[[TransportEvent], None]] = []
        self._src: str | None = None
        self._paused: bool = True
        self._starting: bool = False
        self._rate: float = 1.0
        self._anchor_position: float = 0.0
        self._anchor_time: float = clock.now()
        self._ended_timer: TimerHandle | None = None
        self._playing_timer: TimerHandle | None = None
        self._tick_timer: TimerHandle | None = None
        # When set, position stops advancing (emulates a wedged decoder)
        self.stalled: bool = False

    def subscribe(self, handler: Callable[[TransportEvent], None]) -> None:
        self._handlers.append(handler)

    def _emit(self, event: TransportEvent) -> None:
        for handler in list(self._handlers):
            handler(event)

    @property
    def src(self) -> str | None:
        return self._src

    @src.setter
    def src(self, value: str | None) -> None:
        self._cancel_timers()
        self._src = value
        self._paused = True
        self._anchor_position = 0.0
        self._anchor_time = self.clock.now()

    @property
    def duration(self) -> float:
        if self._src is None:
            return 0.0
        return self.durations.get(self._src, float('inf'))

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def current_time(self) -> float:
        if self._paused or self._starting or self.stalled:
            return self._anchor_position
        elapsed = (self.clock.now() - self._anchor_time) * self._rate
        return min(self._anchor_position + elapsed, self.duration)

    @current_time.setter
    def current_time(self, value: float) -> None:
        self._anchor_position = min(max(float(value), 0.0), self.duration)
        self._anchor_time = self.clock.now()
        self._reschedule_end()
        self._emit(TransportEvent.SEEKED)

    @property
    def playback_rate(self) -> float:
        return self._rate

    @playback_rate.setter
    def playback_rate(self, value: float) -> None:
        value = clamp_rate(value)
        if value == self._rate:
            return
        self._rebase()
        self._rate = value
        self._reschedule_end()
        self._emit(TransportEvent.RATECHANGE)

    def play(self) -> None:
        if not self._paused:
            return
        self._anchor_time = self.clock.now()
        self._paused = False
        self._starting = self.start_latency > 0
        self._reschedule_end()
        self._emit(TransportEvent.PLAY)
        if self._starting:
            self._playing_timer = self.clock.call_later(self.start_latency, self._on_playing)
        else:
            self._on_playing()

    def pause(self) -> None:
        if self._paused:
            return
        self._rebase()
        self._paused = True
        self._starting = False
        self._cancel_timers()
        self._emit(TransportEvent.PAUSE)

    def _on_playing(self) -> None:
        self._playing_timer = None
        if self._paused:
            return
        self._starting = False
        # Media does not advance until it reports playing
        self._anchor_time = self.clock.now()
        self._reschedule_end()
        self._emit(TransportEvent.PLAYING)
        self._schedule_tick()

    def _rebase(self) -> None:
        self._anchor_position = self.current_time
        self._anchor_time = self.clock.now()

    def _schedule_tick(self) -> None:
        if self.timeupdate_interval <= 0:
            return
        self._tick_timer = self.clock.call_later(self.timeupdate_interval, self._on_tick)

    def _on_tick(self) -> None:
        self._tick_timer = None
        if self._paused:
            return
        self._emit(TransportEvent.TIMEUPDATE)
        if not self._paused:
            self._schedule_tick()

    def _reschedule_end(self) -> None:
        if self._ended_timer is not None:
            self._ended_timer.cancel()
            self._ended_timer = None
        if self._paused or self._starting or self.duration == float('inf'):
            return
        remaining = (self.duration - self.current_time) / self._rate
        self._ended_timer = self.clock.call_later(max(remaining, 0.0), self._on_ended)

    def _on_ended(self) -> None:
        self._ended_timer = None
        if self._paused:
            return
        if self.stalled:
            return
        self._anchor_position = self.duration
        self._anchor_time = self.clock.now()
        self._paused = True
        self._cancel_timers()
        logger.debug("Simulated media ended: %s", self._src)
        self._emit(TransportEvent.PAUSE)
        self._emit(TransportEvent.ENDED)

    def _cancel_timers(self) -> None:
        for timer in (self._ended_timer, self._playing_timer, self._tick_timer):
            if timer is not None:
                timer.cancel()
        self._ended_timer = None
        self._playing_timer = None
        self._tick_timer = None
