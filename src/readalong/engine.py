# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Read-along engine: block sequencing on top of the highlight state machine.

ReadAlongEngine loads blocks from a content source, drives the transport and
turns transport events into highlight state changes. It also carries the
transport workarounds: the play-start latency measurement that corrects the
end-of-block timer, and the watchdog that unsticks a transport whose position
stops moving after a seek.
"""

import asyncio
import contextlib
import logging
from collections.abc import Iterator
from typing import Any

from . import debug_log
from .clock import AsyncioClock, Clock, TimerHandle
from .config import EngineConfig, clamp_rate
from .content import ContentSource
from .events import CompleteEvent, EventDispatcher, MoveEvent, PauseEvent, ResumeEvent, StartEvent
from .exceptions import BlockNotFound, ReadAlongError, StalePositionDetected, TransportRejectedPlay
from .highlight import HighlightSink, HighlightStateMachine, MachineState, ScrollSink
from .scheduler import TransitionScheduler, round_ms
from .timing import RangeFilter, TimingTable, Word, build_timing_table
from .transport import PlaybackState, Transport, TransportEvent

logger = logging.getLogger(__name__)


class ReadAlongEngine:
    """
    Synchronizes word highlighting with audio playback, block by block.

    Usage:
        engine = ReadAlongEngine(transport, book, sink, config)
        engine.events.add_listener(CallbackListener(on_complete=print))
        engine.play_block("p1")

    Args:
        transport: Media transport to drive.
        content: Block lookup.
        sink: Receives highlight intents.
        config: Engine options (defaults if None).
        clock: Timer source (the running asyncio loop if None).
        scroll_sink: Optional scroller for forced line scrolling.
    """

    def __init__(
        self,
        transport: Transport,
        content: ContentSource,
        sink: HighlightSink,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        scroll_sink: ScrollSink | None = None
    ) -> None:
        self.config: EngineConfig = config or EngineConfig()
        self.clock: Clock = clock or AsyncioClock()
        self.transport: Transport = transport
        self.content: ContentSource = content
        self.events: EventDispatcher = EventDispatcher()
        self.scheduler: TransitionScheduler = TransitionScheduler(
            self.clock, stop_latency_ms=self.config.stop_latency_ms)
        self.machine: HighlightStateMachine = HighlightStateMachine(
            self.config,
            self.scheduler,
            sink,
            self.events,
            snapshot=self.snapshot,
            on_block_end=self._on_block_end,
            scroll_sink=scroll_sink,
            play_start_latency=lambda: self.play_start_latency_ms
        )

        self.block_id: str | None = None
        self.table: TimingTable | None = None
        self.block_table: TimingTable | None = None  # Unfiltered table of the block
        self.stop_at: float | None = None  # transport seconds
        self.playback_rate: float = self.config.playback_rate
        self.play_start_latency_ms: int = 0

        self._play_issued_at: float | None = None
        self._started: bool = False  # Start event sent for the current load
        self._continue_after: bool = False  # Auto-continue applies to this load
        self._watchdog: TimerHandle | None = None
        self._range_stop: TimerHandle | None = None
        self._quiet: int = 0

        self.transport.playback_rate = self.playback_rate
        self.transport.subscribe(self._on_transport_event)

    # -- state -----------------------------------------------------------------

    @property
    def phase(self) -> MachineState:
        """Current state of the highlight state machine."""
        return self.machine.phase

    @property
    def current_word(self) -> Word | None:
        """The highlighted word, if any."""
        return self.machine.state.current_word

    def snapshot(self) -> PlaybackState:
        """Read the transport into a PlaybackState."""
        return PlaybackState(
            position_ms=round_ms(self.transport.current_time * 1000),
            is_playing=not self.transport.paused,
            playback_rate=clamp_rate(self.transport.playback_rate),
            stop_at=self.stop_at
        )

    @contextlib.contextmanager
    def _quietly(self) -> Iterator[None]:
        """Ignore transport events caused by the engine's own housekeeping."""
        self._quiet += 1
        try:
            yield
        finally:
            self._quiet -= 1

    # -- public surface --------------------------------------------------------

    def load_block(
        self,
        block_id: str,
        from_position_ms: int | None = None,
        range_filter: RangeFilter | None = None,
        scroll_anchor: float | None = None
    ) -> TimingTable:
        """
        Load a block (optionally restricted to a range) without playing it.

        Args:
            block_id: Block to load.
            from_position_ms: Optional position to pre-seek to.
            range_filter: Optional range restriction.
            scroll_anchor: Initial line offset for line-break detection.

        Returns:
            The new timing table.

        Raises:
            BlockNotFound: If the block or its audio cannot be resolved.
            EmptyTimingTable: If the block or range has no words.
        """
        block = self.content.resolve(block_id)
        if block is None or not block.audio_ref:
            raise BlockNotFound(block_id)
        table = build_timing_table(block.word_spans, range_filter, block.element_refs)
        block_table = table if range_filter is None else build_timing_table(
            block.word_spans, refs=block.element_refs)

        self._cancel_range_stop()
        self._cancel_watchdog()
        with self._quietly():
            if not self.transport.paused:
                self.transport.pause()
            self.transport.src = block.audio_ref
            self.transport.playback_rate = self.playback_rate
            self.block_id = block_id
            self.table = table
            self.block_table = block_table
            self.stop_at = None
            self._started = False
            self._continue_after = False
            self._play_issued_at = None
            self.machine.load(table, block_id, prev_line_offset=scroll_anchor or 0.0)
            if from_position_ms is not None:
                self.transport.current_time = from_position_ms / 1000.0
                self.machine.resolve(from_position_ms)

        logger.info("Loaded block %s (%d words, %s)", block_id, len(table), block.audio_ref)
        return table

    def play_block(
        self,
        block_id: str,
        from_word: Word | None = None,
        rate: float | None = None,
        scroll_anchor: float | None = None
    ) -> TimingTable:
        """
        Load a block and play it, continuing to the next block at the end
        when auto_continue is enabled.
        """
        from_position = from_word.begin if from_word is not None else None
        table = self.load_block(block_id, from_position, scroll_anchor=scroll_anchor)
        if rate is not None:
            self.change_rate(rate)
        self._continue_after = True
        self._start_transport()
        return table

    def play_from_word(self, word: Word) -> None:
        """
        Seek to a word of the loaded block and play from there.

        Words are matched by begin time, so a word taken from a range table
        works too; a range restriction is dropped by reloading the whole block.
        """
        if self.table is None or self.block_id is None:
            return
        if self.table.range_filter is not None:
            self.load_block(self.block_id)
            self._continue_after = True
        word = self.machine.resolve(word.begin) or word
        # Seeking exactly to a boundary can land on the previous word
        self.transport.current_time = (word.begin + self.config.seek_epsilon_ms) / 1000.0
        if self.transport.paused and word.index > 0:
            self.events.emit(ResumeEvent(word))
        self._start_transport()

    def play_word(self, word: Word) -> TimingTable | None:
        """Play just one word of the loaded block."""
        if self.block_id is None:
            return None
        return self.play_range(self.block_id, word.begin, word.end)

    def play_range(self, block_id: str, start_ms: int, stop_ms: int) -> TimingTable:
        """
        Play [start_ms, stop_ms] of a block, then pause and complete.

        Raises:
            BlockNotFound: If the block cannot be resolved.
            EmptyTimingTable: If no word overlaps the range.
        """
        table = self.load_block(block_id, start_ms, range_filter=RangeFilter(start_ms, stop_ms))
        self.stop_at = stop_ms / 1000.0
        self._start_transport()
        return table

    def pause(self) -> None:
        """Pause playback."""
        self.transport.pause()

    def resume(self) -> None:
        """Resume a paused block from the current position."""
        if not self.transport.paused or self.table is None:
            return
        word = self.get_current_word()
        if self._start_transport() and word is not None:
            self.events.emit(ResumeEvent(word))

    def toggle(self) -> None:
        """Pause when playing, resume when paused."""
        if self.transport.paused:
            self.resume()
        else:
            self.pause()

    def change_rate(self, rate: float) -> None:
        """Change playback rate (clamped to 0.5-2.0) and re-time the pending transition."""
        rate = clamp_rate(rate)
        if rate == self.playback_rate:
            return
        self.playback_rate = rate
        self.transport.playback_rate = rate
        # Transports that report ratechange have already been handled here
        self.machine.rate_change(rate)

    def reconfigure(self, config: EngineConfig) -> None:
        """Swap in new options; the pending transition is re-timed if playing."""
        self.config = config
        self.machine.config = config
        self.scheduler.stop_latency_ms = config.stop_latency_ms
        if config.playback_rate != self.playback_rate:
            self.change_rate(config.playback_rate)
        else:
            self.machine.reschedule()

    def block_word(self, index: int) -> Word | None:
        """Word by its position in the whole block (ignoring any range)."""
        if self.block_table is None or not 0 <= index < len(self.block_table):
            return None
        return self.block_table[index]

    def get_current_word(self) -> Word | None:
        """Resolve the word at the transport position."""
        if self.table is None:
            return None
        return self.machine.resolve(self.snapshot().position_ms)

    def set_current_time(self, position_ms: int) -> None:
        """Seek the transport to position_ms."""
        self.transport.current_time = max(position_ms, 0) / 1000.0

    def close(self) -> None:
        """Cancel all pending timers."""
        self.scheduler.cancel()
        self._cancel_watchdog()
        self._cancel_range_stop()

    # -- transport -------------------------------------------------------------

    def _start_transport(self) -> bool:
        """Issue play, measuring start latency. Returns False if rejected."""
        self._play_issued_at = self.clock.now()
        try:
            result: Any = self.transport.play()
        except TransportRejectedPlay as e:
            self._on_play_rejected(e)
            return False
        if asyncio.isfuture(result):
            result.add_done_callback(self._on_play_settled)
        return True

    def _on_play_settled(self, future: 'asyncio.Future[Any]') -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is None:
            return
        if not isinstance(error, TransportRejectedPlay):
            error = TransportRejectedPlay(str(error))
        self._on_play_rejected(error)

    def _on_play_rejected(self, error: TransportRejectedPlay) -> None:
        logger.warning("Transport rejected play for block %s: %s", self.block_id, error)
        self._play_issued_at = None
        self._cancel_watchdog()
        self.machine.halt()

    def _on_transport_event(self, event: TransportEvent) -> None:
        """Dispatch a transport event to its handler."""
        if self._quiet or self.table is None:
            return
        debug_log.log_transport_event(
            event.value, round_ms(self.transport.current_time * 1000), self.transport.paused)

        handlers = {
            TransportEvent.PLAY: self._on_play,
            TransportEvent.PLAYING: self._on_playing,
            TransportEvent.PAUSE: self._on_pause,
            TransportEvent.SEEKED: self._on_seeked,
            TransportEvent.RATECHANGE: self._on_ratechange,
            TransportEvent.TIMEUPDATE: self._on_timeupdate,
            TransportEvent.ENDED: self._on_ended,
        }
        handler = handlers.get(event)
        if handler:
            handler()
        else:
            logger.warning("Unhandled transport event: %s", event)

    def _on_play(self) -> None:
        self.machine.play()

    def _on_playing(self) -> None:
        if self._play_issued_at is not None:
            self.play_start_latency_ms = max(
                round_ms((self.clock.now() - self._play_issued_at) * 1000), 0)
            self._play_issued_at = None
            logger.debug("Play-start latency: %dms", self.play_start_latency_ms)
        # The media only now started moving
        self.machine.reschedule()

        word = self.get_current_word()
        if not self._started and word is not None and word.index == 0 and self.table is not None:
            self._started = True
            self.events.emit(StartEvent(
                self.block_id or "", self.table.words, self.table.duration, self.playback_rate))

    def _on_pause(self) -> None:
        self._cancel_watchdog()
        word = self.machine.pause()
        if word is not None and self.table is not None and word.index < self.table.last_index:
            self.events.emit(PauseEvent(word))

    def _on_seeked(self) -> None:
        word = self.machine.seek()
        if word is not None and not self.transport.paused:
            self._arm_watchdog()
            self.events.emit(MoveEvent(word))

    def _on_ratechange(self) -> None:
        reported = self.transport.playback_rate
        rate = clamp_rate(reported)
        if rate != reported:
            # Someone set an unsupported rate on the transport directly
            self.transport.playback_rate = rate
            return
        self.playback_rate = rate
        self.machine.rate_change(rate)

    def _on_timeupdate(self) -> None:
        if (self.stop_at is not None and self.machine.phase == MachineState.PLAYING
                and self.transport.current_time >= self.stop_at):
            self.machine.end()

    def _on_ended(self) -> None:
        self.machine.end()

    # -- block end -------------------------------------------------------------

    def _on_block_end(self) -> None:
        block_id = self.block_id or ""
        self._cancel_watchdog()
        if self.stop_at is not None and not self.transport.paused:
            self._stop_at_boundary(self.stop_at)
        self.events.emit(CompleteEvent(block_id))

        if not (self.config.auto_continue and self._continue_after):
            return
        next_id = self.content.next_block_id(block_id)
        if next_id is None:
            logger.info("Reached end of content after block %s", block_id)
            return
        try:
            self.play_block(next_id)
        except ReadAlongError as e:
            logger.error("Could not continue to block %s: %s", next_id, e)

    def _stop_at_boundary(self, stop_at: float) -> None:
        """
        Pause a range once the media reaches stop_at.

        The last transition fires stop_latency_ms early, so the media may still
        be short of the boundary; the pause is then deferred until it gets there.
        """
        remaining_ms = round_ms(
            (stop_at - self.transport.current_time) * 1000 / self.transport.playback_rate)
        if remaining_ms > 0:
            self._range_stop = self.clock.call_later(remaining_ms / 1000.0, self._on_range_stop)
            return
        with self._quietly():
            self.transport.pause()

    def _on_range_stop(self) -> None:
        self._range_stop = None
        if not self.transport.paused:
            with self._quietly():
                self.transport.pause()

    def _cancel_range_stop(self) -> None:
        if self._range_stop is not None:
            self._range_stop.cancel()
            self._range_stop = None

    # -- stuck seek recovery ---------------------------------------------------

    def _arm_watchdog(self) -> None:
        self._cancel_watchdog()
        position = self.transport.current_time
        self._watchdog = self.clock.call_later(
            self.config.stall_grace_ms / 1000.0, lambda: self._check_stall(position))

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _check_stall(self, position: float) -> None:
        self._watchdog = None
        try:
            self._verify_progress(position)
        except StalePositionDetected as e:
            logger.warning("%s; nudging by %dms", e, self.config.seek_epsilon_ms)
            with self._quietly():
                self.transport.current_time = position + self.config.seek_epsilon_ms / 1000.0
            self.machine.seek()

    def _verify_progress(self, position: float) -> None:
        if not self.transport.paused and self.transport.current_time == position:
            raise StalePositionDetected(position)
