# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Offline simulation of a read-along session.

Runs the engine against a SimulatedTransport on a VirtualClock and records
every highlight change, scroll and event with its virtual timestamp. Handy to
check a book's timing data (or the engine's behaviour) without a browser.
"""

import logging
from dataclasses import dataclass
from typing import Any

from .clock import VirtualClock
from .config import EngineConfig
from .content import BookContent, WordRef
from .engine import ReadAlongEngine
from .events import ReadAlongEvent
from .highlight import HighlightKind, MachineState
from .transport import SimulatedTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimelineEntry:
    """One recorded happening."""
    time_ms: int
    kind: str  # "apply", "retract", "scroll" or an event kind
    detail: str


class TimelineRecorder:
    """
    Highlight sink, scroll sink and event listener that records a timeline.

    Layout is emulated by putting words_per_line words on each line, line_height
    pixels apart. Set words_per_line to 0 to report no layout at all.
    """

    def __init__(self, clock: VirtualClock, words_per_line: int = 8, line_height: float = 30.0) -> None:
        self.clock: VirtualClock = clock
        self.words_per_line: int = words_per_line
        self.line_height: float = line_height
        self.entries: list[TimelineEntry] = []
        self.marks: dict[Any, set[HighlightKind]] = {}

    def _record(self, kind: str, detail: str) -> None:
        self.entries.append(TimelineEntry(int(round(self.clock.now() * 1000)), kind, detail))

    @staticmethod
    def _describe(ref: Any) -> str:
        if isinstance(ref, WordRef):
            return f"{ref.block_id}#{ref.index} {ref.text}".rstrip()
        return str(ref)

    def apply(self, ref: Any, kind: HighlightKind) -> None:
        self.marks.setdefault(ref, set()).add(kind)
        self._record("apply", f"{kind.value} {self._describe(ref)}")

    def retract(self, ref: Any, kind: HighlightKind) -> None:
        if kind not in self.marks.get(ref, set()):
            return
        self.marks[ref].discard(kind)
        self._record("retract", f"{kind.value} {self._describe(ref)}")

    def offset_of(self, ref: Any) -> float | None:
        if self.words_per_line <= 0 or not isinstance(ref, WordRef):
            return None
        return (ref.index // self.words_per_line) * self.line_height

    def scroll_by(self, delta_px: float, duration_ms: int) -> None:
        self._record("scroll", f"{delta_px:+.0f}px over {duration_ms}ms")

    def on_event(self, event: ReadAlongEvent) -> None:
        payload = {k: v for k, v in vars(event).items() if k not in ("kind", "words")}
        if "word" in payload:
            payload["word"] = payload["word"].index
        self._record(event.kind.value, ", ".join(f"{k}={v}" for k, v in payload.items()))

    def highlighted(self, kind: HighlightKind = HighlightKind.CURRENT) -> list[Any]:
        """Refs currently carrying a mark of the given kind."""
        return [ref for ref, kinds in self.marks.items() if kind in kinds]


def simulate_block(
    book: BookContent,
    block_id: str,
    config: EngineConfig | None = None,
    rate: float | None = None,
    start_latency_ms: int = 0,
    words_per_line: int = 8,
    limit_s: float = 3600.0
) -> list[TimelineEntry]:
    """
    Play a block (and, with auto_continue, the blocks after it) on a virtual clock.

    Args:
        book: Content to play from.
        block_id: First block.
        config: Engine options.
        rate: Optional playback rate.
        start_latency_ms: Simulated delay between play and playing.
        words_per_line: Emulated layout density.
        limit_s: Virtual time after which the simulation stops.

    Returns:
        The recorded timeline.
    """
    clock = VirtualClock()
    durations = {
        block.audio_ref: block.duration
        for block in book.blocks
        if block.duration is not None
    }
    transport = SimulatedTransport(
        clock,
        durations=durations,
        start_latency=start_latency_ms / 1000.0,
        timeupdate_interval=0.25
    )
    recorder = TimelineRecorder(clock, words_per_line=words_per_line)
    engine = ReadAlongEngine(
        transport, book, recorder,
        config=config, clock=clock, scroll_sink=recorder
    )
    engine.events.add_listener(recorder)

    engine.play_block(block_id, rate=rate)

    while clock.now() < limit_s:
        if engine.phase in (MachineState.IDLE, MachineState.ENDED) or transport.paused:
            break
        pending = clock.pending
        if not pending:
            break
        clock.advance_to(min(pending[0].due, limit_s))

    engine.close()
    logger.debug("Simulation of %s finished at %.3fs", block_id, clock.now())
    return recorder.entries
