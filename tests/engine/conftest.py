# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Shared fixtures for engine tests: a recording highlight sink and a book.
"""

from dataclasses import dataclass, field
from typing import Any

import pytest

from readalong.clock import VirtualClock
from readalong.config import EngineConfig
from readalong.content import BookContent
from readalong.engine import ReadAlongEngine
from readalong.events import EventKind, ReadAlongEvent
from readalong.highlight import HighlightKind
from readalong.transport import SimulatedTransport


class RecordingSink:
    """Highlight and scroll sink that records every call."""

    def __init__(self, offsets: dict[int, float] | None = None) -> None:
        self.offsets: dict[int, float] = offsets or {}
        self.calls: list[tuple[str, int, HighlightKind]] = []
        self.scrolls: list[tuple[float, int]] = []
        self.marks: set[tuple[int, HighlightKind]] = set()

    def apply(self, ref: Any, kind: HighlightKind) -> None:
        self.calls.append(("apply", ref.index, kind))
        self.marks.add((ref.index, kind))

    def retract(self, ref: Any, kind: HighlightKind) -> None:
        self.calls.append(("retract", ref.index, kind))
        self.marks.discard((ref.index, kind))

    def offset_of(self, ref: Any) -> float | None:
        return self.offsets.get(ref.index)

    def scroll_by(self, delta_px: float, duration_ms: int) -> None:
        self.scrolls.append((delta_px, duration_ms))

    def current(self) -> list[int]:
        """Indices carrying a current mark."""
        return sorted(i for i, kind in self.marks if kind == HighlightKind.CURRENT)

    def trail(self) -> list[int]:
        """Indices carrying a trail mark."""
        return sorted(i for i, kind in self.marks if kind == HighlightKind.TRAIL)


@dataclass
class Rig:
    """An engine wired to a virtual clock and simulated transport."""
    clock: VirtualClock
    transport: SimulatedTransport
    sink: RecordingSink
    engine: ReadAlongEngine
    events: list[ReadAlongEvent] = field(default_factory=list)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]

    def of_kind(self, kind: EventKind) -> list[ReadAlongEvent]:
        return [e for e in self.events if e.kind == kind]


BOOK_DATA = {
    "title": "Test book",
    "blocks": [
        {"id": "p1", "audio": "p1.mp3", "text": "one two three",
         "map": ["0,500", "500,700", "1200,300"]},
        {"id": "h1", "audio": "", "text": "Heading"},
        {"id": "p2", "audio": "p2.mp3", "text": "four five",
         "start": 0, "durations": [400, 400]},
    ],
}


@pytest.fixture
def book() -> BookContent:
    return BookContent.from_dict(BOOK_DATA)


def make_rig(
    book: BookContent,
    config: EngineConfig | None = None,
    offsets: dict[int, float] | None = None,
    start_latency: float = 0.0,
    transport_cls: type = SimulatedTransport
) -> Rig:
    clock = VirtualClock()
    transport = transport_cls(clock, start_latency=start_latency)
    sink = RecordingSink(offsets)
    engine = ReadAlongEngine(transport, book, sink, config=config, clock=clock, scroll_sink=sink)
    rig = Rig(clock, transport, sink, engine)
    engine.events.subscribe(rig.events.append)
    return rig


@pytest.fixture
def rig(book: BookContent) -> Rig:
    return make_rig(book)


@pytest.fixture
def rig_factory(book: BookContent):
    """Build a rig with custom options: rig_factory(config=..., offsets=...)."""
    def factory(**kwargs: Any) -> Rig:
        return make_rig(book, **kwargs)
    return factory
