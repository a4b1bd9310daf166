# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Timing index for a block of read-along text.

A block's word timings arrive as raw (begin, dur, end?) spans in document
order. build_timing_table() turns them into an immutable TimingTable of Words,
optionally restricted to a sub-range of the block's audio.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .exceptions import ContentError, EmptyTimingTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WordSpan:
    """Raw timing for one word, in milliseconds."""
    begin: int
    dur: int
    end: int | None = None

    @property
    def resolved_end(self) -> int:
        """Explicit end if given, otherwise begin + dur."""
        return self.end if self.end is not None else self.begin + self.dur


@dataclass(frozen=True)
class Word:
    """A timed word within a TimingTable."""
    index: int  # Zero-based position in the table
    begin: int  # ms
    end: int  # ms
    dur: int  # ms
    ref: Any = field(default=None, compare=False)  # Opaque external content reference


@dataclass(frozen=True)
class RangeFilter:
    """Restricts a table to the words overlapping [start_ms, stop_ms]."""
    start_ms: int
    stop_ms: int

    def __post_init__(self) -> None:
        if self.stop_ms < self.start_ms:
            # An inverted range has no addressable words
            raise EmptyTimingTable(
                f"Range stop ({self.stop_ms}) precedes start ({self.start_ms})")

    def admits(self, begin: int, end: int) -> bool:
        """Check whether a word's [begin, end) qualifies for this range."""
        start, stop = self.start_ms, self.stop_ms
        if start <= begin < stop or start < end <= stop:
            return True
        # Word covering the whole range (or a zero-width range inside it)
        return begin <= start and end > stop


@dataclass(frozen=True)
class TimingTable:
    """Ordered, immutable sequence of Words for the active block or range."""
    words: tuple[Word, ...]
    range_filter: RangeFilter | None = None

    def __len__(self) -> int:
        return len(self.words)

    def __getitem__(self, index: int) -> Word:
        return self.words[index]

    def __iter__(self):
        return iter(self.words)

    @property
    def first(self) -> Word:
        """First word of the table."""
        return self.words[0]

    @property
    def last(self) -> Word:
        """Last word of the table."""
        return self.words[-1]

    @property
    def last_index(self) -> int:
        """Index of the last word."""
        return len(self.words) - 1

    @property
    def duration(self) -> int:
        """Block duration as computed by block_duration()."""
        return block_duration(self)

    def is_last(self, word: Word) -> bool:
        """Whether the word is the final word of this table."""
        return word.index >= self.last_index

    def next_word(self, word: Word) -> Word | None:
        """The word following the given one, or None at the end."""
        if word.index >= self.last_index:
            return None
        return self.words[word.index + 1]


def block_duration(table: TimingTable) -> int:
    """
    Duration figure reported with the start event.

    Note that this adds the last word's begin and end rather than taking
    end - begin. Consumers showing progress should not rely on it being the
    audible duration of the block.
    """
    return table.last.begin + table.last.end - table.first.begin


def build_timing_table(
    spans: Iterable[WordSpan],
    range_filter: RangeFilter | None = None,
    refs: Sequence[Any] | None = None
) -> TimingTable:
    """
    Build a TimingTable from raw spans in document order.

    Args:
        spans: Raw word spans, sorted by begin.
        range_filter: Optional range; only overlapping words are kept.
        refs: Optional external content references, parallel to spans.

    Returns:
        The new TimingTable with indices renumbered from 0.

    Raises:
        EmptyTimingTable: If no words remain (after filtering).
    """
    words: list[Word] = []
    for position, span in enumerate(spans):
        end = span.resolved_end
        if range_filter is not None and not range_filter.admits(span.begin, end):
            continue
        ref = refs[position] if refs is not None and position < len(refs) else None
        words.append(Word(
            index=len(words),
            begin=span.begin,
            end=end,
            dur=span.dur,
            ref=ref
        ))

    if not words:
        if range_filter is not None:
            raise EmptyTimingTable(
                f"No words in range {range_filter.start_ms}-{range_filter.stop_ms}ms")
        raise EmptyTimingTable("No words to synchronize")

    logger.debug("Built timing table: %d words (range=%s)", len(words), range_filter)
    return TimingTable(words=tuple(words), range_filter=range_filter)


def parse_map_attr(value: str) -> WordSpan:
    """
    Parse a "begin,dur" or "begin,dur,end" map attribute.

    Args:
        value: Comma separated integers in milliseconds, e.g. "7464,844".

    Returns:
        The parsed WordSpan.

    Raises:
        ContentError: If the value is not two or three integers.
    """
    parts = [p.strip() for p in str(value).split(',')]
    if len(parts) not in (2, 3):
        raise ContentError(f"Invalid word map {value!r}: expected begin,dur[,end]")
    try:
        numbers = [int(p) for p in parts]
    except ValueError as e:
        raise ContentError(f"Invalid word map {value!r}: {e}") from e
    if len(numbers) == 3:
        return WordSpan(begin=numbers[0], dur=numbers[1], end=numbers[2])
    return WordSpan(begin=numbers[0], dur=numbers[1])


def spans_from_durations(start: int, durations: Sequence[int]) -> list[WordSpan]:
    """
    Expand a start time and consecutive word durations into spans.

    Each word begins where the previous one ended, which is how compact
    per-block maps store their timing.

    Args:
        start: Begin of the first word in ms.
        durations: Duration of each word in ms.

    Returns:
        One WordSpan per duration.
    """
    spans: list[WordSpan] = []
    begin = start
    for dur in durations:
        spans.append(WordSpan(begin=begin, dur=dur))
        begin += dur
    return spans


def coerce_span(raw: Any) -> WordSpan:
    """Convert a span given as a map string, sequence or mapping into a WordSpan."""
    if isinstance(raw, WordSpan):
        return raw
    if isinstance(raw, str):
        return parse_map_attr(raw)
    if isinstance(raw, dict):
        try:
            end = raw.get("end")
            return WordSpan(
                begin=int(raw["begin"]),
                dur=int(raw["dur"]),
                end=int(end) if end is not None else None
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ContentError(f"Invalid word span {raw!r}: {e}") from e
    if isinstance(raw, (list, tuple)):
        return parse_map_attr(','.join(str(v) for v in raw))
    raise ContentError(f"Unsupported word span: {raw!r}")
