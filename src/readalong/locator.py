# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Resolves a playback position to the word that owns it.

The playback source reports position coarsely, so lookups happen often and
mostly land on the same word as last time. The last resolved word is kept as
a cache and checked first; otherwise a binary search over the table is used.
"""

from .timing import TimingTable, Word


def locate(table: TimingTable, position_ms: float, cached: Word | None = None) -> Word:
    """
    Find the word at a playback position.

    A position exactly on a boundary belongs to the later word. A position in
    a gap between words resolves to the preceding word. Positions before the
    first word or after the last word clamp to that word.

    Args:
        table: The active timing table.
        position_ms: Playback position in milliseconds.
        cached: Previously resolved word, checked before searching.

    Returns:
        The resolved word (always a member of the table).
    """
    if cached is not None and cached.index < len(table) and table[cached.index] == cached:
        if cached.begin <= position_ms < cached.end:
            return cached

    low, high = 0, len(table) - 1
    while low <= high:
        middle = (low + high) // 2
        word = table[middle]
        if position_ms >= word.end:
            low = middle + 1
        elif position_ms < word.begin:
            high = middle - 1
        else:
            return word

    # No word contains the position: take the one before the gap, clamped
    return table[min(max(high, 0), len(table) - 1)]


class WordLocator:
    """Cached word lookup bound to one timing table."""

    def __init__(self, table: TimingTable) -> None:
        self.table: TimingTable = table
        self.cached: Word | None = None

    def locate(self, position_ms: float) -> Word:
        """Resolve the word at position_ms and make it the new cache entry."""
        self.cached = locate(self.table, position_ms, self.cached)
        return self.cached

    def invalidate(self) -> None:
        """Forget the cached word."""
        self.cached = None
