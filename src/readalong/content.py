# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Content source for read-along blocks.

A block is a unit of text (typically a paragraph) with its own audio and word
timings. The engine only needs to look a block up by id and to find the block
that follows it; BookContent provides both from a YAML (or JSON) book file:

    title: Sample
    blocks:
      - id: p1
        audio: audio/p1.mp3
        text: The quick brown fox
        map: ["0,500", "500,700", "1200,300", "1500,400"]
      - id: p2
        audio: audio/p2.mp3
        text: jumps over
        start: 0
        durations: [450, 600]

Words of `text` are paired with spans by whitespace splitting; proper
tokenization happens upstream when the book is produced.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

from .exceptions import ContentError
from .timing import WordSpan, coerce_span, spans_from_durations

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WordRef:
    """External reference to one word element of a block."""
    block_id: str
    index: int  # Position within the whole block, unaffected by range filters
    text: str = ""


@dataclass
class BlockContent:
    """Everything the engine needs to play one block."""
    block_id: str
    audio_ref: str
    word_spans: list[WordSpan]
    element_refs: list[Any] = field(default_factory=list)
    text: str = ""
    duration: float | None = None  # Audio duration in seconds, when known


class ContentSource(Protocol):
    """Block lookup used by the engine."""

    def resolve(self, block_id: str) -> BlockContent | None:
        """Return the block, or None if it does not exist."""

    def next_block_id(self, block_id: str) -> str | None:
        """Id of the block after block_id in document order, or None."""


class BookContent:
    """Ordered collection of blocks."""

    def __init__(self, blocks: Sequence[BlockContent], title: str = "") -> None:
        self.title: str = title
        self.blocks: list[BlockContent] = list(blocks)
        self._by_id: dict[str, BlockContent] = {}
        for block in self.blocks:
            if block.block_id in self._by_id:
                raise ContentError(f"Duplicate block id: {block.block_id!r}")
            self._by_id[block.block_id] = block

    @property
    def block_ids(self) -> list[str]:
        """Block ids in document order."""
        return [b.block_id for b in self.blocks]

    def resolve(self, block_id: str) -> BlockContent | None:
        return self._by_id.get(block_id)

    def next_block_id(self, block_id: str) -> str | None:
        ids = self.block_ids
        try:
            position = ids.index(block_id)
        except ValueError:
            return None
        # Skip blocks that carry no timing (headings, images...)
        for candidate in self.blocks[position + 1:]:
            if candidate.word_spans:
                return candidate.block_id
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'BookContent':
        """Build from a parsed book document."""
        if not isinstance(data, dict):
            raise ContentError("Book content must be a mapping")
        raw_blocks = data.get("blocks")
        if not isinstance(raw_blocks, list):
            raise ContentError("Book content needs a 'blocks' list")
        blocks = [parse_block(raw, position) for position, raw in enumerate(raw_blocks)]
        return cls(blocks, title=str(data.get("title", "")))

    @classmethod
    def load(cls, path: Path) -> 'BookContent':
        """Load a YAML or JSON book file."""
        try:
            with open(path, encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ContentError(f"Could not load content from {path}: {e}") from e
        book = cls.from_dict(data or {})
        logger.info("Loaded %d blocks from %s", len(book.blocks), path)
        return book


def _check_order(block_id: str, spans: list[WordSpan]) -> None:
    """Reject spans that are out of order or overlap; lookups rely on both."""
    for prev, span in zip(spans, spans[1:]):
        if span.begin < prev.begin:
            raise ContentError(
                f"Block {block_id!r}: word at {span.begin}ms comes after {prev.begin}ms")
        if span.begin < prev.resolved_end:
            raise ContentError(
                f"Block {block_id!r}: word at {span.begin}ms overlaps the word ending at {prev.resolved_end}ms")


def parse_block(raw: dict[str, Any], position: int = 0) -> BlockContent:
    """
    Parse one block definition.

    Timing is taken from `map` (list of "begin,dur[,end]" strings, lists or
    mappings) or from `start` + `durations`. A block without either is kept
    but has no words.
    """
    if not isinstance(raw, dict):
        raise ContentError(f"Block #{position} must be a mapping")
    block_id = raw.get("id")
    if not block_id:
        raise ContentError(f"Block #{position} has no id")
    block_id = str(block_id)

    spans: list[WordSpan]
    if "map" in raw:
        spans = [coerce_span(item) for item in raw.get("map") or []]
    elif "durations" in raw:
        try:
            spans = spans_from_durations(
                int(raw.get("start", 0)), [int(d) for d in raw["durations"]])
        except (TypeError, ValueError) as e:
            raise ContentError(f"Block {block_id!r} has invalid durations: {e}") from e
    else:
        spans = []

    _check_order(block_id, spans)

    text = str(raw.get("text", ""))
    tokens = text.split()
    if spans and tokens and len(tokens) != len(spans):
        logger.warning("Block %s: %d words of text but %d timings",
                       block_id, len(tokens), len(spans))

    refs = [
        WordRef(block_id, index, tokens[index] if index < len(tokens) else "")
        for index in range(len(spans))
    ]
    duration = raw.get("duration")
    return BlockContent(
        block_id=block_id,
        audio_ref=str(raw.get("audio", "")),
        word_spans=spans,
        element_refs=refs,
        text=text,
        duration=float(duration) if duration is not None else None
    )
