# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""Custom exceptions for the read-along engine."""


class ReadAlongError(Exception):
    """Base exception for the read-along engine."""


class EmptyTimingTable(ReadAlongError):
    """A block or range has no addressable words; playback does not start."""


class BlockNotFound(ReadAlongError):
    """A block reference could not be resolved by the content source."""

    def __init__(self, block_id: str) -> None:
        super().__init__(f"Block not found: {block_id!r}")
        self.block_id = block_id


class TransportRejectedPlay(ReadAlongError):
    """The transport refused (or asynchronously failed) a play request."""


class StalePositionDetected(ReadAlongError):
    """The transport position did not advance after a seek while playing."""

    def __init__(self, position: float) -> None:
        super().__init__(f"Transport stalled at {position:.3f}s after seek")
        self.position = position


class ConfigError(ReadAlongError, ValueError):
    """Invalid configuration value."""


class ContentError(ReadAlongError):
    """Malformed content file or block definition."""
