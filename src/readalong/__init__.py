"""
Read-along - word highlighting synchronised with narrated audio.

An engine that keeps a per-word highlight in step with an audio transport,
driven by each word's begin/duration timing, with block sequencing, range
playback and line-aware scrolling.
"""

__version__ = "0.1.0"

from .config import EngineConfig
from .content import BlockContent, BookContent, WordRef
from .engine import ReadAlongEngine
from .events import CallbackListener, EventKind
from .exceptions import BlockNotFound, EmptyTimingTable, ReadAlongError
from .input_adapter import InputAdapter
from .timing import RangeFilter, TimingTable, Word, WordSpan, build_timing_table
from .transport import SimulatedTransport

__all__ = [
    "EngineConfig",
    "BlockContent",
    "BookContent",
    "WordRef",
    "ReadAlongEngine",
    "CallbackListener",
    "EventKind",
    "ReadAlongError",
    "BlockNotFound",
    "EmptyTimingTable",
    "InputAdapter",
    "RangeFilter",
    "TimingTable",
    "Word",
    "WordSpan",
    "build_timing_table",
    "SimulatedTransport",
]
