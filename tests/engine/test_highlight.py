# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for highlight intents and the highlight state machine.
"""

from readalong.clock import VirtualClock
from readalong.config import EngineConfig
from readalong.content import WordRef
from readalong.events import EventDispatcher, EventKind
from readalong.highlight import (
    HighlightIntent,
    HighlightKind,
    HighlightStateMachine,
    IntentAction,
    MachineState,
    plan_transition,
)
from readalong.scheduler import TransitionScheduler
from readalong.timing import Word, WordSpan, build_timing_table
from readalong.transport import PlaybackState

from conftest import RecordingSink

APPLY, RETRACT = IntentAction.APPLY, IntentAction.RETRACT
CURRENT, TRAIL = HighlightKind.CURRENT, HighlightKind.TRAIL


def word(index: int) -> Word:
    return Word(index=index, begin=index * 100, end=index * 100 + 100, dur=100)


class TestPlanTransition:
    """Tests for plan_transition()."""

    def test_first_word_only_applies_current(self) -> None:
        assert plan_transition(word(0), is_newline=False) == [HighlightIntent(APPLY, CURRENT, 0)]

    def test_second_word_moves_current_and_leaves_trail(self) -> None:
        assert plan_transition(word(1), is_newline=False) == [
            HighlightIntent(APPLY, CURRENT, 1),
            HighlightIntent(RETRACT, CURRENT, 0),
            HighlightIntent(APPLY, TRAIL, 0),
        ]

    def test_trail_window_is_retracted(self) -> None:
        """Trail marks two to five words back are retracted."""
        intents = plan_transition(word(6), is_newline=False)
        assert intents == [
            HighlightIntent(APPLY, CURRENT, 6),
            HighlightIntent(RETRACT, CURRENT, 5),
            HighlightIntent(RETRACT, TRAIL, 4),
            HighlightIntent(RETRACT, TRAIL, 3),
            HighlightIntent(RETRACT, TRAIL, 2),
            HighlightIntent(RETRACT, TRAIL, 1),
            HighlightIntent(APPLY, TRAIL, 5),
        ]

    def test_trail_disabled(self) -> None:
        intents = plan_transition(word(2), is_newline=False, highlight_trail=False)
        assert HighlightIntent(APPLY, TRAIL, 1) not in intents
        assert intents[-1] == HighlightIntent(RETRACT, TRAIL, 0)

    def test_newline_flushes_trail(self) -> None:
        """On a line break every trail mark in the flush window goes, none is added."""
        intents = plan_transition(word(20), is_newline=True)
        retracted = [i.index for i in intents if i.action == RETRACT and i.kind == TRAIL]

        assert sorted(retracted) == list(range(6, 20))
        assert len(retracted) == len(set(retracted))
        assert not any(i.action == APPLY and i.kind == TRAIL for i in intents)

    def test_newline_flush_stops_at_block_start(self) -> None:
        intents = plan_transition(word(3), is_newline=True)
        retracted = [i.index for i in intents if i.action == RETRACT and i.kind == TRAIL]
        assert sorted(retracted) == [0, 1, 2]


class MachineRig:
    """A state machine with a hand-driven playback snapshot."""

    def __init__(self, config: EngineConfig | None = None, offsets: dict[int, float] | None = None) -> None:
        self.clock = VirtualClock()
        self.sink = RecordingSink(offsets)
        self.events = EventDispatcher()
        self.ended: list[bool] = []
        self.playback = PlaybackState(position_ms=0, is_playing=True, playback_rate=1.0)
        self.machine = HighlightStateMachine(
            config or EngineConfig(),
            TransitionScheduler(self.clock),
            self.sink,
            self.events,
            snapshot=lambda: self.playback,
            on_block_end=lambda: self.ended.append(True),
            scroll_sink=self.sink
        )
        spans = [WordSpan(0, 500), WordSpan(500, 700), WordSpan(1200, 300)]
        self.table = build_timing_table(spans, refs=[WordRef("p1", i) for i in range(3)])

    def at(self, position_ms: int, is_playing: bool = True) -> None:
        self.playback = PlaybackState(position_ms=position_ms, is_playing=is_playing, playback_rate=1.0)


class TestHighlightStateMachine:
    """Tests for HighlightStateMachine."""

    def test_load_and_play(self) -> None:
        rig = MachineRig()
        assert rig.machine.phase == MachineState.IDLE

        rig.machine.load(rig.table, "p1")
        assert rig.machine.phase == MachineState.LOADED

        rig.machine.play()
        assert rig.machine.phase == MachineState.PLAYING
        assert rig.sink.current() == [0]
        assert rig.machine.scheduler.pending

    def test_reload_retracts_marks(self) -> None:
        rig = MachineRig()
        rig.machine.load(rig.table, "p1")
        rig.at(600)
        rig.machine.play()
        assert rig.sink.current() == [1]

        rig.machine.load(rig.table, "p1")
        assert rig.sink.marks == set()
        assert not rig.machine.scheduler.pending
        assert rig.machine.state.current_word is None

    def test_pause_keeps_highlight_by_default(self) -> None:
        rig = MachineRig()
        rig.machine.load(rig.table, "p1")
        rig.machine.play()
        rig.at(100, is_playing=False)

        paused_on = rig.machine.pause()
        assert paused_on is not None and paused_on.index == 0
        assert rig.machine.phase == MachineState.PAUSED
        assert rig.sink.current() == [0]
        assert not rig.machine.scheduler.pending

    def test_pause_can_clear_highlight(self) -> None:
        rig = MachineRig(EngineConfig(keep_highlight_on_pause=False))
        rig.machine.load(rig.table, "p1")
        rig.machine.play()
        rig.at(100, is_playing=False)

        rig.machine.pause()
        assert rig.sink.marks == set()

    def test_pause_only_from_playing(self) -> None:
        rig = MachineRig()
        rig.machine.load(rig.table, "p1")
        assert rig.machine.pause() is None
        assert rig.machine.phase == MachineState.LOADED

    def test_end_notifies_once(self) -> None:
        rig = MachineRig()
        rig.machine.load(rig.table, "p1")
        rig.machine.play()

        rig.machine.end()
        rig.machine.end()
        assert rig.ended == [True]
        assert rig.machine.phase == MachineState.ENDED
        assert rig.sink.marks == set()

    def test_rate_change_same_rate_is_noop(self) -> None:
        rig = MachineRig()
        rig.machine.load(rig.table, "p1")
        rig.machine.play()
        cancels = rig.machine.scheduler.cancel_count

        assert not rig.machine.rate_change(1.0)
        assert rig.machine.scheduler.cancel_count == cancels

    def test_rate_change_is_clamped(self) -> None:
        rig = MachineRig()
        rig.machine.load(rig.table, "p1")
        rig.machine.play()

        assert rig.machine.rate_change(10.0)
        assert rig.machine.state.rate == 2.0

    def test_newline_emits_event_and_scrolls(self) -> None:
        rig = MachineRig(offsets={0: 0.0, 1: 30.0, 2: 30.0})
        newlines = []
        rig.events.subscribe(newlines.append, kind=EventKind.NEWLINE)
        rig.machine.load(rig.table, "p1")
        rig.machine.play()
        assert newlines == []

        rig.at(500)
        rig.machine.transition_fire()

        assert len(newlines) == 1
        assert (newlines[0].prev_offset, newlines[0].new_offset) == (0.0, 30.0)
        assert newlines[0].percent_complete == 67
        assert rig.sink.scrolls == [(30.0, 250)]

    def test_no_scroll_when_forced_scrolling_is_off(self) -> None:
        rig = MachineRig(EngineConfig(force_line_scroll=False), offsets={0: 0.0, 1: 30.0})
        rig.machine.load(rig.table, "p1")
        rig.machine.play()
        rig.at(500)
        rig.machine.transition_fire()
        assert rig.sink.scrolls == []
