# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for mapping keyboard and pointer input onto engine operations.
"""

from unittest import mock

import pytest

from readalong.config import EngineConfig
from readalong.input_adapter import InputAdapter

from conftest import Rig


class TestInputAdapter:
    """Tests for InputAdapter."""

    def test_space_toggles_playback(self, rig: Rig) -> None:
        adapter = InputAdapter(rig.engine)
        rig.engine.play_block("p1")

        assert adapter.on_key(" ")
        assert rig.transport.paused
        assert adapter.on_key("Space")
        assert not rig.transport.paused

    def test_space_ignored_when_toggle_disabled(self, rig_factory) -> None:
        rig = rig_factory(config=EngineConfig(spacebar_toggle=False))
        adapter = InputAdapter(rig.engine)
        rig.engine.play_block("p1")

        assert not adapter.on_key(" ")
        assert not rig.transport.paused

    def test_enter_plays_from_word(self, rig: Rig) -> None:
        adapter = InputAdapter(rig.engine)
        rig.engine.load_block("p1")

        assert adapter.on_key("Enter", word_index=1)
        assert rig.engine.current_word.index == 1
        assert not rig.transport.paused

    def test_enter_without_word_is_not_consumed(self, rig: Rig) -> None:
        adapter = InputAdapter(rig.engine)
        rig.engine.load_block("p1")
        assert not adapter.on_key("Enter")
        assert not adapter.on_key("Enter", word_index=42)

    def test_other_keys_pass_through(self, rig: Rig) -> None:
        adapter = InputAdapter(rig.engine)
        assert not adapter.on_key("a")

    def test_click_requires_click_to_play(self, rig: Rig) -> None:
        adapter = InputAdapter(rig.engine)
        rig.engine.load_block("p1")

        assert not adapter.on_click(2)
        assert rig.transport.paused

    def test_click_plays_from_word(self, rig_factory) -> None:
        rig = rig_factory(config=EngineConfig(click_to_play=True))
        adapter = InputAdapter(rig.engine)
        rig.engine.load_block("p1")

        assert adapter.on_click(2)
        assert rig.engine.current_word.index == 2

    def test_double_click_plays_one_word(self, rig: Rig) -> None:
        adapter = InputAdapter(rig.engine)
        rig.engine.load_block("p1")

        assert adapter.on_double_click(1)
        assert rig.engine.stop_at == pytest.approx(1.2)
        assert len(rig.engine.table) == 1

    def test_indices_refer_to_whole_block(self, rig: Rig) -> None:
        """After a range is played, indices still address the full block."""
        adapter = InputAdapter(rig.engine)
        rig.engine.play_range("p1", 1200, 1500)

        with mock.patch.object(rig.engine, "play_from_word") as play_from_word:
            adapter.on_key("enter", word_index=0)
        assert play_from_word.call_args.args[0].begin == 0

    def test_override_config(self, rig: Rig) -> None:
        adapter = InputAdapter(rig.engine, EngineConfig(click_to_play=True))
        rig.engine.load_block("p1")
        assert adapter.on_click(0)
