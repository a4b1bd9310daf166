# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for configuration management and the validated engine configuration.
"""

import logging
import tempfile
from pathlib import Path

import pytest
import yaml

from readalong.config import (
    DEFAULT_CONFIG,
    EngineConfig,
    clamp_rate,
    get_engine_config,
    load_config,
    save_config,
    update_config_playback,
)
from readalong.exceptions import ConfigError


def test_default_config_matches_engine_defaults():
    """The default config file values build the default engine config."""
    assert get_engine_config(DEFAULT_CONFIG) == EngineConfig()


def test_load_config_missing_file_uses_defaults():
    """A missing config file yields the defaults."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(Path(tmpdir) / ".readalong.yaml")
        assert config == DEFAULT_CONFIG


def test_load_config_merges_nested_sections():
    """Values in the file override defaults without dropping sibling keys."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".readalong.yaml"
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump({"port": 9000, "playback": {"auto_continue": True}}, f)

        config = load_config(config_path)
        assert config["port"] == 9000
        assert config["playback"]["auto_continue"] is True
        assert config["playback"]["spacebar_toggle"] is True
        assert config["timing"]["stop_latency_ms"] == 200


def test_load_config_invalid_yaml_warns(caplog):
    """A broken config file is reported and the defaults are used."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".readalong.yaml"
        config_path.write_text("playback: [unclosed", encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="readalong.config"):
            config = load_config(config_path)
        assert config == DEFAULT_CONFIG
        assert "Could not load config" in caplog.text


def test_save_and_reload_roundtrip():
    """Saved configuration is loaded back unchanged."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".readalong.yaml"
        config = update_config_playback(load_config(config_path), {"playback_rate": 1.25})

        assert save_config(config, config_path)
        reloaded = load_config(config_path)
        assert reloaded["playback"]["playback_rate"] == 1.25


def test_update_config_playback_does_not_mutate():
    """update_config_playback returns a new dict."""
    config = load_config(Path("/nonexistent/.readalong.yaml"))
    updated = update_config_playback(config, {"highlight_trail": False})
    assert updated["playback"]["highlight_trail"] is False
    assert config["playback"]["highlight_trail"] is True


class TestEngineConfig:
    """Tests for EngineConfig validation."""

    @pytest.mark.parametrize("rate, expected", [(0.1, 0.5), (0.5, 0.5), (1.3, 1.3), (3, 2.0)])
    def test_rate_is_clamped(self, rate, expected):
        assert EngineConfig(playback_rate=rate).playback_rate == expected
        assert clamp_rate(rate) == expected

    def test_negative_timing_rejected(self):
        with pytest.raises(ConfigError):
            EngineConfig(stop_latency_ms=-1)

    def test_non_boolean_flag_rejected(self):
        with pytest.raises(ConfigError):
            EngineConfig(highlight_trail="yes")

    def test_non_numeric_rate_rejected(self):
        with pytest.raises(ConfigError):
            EngineConfig(playback_rate="fast")

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            EngineConfig(trail_window=1.5)

    def test_timing_section_is_used(self):
        config = update_config_playback(DEFAULT_CONFIG, {"auto_continue": True})
        config["timing"] = {"stall_grace_ms": 750}
        engine_config = get_engine_config(config)
        assert engine_config.auto_continue is True
        assert engine_config.stall_grace_ms == 750
        assert engine_config.stop_latency_ms == 200

    def test_unknown_options_are_ignored(self, caplog):
        config = update_config_playback(DEFAULT_CONFIG, {"sparkles": True})
        with caplog.at_level(logging.WARNING, logger="readalong.config"):
            engine_config = get_engine_config(config)
        assert engine_config == EngineConfig()
        assert "sparkles" in caplog.text
