# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Configuration management for the read-along engine.
Handles loading and saving settings from a YAML config file, and builds the
validated EngineConfig the engine runs with.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypedDict

import yaml

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME: str = ".readalong.yaml"

MIN_PLAYBACK_RATE: float = 0.5
MAX_PLAYBACK_RATE: float = 2.0


class PlaybackSettings(TypedDict):
    """Type definition for playback behaviour settings."""
    playback_rate: float
    force_line_scroll: bool
    keep_highlight_on_pause: bool
    highlight_trail: bool
    auto_continue: bool
    click_to_play: bool
    spacebar_toggle: bool


class TimingSettings(TypedDict):
    """Type definition for transport timing workarounds and highlight windows."""
    stop_latency_ms: int
    stall_grace_ms: int
    seek_epsilon_ms: int
    trail_window: int
    newline_flush_window: int
    line_scroll_ms: int


class Config(TypedDict):
    """Type definition for the complete configuration."""
    # Server settings
    host: str
    port: int
    # Content file (YAML or JSON book)
    content_file: str | None
    playback: PlaybackSettings
    timing: TimingSettings


# Default configuration values
DEFAULT_CONFIG: Config = {
    # Server settings
    "host": "127.0.0.1",
    "port": 8000,

    "content_file": None,

    "playback": {
        "playback_rate": 1.0,
        "force_line_scroll": True,
        "keep_highlight_on_pause": True,
        "highlight_trail": True,
        "auto_continue": False,
        "click_to_play": False,
        "spacebar_toggle": True,
    },

    # Transport workarounds, tuned against browser media elements
    "timing": {
        # Time the transport takes to honour a stop/pause request
        "stop_latency_ms": 200,
        # How long a seek may leave the position unchanged before nudging it
        "stall_grace_ms": 500,
        "seek_epsilon_ms": 10,
        # Trail markers retracted behind the current word
        "trail_window": 4,
        # Words scanned back for trail markers after a line break
        "newline_flush_window": 14,
        "line_scroll_ms": 250,
    },
}


def clamp_rate(rate: float) -> float:
    """Clamp a playback rate into the supported range."""
    return min(max(float(rate), MIN_PLAYBACK_RATE), MAX_PLAYBACK_RATE)


@dataclass(frozen=True)
class EngineConfig:
    """Every option the engine recognises, validated at construction."""
    playback_rate: float = 1.0
    force_line_scroll: bool = True
    keep_highlight_on_pause: bool = True
    highlight_trail: bool = True
    auto_continue: bool = False
    click_to_play: bool = False
    spacebar_toggle: bool = True
    stop_latency_ms: int = 200
    stall_grace_ms: int = 500
    seek_epsilon_ms: int = 10
    trail_window: int = 4
    newline_flush_window: int = 14
    line_scroll_ms: int = 250

    def __post_init__(self) -> None:
        try:
            rate = float(self.playback_rate)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"playback_rate must be a number: {self.playback_rate!r}") from e
        object.__setattr__(self, "playback_rate", clamp_rate(rate))

        for name in ("stop_latency_ms", "stall_grace_ms", "seek_epsilon_ms",
                     "trail_window", "newline_flush_window", "line_scroll_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")

        for name in ("force_line_scroll", "keep_highlight_on_pause", "highlight_trail",
                     "auto_continue", "click_to_play", "spacebar_toggle"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false, got {getattr(self, name)!r}")


def get_config_path() -> Path:
    """Get the path to the config file in the current working directory."""
    return Path.cwd() / CONFIG_FILENAME


def _deep_merge(base, override):
    """
    Deep merge two dictionaries, with override taking precedence.
    Returns a new dictionary without modifying the originals.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, merged with defaults.

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        Configuration dictionary with all values (defaults + overrides from file).
    """
    if config_path is None:
        config_path = get_config_path()

    config: dict[str, Any] = _deep_merge({}, DEFAULT_CONFIG)

    if config_path.exists():
        try:
            with open(config_path, encoding='utf-8') as f:
                file_config: dict[str, Any] | None = yaml.safe_load(f)
                if file_config:
                    config = _deep_merge(config, file_config)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not load config from %s: %s", config_path, e)

    return config  # type: ignore[return-value]


def save_config(config: Config, config_path: Path | None = None) -> bool:
    """
    Save configuration to file.

    Returns:
        True if save was successful, False otherwise.
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(dict(config), f, default_flow_style=False, sort_keys=False)
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.error("Error saving config to %s: %s", config_path, e)
        return False


def get_playback_settings(config: Config) -> PlaybackSettings:
    """Extract playback settings from config."""
    return config.get("playback", DEFAULT_CONFIG["playback"]).copy()  # type: ignore[return-value]


def get_timing_settings(config: Config) -> TimingSettings:
    """Extract timing settings from config."""
    return config.get("timing", DEFAULT_CONFIG["timing"]).copy()  # type: ignore[return-value]


def get_engine_config(config: Config) -> EngineConfig:
    """
    Build the engine configuration from a loaded config dictionary.

    Unknown keys in the playback and timing sections are ignored with a
    warning so that an old config file does not stop the engine.

    Raises:
        ConfigError: If a recognised option has an invalid value.
    """
    merged: dict[str, Any] = {}
    for section in ("playback", "timing"):
        values = _deep_merge(DEFAULT_CONFIG[section], config.get(section) or {})  # type: ignore[literal-required]
        for key, value in values.items():
            if key not in EngineConfig.__dataclass_fields__:
                logger.warning("Ignoring unknown %s option: %s", section, key)
                continue
            merged[key] = value
    return EngineConfig(**merged)


def update_config_playback(config: Config, playback: dict[str, Any]) -> Config:
    """
    Update the playback section of the config with new settings.
    Returns a new config dict.
    """
    new_config: dict[str, Any] = _deep_merge({}, config)
    new_config["playback"] = _deep_merge(new_config.get("playback", {}), playback)
    return new_config  # type: ignore[return-value]
