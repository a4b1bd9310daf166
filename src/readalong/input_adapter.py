# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Keyboard and pointer input for a read-along view.

The engine does not listen to any input itself. A front end forwards key
presses and clicks on word elements here, and the adapter maps them onto the
engine's playback operations according to the configured policies.
"""

import logging

from .config import EngineConfig
from .engine import ReadAlongEngine
from .timing import Word

logger = logging.getLogger(__name__)

SPACE_KEYS: frozenset[str] = frozenset({" ", "space", "spacebar"})
ENTER_KEYS: frozenset[str] = frozenset({"enter", "return"})


class InputAdapter:
    """
    Maps input gestures onto engine operations.

    - Space toggles pause/resume (spacebar_toggle)
    - Enter on a word plays from that word
    - Click on a word plays from that word (click_to_play)
    - Double click on a word plays just that word
    """

    def __init__(self, engine: ReadAlongEngine, config: EngineConfig | None = None) -> None:
        self.engine: ReadAlongEngine = engine
        self._config: EngineConfig | None = config

    @property
    def config(self) -> EngineConfig:
        """Input policies; the engine's live options unless overridden."""
        return self._config or self.engine.config

    def _word(self, word_index: int | None) -> Word | None:
        if word_index is None:
            return None
        word = self.engine.block_word(word_index)
        if word is None:
            logger.debug("Ignoring input on unknown word %s", word_index)
        return word

    def on_key(self, key: str, word_index: int | None = None) -> bool:
        """
        Handle a key press, optionally targeted at a word.

        Returns:
            True if the key was consumed (the caller should prevent its default).
        """
        key = key.lower()
        if key in SPACE_KEYS:
            if not self.config.spacebar_toggle:
                return False
            self.engine.toggle()
            return True
        if key in ENTER_KEYS:
            word = self._word(word_index)
            if word is None:
                return False
            self.engine.play_from_word(word)
            return True
        return False

    def on_click(self, word_index: int) -> bool:
        """Handle a click on a word element."""
        if not self.config.click_to_play:
            return False
        word = self._word(word_index)
        if word is None:
            return False
        self.engine.play_from_word(word)
        return True

    def on_double_click(self, word_index: int) -> bool:
        """Handle a double click on a word element."""
        word = self._word(word_index)
        if word is None:
            return False
        self.engine.play_word(word)
        return True
