# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Web server for the read-along interface.
Serves block content and settings over HTTP and bridges a read-along session
to browser clients over a WebSocket.

The session runs on the server: a SimulatedTransport keeps the media clock and
the engine's highlight changes, scrolls and events are broadcast to every
connected client, in the order they happened.
"""

import asyncio
import contextlib
import json
import logging
import re
from html.parser import HTMLParser
from typing import Any

import markdown
from aiohttp import web

from .clock import AsyncioClock
from .config import (
    DEFAULT_CONFIG,
    EngineConfig,
    PlaybackSettings,
    get_engine_config,
    load_config,
    save_config,
    update_config_playback,
)
from .content import BlockContent, BookContent, WordRef
from .engine import ReadAlongEngine
from .events import ReadAlongEvent
from .exceptions import ConfigError, ReadAlongError
from .highlight import HighlightKind
from .input_adapter import InputAdapter
from .timing import build_timing_table
from .transport import SimulatedTransport

logger = logging.getLogger(__name__)


class WordIndexingHTMLParser(HTMLParser):
    """HTML parser that wraps text words with span elements carrying word indices.

    Words are numbered in document order, the same way the block's text is
    paired with its timings, so the UI highlights match the engine's indices.
    """

    def __init__(self, block_id: str, total_words: int) -> None:
        super().__init__()
        self.block_id: str = block_id
        self.total_words: int = total_words
        self.next_index: int = 0
        self.output: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        """Handle opening HTML tags."""
        attrs_str: str = ''.join(f' {k}="{v}"' for k, v in attrs)
        self.output.append(f'<{tag}{attrs_str}>')

    def handle_endtag(self, tag: str) -> None:
        """Handle closing HTML tags."""
        self.output.append(f'</{tag}>')

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        """Handle self-closing HTML tags."""
        attrs_str: str = ''.join(f' {k}="{v}"' for k, v in attrs)
        self.output.append(f'<{tag}{attrs_str}/>')

    def handle_data(self, data: str) -> None:
        """Process text data, wrapping words with indexed spans."""
        if not data.strip():
            self.output.append(data)
            return

        result = []
        for part in re.split(r'(\s+)', data):
            if not part:
                continue
            if part.isspace():
                result.append(part)
                continue
            escaped = part.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;')
            if self.next_index < self.total_words:
                result.append(
                    f'<span class="word" data-block-id="{self.block_id}" '
                    f'data-word-index="{self.next_index}">{escaped}</span>')
                self.next_index += 1
            else:
                # More text than timings; leave it unhighlightable
                result.append(escaped)

        self.output.append(''.join(result))

    def handle_entityref(self, name: str) -> None:
        """Handle HTML entity references like &amp;."""
        self.output.append(f'&{name};')

    def handle_charref(self, name: str) -> None:
        """Handle HTML character references like &#39;."""
        self.output.append(f'&#{name};')

    def get_output(self) -> str:
        """Return the processed HTML output."""
        return ''.join(self.output)


def render_block_with_word_indices(block: BlockContent) -> str:
    """Render a block's text (Markdown) to HTML with each timed word in an indexed span."""
    raw_html = markdown.markdown(block.text, extensions=['sane_lists'])
    parser = WordIndexingHTMLParser(block.block_id, len(block.word_spans))
    parser.feed(raw_html)
    parser.close()
    return parser.get_output()


class BroadcastSink:
    """
    Highlight sink, scroll sink and event listener that queues client messages.

    The engine calls into the sink synchronously; messages are queued and a
    pump task sends them in order. Word layout offsets come from the clients
    ("layout" messages), since only they know where each word was laid out.
    """

    def __init__(self) -> None:
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.offsets: dict[str, list[float]] = {}

    def set_layout(self, block_id: str, offsets: list[float]) -> None:
        """Store the vertical offset of every word of a block."""
        self.offsets[block_id] = [float(o) for o in offsets]

    def apply(self, ref: WordRef, kind: HighlightKind) -> None:
        self.queue.put_nowait({
            "type": "highlight",
            "action": "apply",
            "kind": kind.value,
            "blockId": ref.block_id,
            "wordIndex": ref.index
        })

    def retract(self, ref: WordRef, kind: HighlightKind) -> None:
        self.queue.put_nowait({
            "type": "highlight",
            "action": "retract",
            "kind": kind.value,
            "blockId": ref.block_id,
            "wordIndex": ref.index
        })

    def offset_of(self, ref: WordRef) -> float | None:
        offsets = self.offsets.get(ref.block_id)
        if offsets is None or not 0 <= ref.index < len(offsets):
            return None
        return offsets[ref.index]

    def scroll_by(self, delta_px: float, duration_ms: int) -> None:
        self.queue.put_nowait({"type": "scroll", "delta": delta_px, "duration": duration_ms})

    def on_event(self, event: ReadAlongEvent) -> None:
        self.queue.put_nowait(event_message(event))


def event_message(event: ReadAlongEvent) -> dict[str, Any]:
    """Client message for an engine event."""
    message: dict[str, Any] = {"type": event.kind.value}
    for key, value in vars(event).items():
        if key == "kind":
            continue
        if key == "words":
            message["words"] = [[w.begin, w.end] for w in value]
        elif key == "word":
            message["wordIndex"] = value.ref.index if isinstance(value.ref, WordRef) else value.index
        else:
            # snake_case -> camelCase
            head, *rest = key.split("_")
            message[head + "".join(p.title() for p in rest)] = value
    return message


def _int_field(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _float_list(data: dict[str, Any], key: str) -> list[float] | None:
    values = data.get(key)
    if not isinstance(values, list):
        return None
    if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in values):
        return None
    return [float(v) for v in values]


class WebServer:
    """
    Serves the read-along content and manages WebSocket connections.
    """

    def __init__(
        self,
        book: BookContent,
        host: str = "127.0.0.1",
        port: int = 8000,
        initial_settings: PlaybackSettings | None = None,
        engine_config: EngineConfig | None = None
    ) -> None:
        self.host: str = host
        self.port: int = port
        self.book: BookContent = book
        self.app: web.Application = web.Application()
        self.websockets: set[web.WebSocketResponse] = set()
        self.runner: web.AppRunner | None = None
        self._pump_task: asyncio.Task[None] | None = None

        # Merge initial settings with defaults
        self.settings: dict[str, Any] = dict(DEFAULT_CONFIG["playback"])
        if initial_settings:
            self.settings.update(initial_settings)

        clock = AsyncioClock()
        durations = {b.audio_ref: b.duration for b in book.blocks if b.duration is not None}
        self.transport: SimulatedTransport = SimulatedTransport(clock, durations=durations)
        self.sink: BroadcastSink = BroadcastSink()
        self.engine: ReadAlongEngine = ReadAlongEngine(
            self.transport, book, self.sink,
            config=engine_config or EngineConfig(),
            clock=clock,
            scroll_sink=self.sink
        )
        self.engine.events.add_listener(self.sink)
        self.input: InputAdapter = InputAdapter(self.engine)

        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes."""
        self.app.router.add_get('/blocks', self._handle_get_blocks)
        self.app.router.add_get('/settings', self._handle_get_settings)
        self.app.router.add_post('/settings', self._handle_settings)
        self.app.router.add_get('/ws', self._handle_websocket)

    def _block_list(self) -> list[dict[str, Any]]:
        return [
            {
                "id": block.block_id,
                "audio": block.audio_ref,
                "words": len(block.word_spans),
                "html": render_block_with_word_indices(block)
            }
            for block in self.book.blocks
        ]

    async def _handle_get_blocks(self, request: web.Request) -> web.Response:
        """List blocks with their word-indexed HTML."""
        return web.json_response({"title": self.book.title, "blocks": self._block_list()})

    async def _handle_get_settings(self, request: web.Request) -> web.Response:
        """Get current settings."""
        return web.json_response(self.settings)

    async def _handle_settings(self, request: web.Request) -> web.Response:
        """Handle settings update via POST."""
        try:
            data = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"status": "error", "message": "Invalid JSON"}, status=400)
        if not isinstance(data, dict):
            return web.json_response({"status": "error", "message": "Expected an object"}, status=400)
        try:
            self.apply_settings(data)
        except ConfigError as e:
            return web.json_response({"status": "error", "message": str(e)}, status=400)
        await self.broadcast({"type": "settings_updated", "settings": self.settings})
        return web.json_response({"status": "ok", "settings": self.settings})

    def apply_settings(self, update: dict[str, Any]) -> EngineConfig:
        """
        Merge playback settings and reconfigure the engine.

        Raises:
            ConfigError: If a value is invalid; nothing is changed.
        """
        settings = {**self.settings, **{k: v for k, v in update.items() if k in self.settings}}
        config = load_config()
        config = update_config_playback(config, settings)
        engine_config = get_engine_config(config)
        self.settings = settings
        self.engine.reconfigure(engine_config)
        return engine_config

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle WebSocket connections for real-time updates."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self.websockets.add(ws)
        logger.info("WebSocket connected. Total: %d", len(self.websockets))

        try:
            # Send current state
            current = self.engine.current_word
            await ws.send_json({
                "type": "init",
                "settings": self.settings,
                "blockId": self.engine.block_id,
                "wordIndex": current.ref.index if current is not None and isinstance(current.ref, WordRef) else None,
                "phase": self.engine.phase.value
            })

            async for msg in ws:
                if msg.type == web.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.warning("Ignoring malformed WebSocket message")
                        continue
                    if isinstance(data, dict):
                        await self._handle_ws_message(ws, data)
                elif msg.type == web.WSMsgType.ERROR:
                    logger.warning("WebSocket error: %s", ws.exception())
        finally:
            self.websockets.discard(ws)
            logger.info("WebSocket disconnected. Total: %d", len(self.websockets))

        return ws

    async def _handle_ws_message(self, ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        """Handle incoming WebSocket messages using dispatch pattern."""
        msg_type = data.get("type")
        if not msg_type:
            return

        # Message type to handler dispatch
        handlers = {
            "play_block": self._on_play_block_message,
            "play_range": self._on_play_range_message,
            "play_word": self._on_play_word_message,
            "pause": self._on_pause_message,
            "resume": self._on_resume_message,
            "rate": self._on_rate_message,
            "seek": self._on_seek_message,
            "layout": self._on_layout_message,
            "key": self._on_key_message,
            "click": self._on_click_message,
            "dblclick": self._on_dblclick_message,
            "save_config": self._on_save_config_message,
        }

        handler = handlers.get(msg_type)
        if handler is None:
            logger.warning("Unhandled WebSocket message: %s", msg_type)
            return
        try:
            handler(data)
        except ReadAlongError as e:
            logger.warning("Request %s failed: %s", msg_type, e)
            await ws.send_json({"type": "error", "request": msg_type, "message": str(e)})

    def _on_play_block_message(self, data: dict[str, Any]) -> None:
        block_id = str(data.get("blockId", ""))
        rate = data.get("rate")
        word_index = _int_field(data, "wordIndex")
        from_word = None
        block = self.book.resolve(block_id)
        if word_index is not None and block is not None and 0 <= word_index < len(block.word_spans):
            from_word = build_timing_table(block.word_spans, refs=block.element_refs)[word_index]
        self.engine.play_block(
            block_id,
            from_word=from_word,
            rate=float(rate) if isinstance(rate, (int, float)) else None,
            scroll_anchor=self.sink.offset_of(WordRef(block_id, 0))
        )

    def _on_play_range_message(self, data: dict[str, Any]) -> None:
        start = _int_field(data, "start")
        stop = _int_field(data, "stop")
        if start is None or stop is None:
            logger.warning("play_range needs start and stop")
            return
        self.engine.play_range(str(data.get("blockId", "")), start, stop)

    def _on_play_word_message(self, data: dict[str, Any]) -> None:
        word_index = _int_field(data, "wordIndex")
        word = self.engine.block_word(word_index) if word_index is not None else None
        if word is not None:
            self.engine.play_word(word)

    def _on_pause_message(self, _data: dict[str, Any]) -> None:
        self.engine.pause()

    def _on_resume_message(self, _data: dict[str, Any]) -> None:
        self.engine.resume()

    def _on_rate_message(self, data: dict[str, Any]) -> None:
        rate = data.get("rate")
        if isinstance(rate, (int, float)) and not isinstance(rate, bool):
            self.engine.change_rate(float(rate))

    def _on_seek_message(self, data: dict[str, Any]) -> None:
        position = _int_field(data, "position")
        if position is not None:
            self.engine.set_current_time(position)

    def _on_layout_message(self, data: dict[str, Any]) -> None:
        offsets = _float_list(data, "offsets")
        if offsets is None:
            logger.warning("Ignoring layout without numeric offsets")
            return
        self.sink.set_layout(str(data.get("blockId", "")), offsets)

    def _on_key_message(self, data: dict[str, Any]) -> None:
        self.input.on_key(str(data.get("key", "")), _int_field(data, "wordIndex"))

    def _on_click_message(self, data: dict[str, Any]) -> None:
        word_index = _int_field(data, "wordIndex")
        if word_index is not None:
            self.input.on_click(word_index)

    def _on_dblclick_message(self, data: dict[str, Any]) -> None:
        word_index = _int_field(data, "wordIndex")
        if word_index is not None:
            self.input.on_double_click(word_index)

    def _on_save_config_message(self, _data: dict[str, Any]) -> None:
        config = update_config_playback(load_config(), self.settings)
        if not save_config(config):
            logger.error("Settings could not be saved")

    async def _pump(self) -> None:
        """Forward queued sink messages to clients, in order."""
        while True:
            message = await self.sink.queue.get()
            await self.broadcast(message)

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send a message to all connected WebSocket clients."""
        if not self.websockets:
            return

        dead: set[web.WebSocketResponse] = set()
        for ws in self.websockets:
            try:
                await ws.send_json(message)
            except (ConnectionError, ConnectionResetError, RuntimeError) as e:
                logger.warning("Error sending to WebSocket: %s", e)
                dead.add(ws)

        self.websockets -= dead

    async def start(self) -> None:
        """Start the web server."""
        self._pump_task = asyncio.create_task(self._pump())
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site: web.TCPSite = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info("Web server running at http://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Stop the web server."""
        self.engine.close()
        if self._pump_task is not None:
            self._pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task
            self._pump_task = None

        # Close all WebSocket connections
        for ws in list(self.websockets):
            with contextlib.suppress(ConnectionError, RuntimeError):
                await ws.close()
        self.websockets.clear()

        if self.runner:
            await self.runner.cleanup()
