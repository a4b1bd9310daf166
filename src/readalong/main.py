# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Main read-along application.
Loads the book content and either serves it to browsers or simulates a block
offline and prints its highlight timeline.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

from . import debug_log
from .config import (
    Config,
    get_config_path,
    get_engine_config,
    get_playback_settings,
    load_config,
    save_config,
)
from .content import BookContent
from .exceptions import ReadAlongError
from .server import WebServer
from .simulate import simulate_block

logger = logging.getLogger(__name__)


class ReadAlongApp:
    """
    Main read-along application that owns the web server.
    """

    def __init__(self, book: BookContent, config: Config, host: str = "127.0.0.1", port: int = 8000) -> None:
        self.book: BookContent = book
        self.config: Config = config
        self.host: str = host
        self.port: int = port
        self.server: WebServer | None = None
        self.running: bool = False
        self._stopped: asyncio.Event | None = None

    async def start(self) -> None:
        """Start serving and wait until stop() is called."""
        self._stopped = asyncio.Event()
        self.server = WebServer(
            self.book,
            host=self.host,
            port=self.port,
            initial_settings=get_playback_settings(self.config),
            engine_config=get_engine_config(self.config)
        )
        await self.server.start()
        self.running = True

        print("\n✓ Read-along ready!")
        print(f"  Open http://{self.host}:{self.port} in your browser")
        print("  Press Ctrl+C to stop\n")

        await self._stopped.wait()

    def request_stop(self) -> None:
        """Ask a running start() to return."""
        self.running = False
        if self._stopped is not None:
            self._stopped.set()

    async def stop(self) -> None:
        """Stop the web server."""
        self.running = False
        if self.server:
            await self.server.stop()
        print("Read-along stopped.")


def _build_parser(config: Config) -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Read-along - word highlighting synchronised with narrated audio"
    )

    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "simulate"],
        help="serve the content (default) or simulate one block offline"
    )

    parser.add_argument(
        "--content", "-c",
        default=config.get("content_file"),
        help="Book content file, YAML or JSON (default: from config)"
    )

    parser.add_argument(
        "--host",
        default=config.get("host", "127.0.0.1"),
        help="Web server host (default: from config or 127.0.0.1)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=config.get("port", 8000),
        help="Web server port (default: from config or 8000)"
    )

    parser.add_argument(
        "--block", "-b",
        default=None,
        help="Block to simulate (default: the first block)"
    )

    parser.add_argument(
        "--rate", "-r",
        type=float,
        default=None,
        help="Playback rate for simulate, 0.5 to 2.0"
    )

    parser.add_argument(
        "--start-latency-ms",
        type=int,
        default=0,
        help="Simulated play-start latency in milliseconds"
    )

    parser.add_argument(
        "--list-blocks",
        action="store_true",
        help="List the blocks of the content file and exit"
    )

    parser.add_argument(
        "--save-config",
        action="store_true",
        help="Save current CLI options to config file and exit"
    )

    parser.add_argument(
        "--debug-log",
        action="store_true",
        help="Enable debug logging to ./logs/"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log engine activity to the console"
    )
    return parser


def _load_book(path: str | None) -> BookContent:
    if not path:
        raise ReadAlongError("No content file given (use --content or set content_file in the config)")
    return BookContent.load(Path(path))


def _run_simulation(book: BookContent, config: Config, block_id: str | None,
                    rate: float | None, start_latency_ms: int) -> None:
    block_id = block_id or next((b.block_id for b in book.blocks if b.word_spans), None)
    if block_id is None:
        raise ReadAlongError("Content has no timed blocks")
    entries = simulate_block(
        book, block_id,
        config=get_engine_config(config),
        rate=rate,
        start_latency_ms=start_latency_ms
    )
    for entry in entries:
        print(f"{entry.time_ms:>8}ms  {entry.kind:<9} {entry.detail}")


def _serve(book: BookContent, config: Config, host: str, port: int) -> None:
    app: ReadAlongApp = ReadAlongApp(book, config, host=host, port=port)

    # Handle shutdown gracefully
    loop: asyncio.AbstractEventLoop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def shutdown(sig: int, frame: object) -> None:
        """Handle shutdown signals (SIGINT, SIGTERM) gracefully."""
        print("\nReceived shutdown signal...")
        loop.call_soon_threadsafe(app.request_stop)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        app.running = False
    finally:
        loop.run_until_complete(app.stop())
        # Cancel any remaining tasks
        pending: set[asyncio.Task[object]] = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        # Allow cancelled tasks to complete
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    # Load config first to use as defaults
    config: Config = load_config()
    args: argparse.Namespace = _build_parser(config).parse_args(argv)

    # Configure logging - minimal console output unless asked
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )

    if args.save_config:
        config["host"] = args.host
        config["port"] = args.port
        config["content_file"] = args.content
        if save_config(config):
            print(f"Configuration saved to {get_config_path()}")
            return 0
        return 1

    if args.debug_log:
        debug_log.enable()
        debug_log.clear_logs()
        print("Debug logging enabled (logs will be saved to ./logs/)")

    try:
        book = _load_book(args.content)

        if args.list_blocks:
            print(f"\n{book.title or 'Blocks'}:")
            for block in book.blocks:
                print(f"  {block.block_id:<16} {len(block.word_spans):>5} words  {block.audio_ref}")
            return 0

        if args.command == "simulate":
            _run_simulation(book, config, args.block, args.rate, args.start_latency_ms)
        else:
            _serve(book, config, args.host, args.port)
    except ReadAlongError as e:
        logger.debug("Fatal error", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        sys.exit(main())
