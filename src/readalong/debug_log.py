"""
Debug logging for tracing highlight transitions against transport events.

Creates two log files:
- engine_words.log: Words highlighted by the engine and the timers armed for them
- transport_events.log: Events reported by the transport with the position at the time

Logging is disabled by default. Call enable() to turn it on.
"""

from datetime import datetime
from pathlib import Path

# Log files location (in project root)
LOG_DIR: Path = Path(__file__).parent.parent.parent / "logs"
ENGINE_LOG: Path = LOG_DIR / "engine_words.log"
TRANSPORT_LOG: Path = LOG_DIR / "transport_events.log"

# Global flag to control whether debug logging is enabled
_ENABLED: bool = False  # pylint: disable=invalid-name


def enable() -> None:
    """Enable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = True


def disable() -> None:
    """Disable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = False


def is_enabled() -> bool:
    """Check if debug logging is enabled."""
    return _ENABLED


def _ensure_log_dir() -> None:
    """Create log directory if it doesn't exist."""
    LOG_DIR.mkdir(exist_ok=True)


def _timestamp() -> str:
    """Get current timestamp."""
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


def clear_logs() -> None:
    """Clear both log files for a fresh session."""
    if not _ENABLED:
        return
    _ensure_log_dir()
    log_file: Path
    for log_file in [ENGINE_LOG, TRANSPORT_LOG]:
        with open(log_file, 'w', encoding='utf-8') as f:
            f.write(
                f"=== New session started at {datetime.now().isoformat()} ===\n\n")


def log_transition(block_id: str | None, word_index: int, event: str = "highlight") -> None:
    """
    Log a highlight transition.

    Args:
        block_id: The active block
        word_index: The word now current
        event: Type of transition (highlight, seek, pause, end)
    """
    if not _ENABLED:
        return
    _ensure_log_dir()
    with open(ENGINE_LOG, 'a', encoding='utf-8') as f:
        f.write(
            f"[{_timestamp()}] {event:10} block={block_id} pos={word_index:4d}\n")


def log_schedule(word_index: int, delay_ms: int, position_ms: int, rate: float) -> None:
    """Log a transition timer being armed."""
    if not _ENABLED:
        return
    _ensure_log_dir()
    with open(ENGINE_LOG, 'a', encoding='utf-8') as f:
        f.write(
            f"[{_timestamp()}] {'schedule':10} after={word_index:4d} "
            f"delay={delay_ms}ms at={position_ms}ms rate={rate:.2f}\n")


def log_transport_event(event: str, position_ms: int, paused: bool) -> None:
    """Log an event received from the transport."""
    if not _ENABLED:
        return
    _ensure_log_dir()
    with open(TRANSPORT_LOG, 'a', encoding='utf-8') as f:
        f.write(
            f"[{_timestamp()}] {event:10} position={position_ms}ms paused={paused}\n")
