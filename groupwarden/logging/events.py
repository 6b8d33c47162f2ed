from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
GRAY = "\033[90m"

LEVEL_STYLES = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}

EVENT_STYLE = "\033[96m"
KEY_STYLE = "\033[94m"
NUMBER_STYLE = "\033[93m"
STRING_STYLE = "\033[92m"

# stdlib loggers that would otherwise flood the console
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "aiogram": logging.INFO,
}


def _style_value(value: Any) -> str:
    if value is None:
        return f"{DIM}None{RESET}"
    if isinstance(value, (bool, int, float)):
        return f"{NUMBER_STYLE}{value}{RESET}"
    if isinstance(value, str):
        return f"{STRING_STYLE}{value}{RESET}"
    return str(value)


class ConsoleRenderer:
    """Single-line renderer: ``[time] LEVEL event | key=value | ...``."""

    def __init__(self, colored: bool = True) -> None:
        self.colored = colored and sys.stdout.isatty()
        self._fallback = structlog.processors.JSONRenderer()

    def __call__(self, logger: Any, name: str, event_dict: dict) -> str:
        if not self.colored:
            return self._fallback(logger, name, event_dict)

        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info").upper()
        event = event_dict.pop("event", "")
        exception = event_dict.pop("exception", None)

        parts = []
        if timestamp:
            parts.append(f"{GRAY}[{timestamp}]{RESET}")
        parts.append(f"{LEVEL_STYLES.get(level, '')}{BOLD}{level:8}{RESET}")
        parts.append(f"{EVENT_STYLE}{event}{RESET}")
        if event_dict:
            separator = f" {DIM}|{RESET} "
            pairs = separator.join(f"{KEY_STYLE}{key}{RESET}={_style_value(value)}" for key, value in event_dict.items())
            parts.append(f"{DIM}|{RESET} {pairs}")
        line = " ".join(parts)
        if exception:
            line = f"{line}\n{exception}"
        return line


class StdlibFormatter(logging.Formatter):
    """Formatter for third-party stdlib loggers matching the structlog console layout."""

    def format(self, record: logging.LogRecord) -> str:
        if not sys.stdout.isatty():
            return super().format(record)
        style = LEVEL_STYLES.get(record.levelname, "")
        return (
            f"{GRAY}[{self.formatTime(record, '%H:%M:%S')}]{RESET} "
            f"{style}{BOLD}{record.levelname:8}{RESET} "
            f"{DIM}{record.name}{RESET} {record.getMessage()}"
        )


def setup_logging(level: int = logging.INFO, use_json: bool = False) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Logging level (default: INFO)
        use_json: Emit JSON lines instead of the colored console format
    """
    renderer = structlog.processors.JSONRenderer() if use_json else ConsoleRenderer(colored=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(StdlibFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
