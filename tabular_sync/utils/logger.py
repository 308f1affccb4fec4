"""
Logging configuration for tabular-sync.

Provides rich console output for CLI interactions
and JSON formatting for production log aggregation.
"""

import json
import logging
import sys
from datetime import datetime
from enum import Enum
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme


class LogLevel(str, Enum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


TABULAR_SYNC_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "red bold",
        "critical": "red bold reverse",
        "success": "green bold",
        "source": "blue",
        "target": "magenta",
    }
)

# Global console instance
console = Console(theme=TABULAR_SYNC_THEME, stderr=True)


class TabularSyncLogger:
    """Logger wrapper that appends keyword context to messages."""

    def __init__(self, name: str, level: LogLevel = LogLevel.INFO) -> None:
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level.value)

    def set_level(self, level: LogLevel) -> None:
        """Update log level."""
        self.logger.setLevel(level.value)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message."""
        self.logger.debug(self._format_message(message, kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        self.logger.info(self._format_message(message, kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        self.logger.warning(self._format_message(message, kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message."""
        self.logger.error(self._format_message(message, kwargs))

    def success(self, message: str, **kwargs: Any) -> None:
        """Log success message with special formatting."""
        formatted = self._format_message(message, kwargs)
        console.print(f"[success]✓ {formatted}[/success]")

    def _format_message(self, message: str, extra: dict[str, Any]) -> str:
        if extra:
            context = " | ".join(f"{k}={v}" for k, v in extra.items())
            return f"{message} [{context}]"
        return message


# Logger cache
_loggers: dict[str, TabularSyncLogger] = {}


def get_logger(name: str = "tabular-sync") -> TabularSyncLogger:
    """Get or create a logger instance."""
    if name not in _loggers:
        _loggers[name] = TabularSyncLogger(name)
    return _loggers[name]


class JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def setup_logging(
    level: LogLevel | str = LogLevel.INFO,
    json_output: bool = False,
) -> None:
    """
    Configure global logging settings.

    Args:
        level: Log level to use (can be LogLevel enum or string like "DEBUG", "INFO")
        json_output: If True, output logs in JSON format (for production)
    """
    if isinstance(level, str):
        level = LogLevel(level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level.value)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_output:
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
    else:
        handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
    handler.setLevel(level.value)
    root_logger.addHandler(handler)

    for logger in _loggers.values():
        logger.set_level(level)
