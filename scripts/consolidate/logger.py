"""
Structured logging for consolidation runs.
Timestamped, level-based lines that stay whole when collector workers log at once.
"""
import sys
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Dict, Optional, TextIO


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


_LEVEL_ORDER = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.SUCCESS: 1,
    LogLevel.WARNING: 2,
    LogLevel.ERROR: 3,
}


class StructuredLogger:
    """
    Logger with ``[time] [LEVEL] message (key=value, ...)`` output.

    ``bind()`` returns a child that shares streams and lock with its parent
    and prefixes every record with fixed context, e.g. the node a worker
    is reading from.
    """

    def __init__(
        self,
        min_level: LogLevel = LogLevel.INFO,
        show_timestamp: bool = True,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        context: Optional[Dict[str, object]] = None,
        _lock: Optional[Lock] = None,
    ):
        self.min_level = min_level
        self.show_timestamp = show_timestamp
        self.stdout = stdout
        self.stderr = stderr
        self.context = dict(context or {})
        self._lock = _lock or Lock()

    def bind(self, **context) -> "StructuredLogger":
        """Child logger with extra fixed context."""
        merged = dict(self.context)
        merged.update(context)
        return StructuredLogger(
            min_level=self.min_level,
            show_timestamp=self.show_timestamp,
            stdout=self.stdout,
            stderr=self.stderr,
            context=merged,
            _lock=self._lock,
        )

    def is_enabled_for(self, level: LogLevel) -> bool:
        return _LEVEL_ORDER[level] >= _LEVEL_ORDER[self.min_level]

    def _format_message(self, level: LogLevel, message: str, details: Optional[dict] = None) -> str:
        parts = []

        if self.show_timestamp:
            timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            parts.append(f"[{timestamp}]")

        parts.append(f"[{level.value}]")

        if self.context:
            parts.append(" ".join(f"[{k}={v}]" for k, v in self.context.items()))

        parts.append(message)

        if details:
            detail_strs = [f"{k}={v}" for k, v in details.items()]
            parts.append(f"({', '.join(detail_strs)})")

        return " ".join(parts)

    def _write(self, level: LogLevel, message: str, details: Optional[dict] = None):
        if not self.is_enabled_for(level):
            return

        formatted = self._format_message(level, message, details)

        # Errors and warnings go to stderr, everything else to stdout
        if level in (LogLevel.ERROR, LogLevel.WARNING):
            stream = self.stderr or sys.stderr
        else:
            stream = self.stdout or sys.stdout

        with self._lock:
            stream.write(formatted + "\n")
            stream.flush()

    def debug(self, message: str, **details):
        self._write(LogLevel.DEBUG, message, details or None)

    def info(self, message: str, **details):
        self._write(LogLevel.INFO, message, details or None)

    def success(self, message: str, **details):
        self._write(LogLevel.SUCCESS, message, details or None)

    def warning(self, message: str, **details):
        self._write(LogLevel.WARNING, message, details or None)

    def error(self, message: str, **details):
        self._write(LogLevel.ERROR, message, details or None)

    def section(self, title: str):
        """Log section header."""
        separator = "=" * 60
        self._write(LogLevel.INFO, separator)
        self._write(LogLevel.INFO, title)
        self._write(LogLevel.INFO, separator)


_default_logger: Optional[StructuredLogger] = None


def get_logger() -> StructuredLogger:
    """Get or create default logger instance."""
    global _default_logger
    if _default_logger is None:
        _default_logger = StructuredLogger()
    return _default_logger


def set_logger(logger: StructuredLogger):
    """Set custom logger instance."""
    global _default_logger
    _default_logger = logger
