"""Structured logging utilities."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence


class StructuredLogger:
    """Structured logger for migration events."""

    def __init__(
        self,
        name: str,
        level: int = logging.INFO,
        log_file: Optional[str] = None,
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        # Remove existing handlers to avoid duplicates
        self.logger.handlers.clear()

        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

        if log_file:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

    def log_migration_event(
        self,
        event: str,
        unit: str,
        rows_migrated: int = 0,
        duration: float = 0.0,
        **kwargs: Any,
    ) -> None:
        """Log a transfer event with structured data."""
        log_data = {
            "event": event,
            "unit": unit,
            "rows_migrated": rows_migrated,
            "duration_seconds": round(duration, 2),
            **kwargs,
        }
        self.logger.info(json.dumps(log_data, default=str))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        self.logger.info(self._format(message, kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        self.logger.warning(self._format(message, kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message."""
        self.logger.error(self._format(message, kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message."""
        self.logger.debug(self._format(message, kwargs))

    @staticmethod
    def _format(message: str, fields: Dict[str, Any]) -> str:
        if not fields:
            return message
        return f"{message} {json.dumps(SafeLogger.sanitize(fields), default=str)}"


class SafeLogger:
    """Logger that automatically sanitizes sensitive information."""

    SENSITIVE_KEYS = {"password", "pwd", "secret", "token", "api_key", "apikey"}
    SENSITIVE_FLAGS = {"-P"}

    @staticmethod
    def sanitize(data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sanitize sensitive information from log data.

        Args:
            data: Dictionary to sanitize

        Returns:
            Sanitized dictionary with sensitive values redacted
        """
        sanitized: Dict[str, Any] = {}
        for key, value in data.items():
            if any(sensitive in key.lower() for sensitive in SafeLogger.SENSITIVE_KEYS):
                sanitized[key] = "***REDACTED***"
            elif isinstance(value, dict):
                sanitized[key] = SafeLogger.sanitize(value)
            else:
                sanitized[key] = value
        return sanitized

    @staticmethod
    def sanitize_command(args: Sequence[str]) -> List[str]:
        """
        Mask the values of password flags in a command line.

        Args:
            args: Command line arguments

        Returns:
            Copy of the arguments with passwords redacted
        """
        sanitized: List[str] = []
        redact_next = False
        for arg in args:
            if redact_next:
                sanitized.append("***REDACTED***")
                redact_next = False
                continue
            sanitized.append(arg)
            if arg in SafeLogger.SENSITIVE_FLAGS:
                redact_next = True
        return sanitized
