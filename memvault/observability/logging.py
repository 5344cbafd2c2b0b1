"""
Structured logging for observability.

Provides context-aware log formatting with JSON or text output. Library
modules keep using ``logging.getLogger(__name__)``; this module only
decides how those records are rendered.
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, TextIO

from .context import ContextManager


ROOT_LOGGER_NAME = "memvault"

# Attributes every LogRecord has; anything else came in via ``extra``
_STANDARD_RECORD_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class LogLevel(str, Enum):
    """Log levels matching Python logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_python_level(self) -> int:
        """Convert to Python logging level."""
        return getattr(logging, self.value)

    @classmethod
    def parse(cls, value: str) -> "LogLevel":
        """Parse a level name, defaulting to INFO."""
        try:
            return cls(value.upper())
        except ValueError:
            return cls.INFO


@dataclass
class LogRecord:
    """A structured log record."""

    timestamp: datetime = field(default_factory=datetime.now)
    level: LogLevel = LogLevel.INFO
    message: str = ""
    logger_name: str = ""
    operation: Optional[str] = None
    operation_id: Optional[str] = None
    tenant: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
            "logger": self.logger_name,
        }

        if self.operation:
            result["operation"] = self.operation
        if self.operation_id:
            result["operation_id"] = self.operation_id
        if self.tenant:
            result["tenant"] = self.tenant
        if self.attributes:
            result["attributes"] = self.attributes
        if self.exception:
            result["exception"] = self.exception

        return result

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        """Convert to human-readable text."""
        parts = [
            self.timestamp.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            f"[{self.level.value}]",
            self.logger_name,
            "-",
            self.message,
        ]

        if self.tenant:
            parts.append(f"(tenant={self.tenant[:12]})")
        if self.operation_id:
            parts.append(f"(op={self.operation_id[:8]})")

        if self.attributes:
            attrs = " ".join(f"{k}={v}" for k, v in self.attributes.items())
            parts.append(f"[{attrs}]")

        text = " ".join(parts)

        if self.exception:
            text += f"\n{self.exception}"

        return text


class StructuredFormatter(logging.Formatter):
    """Formatter that renders records with the current operation context."""

    def __init__(self, json_output: bool = True):
        super().__init__()
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        """Format log record."""
        context = ContextManager.get_current()

        attributes = {
            key: value for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
        }

        log_record = LogRecord(
            timestamp=datetime.fromtimestamp(record.created),
            level=LogLevel.parse(record.levelname),
            message=record.getMessage(),
            logger_name=record.name,
            operation=context.operation if context else None,
            operation_id=context.operation_id if context else None,
            tenant=context.tenant if context else None,
            attributes=attributes,
            exception=self.formatException(record.exc_info) if record.exc_info else None,
        )

        if self.json_output:
            return log_record.to_json()
        return log_record.to_text()


def configure_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = False,
    output: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure and return the package root logger.

    Replaces any handler previously installed by this function, so it is
    safe to call more than once.

    Args:
        level: Log level
        json_output: Whether to output JSON
        output: Output stream (defaults to stderr)

    Returns:
        The configured ``memvault`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level.to_python_level())

    for handler in list(logger.handlers):
        if getattr(handler, "_memvault_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(output or sys.stderr)
    handler.setFormatter(StructuredFormatter(json_output))
    handler._memvault_handler = True
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def preview(text: str, limit: int = 50) -> str:
    """Shorten text for log output."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
