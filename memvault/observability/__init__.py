"""
Observability module for memvault - operation context and structured logging.
"""

from .context import (
    OperationContext,
    ContextManager,
    ContextScope,
    operation_scope,
)
from .logging import (
    LogLevel,
    LogRecord,
    StructuredFormatter,
    configure_logging,
    preview,
)

__all__ = [
    # Context
    "OperationContext",
    "ContextManager",
    "ContextScope",
    "operation_scope",
    # Logging
    "LogLevel",
    "LogRecord",
    "StructuredFormatter",
    "configure_logging",
    "preview",
]
