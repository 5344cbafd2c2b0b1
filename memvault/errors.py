"""
Error taxonomy for the memory orchestration layer.

Every public error carries a stable message and, when it wraps an
upstream failure, the original exception as ``cause``.
"""

from typing import Optional, Type


class MemvaultError(Exception):
    """Base exception for memvault errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {_describe(self.cause)}"
        return self.message


class ValidationError(MemvaultError):
    """Raised for bad caller input (empty text, content too long, bad metadata)."""
    pass


class InitializationError(MemvaultError):
    """Raised when the embedding model or a tenant store fails to set up.

    Initialization failures are never memoized, so callers may retry.
    """
    pass


class ShapeError(MemvaultError):
    """Raised when an embedding tensor does not match the declared shape.

    This signals a backend/model contract violation, not a user error.
    """
    pass


class StoreError(MemvaultError):
    """Raised when a vector index operation fails."""
    pass


class DeploymentError(MemvaultError):
    """Raised when provisioning a new tenant fails."""
    pass


class NotFoundError(MemvaultError):
    """Raised when a required record is absent.

    Read paths return ``None`` instead; this is used where absence
    prevents the operation from continuing at all.
    """
    pass


class AccessDeniedError(MemvaultError):
    """Raised when a user acts on a record owned by someone else."""
    pass


class QuotaError(MemvaultError):
    """Base class for quota gate rejections."""
    pass


class QuotaForbiddenError(QuotaError):
    """Raised when there is no subscription or it is inactive."""
    pass


class QuotaExceededError(QuotaError):
    """Raised when the subscription has used up its quota."""

    def __init__(self, message: str, used: int = 0, limit: int = 0):
        super().__init__(message)
        self.used = used
        self.limit = limit


class QuotaCheckError(QuotaError):
    """Raised when the subscription store itself fails during a check."""
    pass


def _describe(error: BaseException) -> str:
    """Get a human-readable message for an exception."""
    text = str(error)
    return text if text else type(error).__name__


def wrap_error(
    message: str,
    error: BaseException,
    default: Type[MemvaultError] = MemvaultError,
) -> MemvaultError:
    """
    Wrap an exception with operation context.

    A MemvaultError keeps its taxonomy class so callers can still tell
    validation from store failures; anything else becomes ``default``.

    Args:
        message: Stable description of the attempted operation
        error: The underlying exception
        default: Class used for non-memvault exceptions

    Returns:
        A new error carrying ``error`` as its cause
    """
    if isinstance(error, MemvaultError) and not isinstance(error, QuotaExceededError):
        return type(error)(message, cause=error)
    return default(message, cause=error)
