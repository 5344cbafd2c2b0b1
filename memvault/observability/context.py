"""
Operation context management for observability.

Carries the tenant and an operation id across awaits so every log line
emitted while serving one call can be correlated.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


_current_context: ContextVar["OperationContext"] = ContextVar("current_operation_context")


@dataclass
class OperationContext:
    """
    Context for one memory operation.

    Attributes:
        operation: Name of the operation (e.g. "create_memory")
        operation_id: Unique identifier for this invocation
        tenant: Tenant handle the operation is bound to, if any
        parent_id: Operation id of the enclosing operation, if any
        start_time: When this context was created
        attributes: Additional context attributes
    """

    operation: str = ""
    operation_id: str = field(default_factory=lambda: str(uuid.uuid4())[:16])
    tenant: Optional[str] = None
    parent_id: Optional[str] = None
    start_time: datetime = field(default_factory=datetime.now)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def create_child(self, operation: str) -> "OperationContext":
        """Create a child context for a nested operation."""
        return OperationContext(
            operation=operation,
            tenant=self.tenant,
            parent_id=self.operation_id,
            attributes=self.attributes.copy(),
        )

    def set_attribute(self, key: str, value: Any) -> None:
        """Set an attribute on this context."""
        self.attributes[key] = value

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary for serialization."""
        return {
            "operation": self.operation,
            "operation_id": self.operation_id,
            "tenant": self.tenant,
            "parent_id": self.parent_id,
            "start_time": self.start_time.isoformat(),
            "attributes": self.attributes,
        }


class ContextManager:
    """
    Manages operation context across awaits.

    Backed by a context variable, so each asyncio task sees its own value.
    """

    @staticmethod
    def get_current() -> Optional[OperationContext]:
        """Get the current operation context."""
        try:
            return _current_context.get()
        except LookupError:
            return None

    @staticmethod
    def set_current(context: Optional[OperationContext]) -> None:
        """Set the current operation context."""
        _current_context.set(context)

    @staticmethod
    def create_context(operation: str, tenant: Optional[str] = None, **attributes) -> OperationContext:
        """
        Create a context, nesting under the current one when present.

        Args:
            operation: Operation name
            tenant: Tenant handle; inherited from the parent when omitted
            **attributes: Extra attributes to attach

        Returns:
            The new context (not yet activated)
        """
        current = ContextManager.get_current()
        if current:
            context = current.create_child(operation)
        else:
            context = OperationContext(operation=operation)
        if tenant is not None:
            context.tenant = tenant
        for key, value in attributes.items():
            context.set_attribute(key, value)
        return context


class ContextScope:
    """
    Context manager for scoped operation context.

    Usage:
        with ContextScope(ContextManager.create_context("search", tenant=handle)):
            # context is active here
            pass
        # previous context is restored
    """

    def __init__(self, context: OperationContext):
        self.context = context
        self.previous: Optional[OperationContext] = None

    def __enter__(self) -> OperationContext:
        self.previous = ContextManager.get_current()
        ContextManager.set_current(self.context)
        return self.context

    def __exit__(self, exc_type, exc_val, exc_tb):
        ContextManager.set_current(self.previous)
        return False


def operation_scope(operation: str, tenant: Optional[str] = None, **attributes) -> ContextScope:
    """Shortcut for ``ContextScope(ContextManager.create_context(...))``."""
    return ContextScope(ContextManager.create_context(operation, tenant=tenant, **attributes))
