"""
Per-user memory gateway.

Resolves a user's tenant instance, opens a fresh store for the request,
meters mutating operations through the quota gate and delegates to the
orchestrator.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from ..config import LimitsConfig
from ..errors import AccessDeniedError, NotFoundError
from .embeddings import EmbeddingEngine
from .orchestrator import MemoryOrchestrator
from .quota import QuotaGate
from .store import TenantVectorStore
from .types import CreateMemoryResult, MemoryMetadata, MemoryResult, MemoryStats, SearchFilters, utc_now

logger = logging.getLogger(__name__)


@dataclass
class Instance:
    """
    A user's tenant instance.

    Attributes:
        instance_id: Unique identifier
        user_id: Owning user
        tenant_handle: Handle of the tenant's index
        owner_address: Ledger address recorded as owner
        is_active: Whether this is the user's active instance
        created_at: When the instance was provisioned
    """

    instance_id: str
    user_id: str
    tenant_handle: str
    owner_address: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "instance_id": self.instance_id,
            "user_id": self.user_id,
            "tenant_handle": self.tenant_handle,
            "owner_address": self.owner_address,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
        }


class InstanceStore(ABC):
    """Abstract base class for instance record stores."""

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[Instance]:
        """List a user's instances, oldest first."""
        pass

    @abstractmethod
    async def create(
        self,
        user_id: str,
        tenant_handle: str,
        owner_address: Optional[str] = None,
        is_active: bool = True,
    ) -> Instance:
        """Record a new instance."""
        pass

    @abstractmethod
    async def get(self, instance_id: str) -> Optional[Instance]:
        """Get an instance by id."""
        pass

    @abstractmethod
    async def delete(self, instance_id: str) -> bool:
        """Delete an instance record. Returns False if there was none."""
        pass


class InMemoryInstanceStore(InstanceStore):
    """Instance store kept in memory."""

    def __init__(self):
        self._instances: Dict[str, Instance] = {}

    async def list_for_user(self, user_id: str) -> List[Instance]:
        return [i for i in self._instances.values() if i.user_id == user_id]

    async def create(
        self,
        user_id: str,
        tenant_handle: str,
        owner_address: Optional[str] = None,
        is_active: bool = True,
    ) -> Instance:
        instance = Instance(
            instance_id=uuid.uuid4().hex,
            user_id=user_id,
            tenant_handle=tenant_handle,
            owner_address=owner_address,
            is_active=is_active,
        )
        self._instances[instance.instance_id] = instance
        return instance

    async def get(self, instance_id: str) -> Optional[Instance]:
        return self._instances.get(instance_id)

    async def delete(self, instance_id: str) -> bool:
        return self._instances.pop(instance_id, None) is not None


class MemoryGateway:
    """
    Memory operations on behalf of users.

    Every call opens the user's store afresh and releases it afterwards;
    only the shared ledger config and the embedding engine persist
    between calls.
    """

    def __init__(
        self,
        instances: InstanceStore,
        quota_gate: QuotaGate,
        engine: Optional[EmbeddingEngine] = None,
        limits: Optional[LimitsConfig] = None,
    ):
        """
        Initialize the gateway.

        Args:
            instances: Store of users' instances
            quota_gate: Gate for mutating operations
            engine: Embedding engine; the process-wide engine when None
            limits: Input limits
        """
        self.instances = instances
        self.quota_gate = quota_gate
        self.engine = engine
        self.limits = limits or LimitsConfig()

    async def resolve_instance(self, user_id: str) -> Instance:
        """
        Pick the instance a user's requests go to.

        Returns:
            The user's active instance, or their first one

        Raises:
            NotFoundError: If the user has no instance
        """
        instances = await self.instances.list_for_user(user_id)
        if not instances:
            raise NotFoundError(f"No instances found for user: {user_id}")
        instance = next((i for i in instances if i.is_active), instances[0])
        logger.info(f"Using tenant {instance.tenant_handle} for user: {user_id}")
        return instance

    async def get_instance(self, user_id: str, instance_id: str) -> Instance:
        """
        Get one of a user's instances by id.

        Raises:
            NotFoundError: If there is no such instance
            AccessDeniedError: If the instance belongs to another user
        """
        instance = await self.instances.get(instance_id)
        if instance is None:
            raise NotFoundError(f"No instance found with ID: {instance_id}")
        if instance.user_id != user_id:
            logger.warning(f"User {user_id} denied access to instance {instance_id}")
            raise AccessDeniedError("You do not have permission to access this instance")
        return instance

    async def delete_instance(self, user_id: str, instance_id: str) -> None:
        """
        Delete one of a user's instance records.

        The tenant's index is left in place; only the record is removed.

        Raises:
            NotFoundError: If there is no such instance
            AccessDeniedError: If the instance belongs to another user
        """
        await self.get_instance(user_id, instance_id)
        await self.instances.delete(instance_id)
        logger.info(f"Instance deleted: {instance_id}")

    async def open_for_user(self, user_id: str) -> MemoryOrchestrator:
        """
        Build an orchestrator bound to the user's tenant.

        The caller owns the returned store; release it with
        ``orchestrator.store.release()``.
        """
        instance = await self.resolve_instance(user_id)
        store = await TenantVectorStore.for_tenant(instance.tenant_handle)
        return MemoryOrchestrator(
            store,
            engine=self.engine,
            max_content_length=self.limits.max_content_length,
        )

    @asynccontextmanager
    async def _memories(self, user_id: str) -> AsyncIterator[MemoryOrchestrator]:
        memories = await self.open_for_user(user_id)
        try:
            yield memories
        finally:
            await memories.store.release()

    async def create_memory(
        self,
        user_id: str,
        content: str,
        metadata: Optional[Union[Dict[str, Any], MemoryMetadata]] = None,
    ) -> CreateMemoryResult:
        """Create a memory, counting it against the user's quota."""

        async def create() -> CreateMemoryResult:
            async with self._memories(user_id) as memories:
                return await memories.create_memory(content, metadata)

        return await self.quota_gate.run_metered(user_id, create)

    async def search_memories(
        self,
        user_id: str,
        query: str,
        k: Optional[int] = None,
        filters: Optional[Union[Dict[str, Any], SearchFilters]] = None,
    ) -> List[MemoryResult]:
        """Search a user's memories; ``k`` is clamped to the allowed range."""
        k = self.clamp_k(k)
        async with self._memories(user_id) as memories:
            return await memories.search_memories(query, k=k, filters=filters)

    async def get_memory(self, user_id: str, memory_id: int) -> Optional[MemoryResult]:
        """Get one of a user's memories by id."""
        async with self._memories(user_id) as memories:
            return await memories.get_memory(memory_id)

    async def get_stats(self, user_id: str) -> MemoryStats:
        """Get statistics for a user's memories."""
        async with self._memories(user_id) as memories:
            return await memories.get_stats()

    async def provision_instance(self, user_id: str) -> Instance:
        """
        Deploy a new tenant for a user and record it as their instance.

        Raises:
            DeploymentError: If provisioning fails
        """
        logger.info(f"Creating new instance for user: {user_id}")
        deployment = await TenantVectorStore.deploy_new()
        instance = await self.instances.create(
            user_id=user_id,
            tenant_handle=deployment.tenant_handle,
            owner_address=deployment.owner_address,
            is_active=True,
        )
        logger.info(f"Instance created: {instance.instance_id}")
        return instance

    def clamp_k(self, k: Optional[int]) -> int:
        """Clamp a requested result count to 1..max_k."""
        if k is None:
            k = self.limits.default_k
        return max(1, min(int(k), self.limits.max_k))
