"""
Per-tenant vector store.

A TenantVectorStore is bound to one tenant handle for its lifetime and
is fully initialized before it is handed out. All stores share the
process-wide ledger configuration underneath.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from ..errors import (
    DeploymentError,
    InitializationError,
    StoreError,
    ValidationError,
)
from ..observability import operation_scope
from .index import VectorIndex
from .ledger import SharedLedgerConfig, get_shared_config
from .types import DeploymentResult, HNSWParams, InsertResult, MemoryMetadata, SearchHit, VectorRecord

logger = logging.getLogger(__name__)


class TenantVectorStore:
    """
    Vector storage for a single tenant.

    Use ``for_tenant`` to obtain a ready store; ``deploy_new`` provisions
    a new tenant.

    Example:
        >>> deployment = await TenantVectorStore.deploy_new()
        >>> store = await TenantVectorStore.for_tenant(deployment.tenant_handle)
        >>> result = await store.insert(vector, {"content": "hello"})
        >>> hits = await store.search(vector, k=5)
    """

    def __init__(self, handle: str, params: Optional[HNSWParams] = None):
        """
        Create an unbound store. Prefer ``for_tenant``.

        Args:
            handle: Tenant handle
            params: Index parameters; the shared defaults are used when None
        """
        self.handle = handle
        self._params = params
        self._config: Optional[SharedLedgerConfig] = None
        self._index: Optional[VectorIndex] = None
        self._initialized = False

    @classmethod
    async def for_tenant(cls, handle: str, params: Optional[HNSWParams] = None) -> "TenantVectorStore":
        """
        Create a store for a tenant and initialize it.

        Args:
            handle: Tenant handle
            params: Index parameters; the shared defaults are used when None

        Returns:
            A ready store

        Raises:
            InitializationError: If the shared config or the tenant's index
                cannot be obtained
        """
        store = cls(handle, params)
        await store._initialize()
        return store

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def params(self) -> Optional[HNSWParams]:
        """
        Index parameters in effect (None before initialization).

        An index that is already open keeps the parameters it was opened
        with, so those are reported rather than the ones requested here.
        """
        if self._index is None:
            return None
        index_params = getattr(self._index, "params", None)
        if index_params is not None:
            return index_params
        return self._params or self._config.hnsw_params

    async def _initialize(self) -> None:
        if not self.handle:
            raise InitializationError("Tenant handle must not be empty")

        with operation_scope("store.initialize", tenant=self.handle):
            logger.info(f"Initializing vector store for tenant: {self.handle}")
            try:
                config = await get_shared_config()
                params = self._params or config.hnsw_params
                loop = asyncio.get_running_loop()
                index = await loop.run_in_executor(
                    None, config.index_provider.open, self.handle, params
                )
            except Exception as e:
                logger.error(f"Vector store initialization failed for tenant {self.handle}: {e}")
                raise InitializationError(
                    f"Failed to initialize vector store for tenant {self.handle}", cause=e
                ) from e

            self._config = config
            self._index = index
            self._initialized = True
            params = self.params
            logger.info(
                f"Vector store ready for tenant {self.handle}: "
                f"m={params.m}, ef_construction={params.ef_construction}, ef_search={params.ef_search}"
            )

    def _require_index(self) -> VectorIndex:
        if self._index is None:
            raise StoreError(f"Vector store for tenant {self.handle} is not initialized")
        return self._index

    async def _call(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def insert(
        self,
        vector: Sequence[float],
        metadata: Optional[Union[Dict[str, Any], MemoryMetadata]] = None,
    ) -> InsertResult:
        """
        Insert a vector with metadata.

        Args:
            vector: Embedding vector
            metadata: Metadata stored with it

        Returns:
            Insert result with the assigned id

        Raises:
            StoreError: If the index rejects the insert
        """
        if isinstance(metadata, MemoryMetadata):
            metadata = metadata.to_dict()

        with operation_scope("store.insert", tenant=self.handle):
            try:
                index = self._require_index()
                logger.info(f"Inserting vector with {len(vector)} dimensions")
                vector_id = await self._call(index.insert, list(vector), metadata)
            except StoreError:
                raise
            except Exception as e:
                logger.error(f"Failed to insert vector: {e}")
                raise StoreError("Failed to insert vector", cause=e) from e

            logger.info(f"Vector inserted with ID: {vector_id}")
            return InsertResult(
                success=True,
                vector_id=vector_id,
                message=f"Vector inserted successfully with ID: {vector_id}",
            )

    async def search(self, vector: Sequence[float], k: int) -> List[SearchHit]:
        """
        Search for the k nearest vectors.

        Args:
            vector: Query vector
            k: Maximum number of hits (>= 1)

        Returns:
            Hits ordered nearest first; empty for an empty index

        Raises:
            ValidationError: If k is less than 1
            StoreError: If the index search fails
        """
        if isinstance(k, bool) or not isinstance(k, int) or k < 1:
            raise ValidationError(f"k must be a positive integer, got {k!r}")

        with operation_scope("store.search", tenant=self.handle, k=k):
            try:
                index = self._require_index()
                logger.info(f"Searching for {k} nearest neighbors")
                hits = await self._call(index.knn_search, list(vector), k)
            except StoreError:
                raise
            except Exception as e:
                logger.error(f"Failed to search vectors: {e}")
                raise StoreError("Failed to search vectors", cause=e) from e

            logger.info(f"Found {len(hits)} similar vectors")
            return hits

    async def get_by_id(self, vector_id: int) -> Optional[VectorRecord]:
        """
        Get a stored vector by id.

        Returns:
            The record, or None for an unknown id

        Raises:
            StoreError: If the index lookup fails
        """
        if vector_id < 0:
            return None

        with operation_scope("store.get", tenant=self.handle):
            try:
                index = self._require_index()
                record = await self._call(index.get, vector_id)
            except StoreError:
                raise
            except Exception as e:
                logger.error(f"Failed to retrieve vector {vector_id}: {e}")
                raise StoreError("Failed to retrieve vector", cause=e) from e

            if record is None:
                logger.info(f"Vector {vector_id} not found")
            return record

    async def count(self) -> int:
        """Number of vectors stored for this tenant."""
        try:
            index = self._require_index()
            return await self._call(index.size)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError("Failed to count vectors", cause=e) from e

    async def get_stats(self) -> Dict[str, Any]:
        """Get store statistics. Never raises."""
        try:
            total = await self.count() if self._index is not None else 0
        except Exception as e:
            logger.warning(f"Failed to count vectors for stats: {e}")
            total = 0
        return {
            "total_vectors": total,
            "is_initialized": self._initialized,
            "tenant_handle": self.handle,
        }

    @staticmethod
    async def deploy_new(owner: Optional[str] = None) -> DeploymentResult:
        """
        Provision a new tenant.

        Checks the deploy wallet's balance, deploys a contract through the
        ledger and creates the tenant's empty index.

        Args:
            owner: Owner address recorded on the contract; the deploy
                wallet's address when omitted

        Returns:
            The new tenant handle and its owner

        Raises:
            DeploymentError: If the wallet has no funds or provisioning fails
        """
        with operation_scope("store.deploy"):
            try:
                config = await get_shared_config()
                ledger = config.ledger
                address = await ledger.get_address(config.wallet)
                balance = await ledger.get_balance(address)
                logger.info(f"Wallet balance: {balance} ({address})")

                if balance <= 0:
                    if config.is_production:
                        raise DeploymentError(
                            f"Insufficient wallet balance for deployment. Current: {balance}"
                        )
                    raise DeploymentError(
                        f"Insufficient wallet balance. Current: {balance}. "
                        "The development ledger funds the deploy wallet when "
                        "ledger.auto_fund is enabled."
                    )

                owner = owner or address
                logger.info("Deploying new tenant contract...")
                handle = await ledger.deploy(config.wallet, owner)

                loop = asyncio.get_running_loop()
                await loop.run_in_executor(
                    None, config.index_provider.create, handle, config.hnsw_params
                )
                logger.info(f"Tenant deployed: {handle}")

                new_balance = await ledger.get_balance(address)
                logger.info(f"Wallet balance after deployment: {new_balance}")
            except DeploymentError:
                raise
            except Exception as e:
                logger.error(f"Failed to deploy tenant: {e}")
                raise DeploymentError("Failed to deploy tenant", cause=e) from e

            return DeploymentResult(tenant_handle=handle, owner_address=owner)

    async def release(self) -> None:
        """Drop references to the index and shared config. Never raises."""
        self._initialized = False
        self._index = None
        self._config = None
        logger.info(f"Vector store released for tenant: {self.handle}")
