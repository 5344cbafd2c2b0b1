"""
Memory orchestrator.

Composes the embedding engine and a tenant store into memory operations:
create, search (with post-search metadata filters), get and stats.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError, wrap_error
from ..observability import operation_scope, preview
from .embeddings import EmbeddingEngine, get_embedding_engine
from .store import TenantVectorStore
from .types import (
    CreateMemoryResult,
    MemoryMetadata,
    MemoryResult,
    MemoryStats,
    SearchFilters,
    parse_datetime,
)

logger = logging.getLogger(__name__)


DEFAULT_MAX_CONTENT_LENGTH = 10000


class MemoryOrchestrator:
    """
    Semantic memory operations for one tenant.

    Example:
        >>> store = await TenantVectorStore.for_tenant(handle)
        >>> memories = MemoryOrchestrator(store)
        >>> await memories.create_memory("User prefers dark mode", {"importance": 7})
        >>> results = await memories.search_memories("dark mode preference", k=1)
    """

    def __init__(
        self,
        store: TenantVectorStore,
        engine: Optional[EmbeddingEngine] = None,
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Initialized store of the tenant
            engine: Embedding engine; the process-wide engine when None
            max_content_length: Maximum characters of memory content
        """
        self.store = store
        self.engine = engine or get_embedding_engine()
        self.max_content_length = max_content_length

    async def create_memory(
        self,
        content: str,
        metadata: Optional[Union[Dict[str, Any], MemoryMetadata]] = None,
    ) -> CreateMemoryResult:
        """
        Store a new memory.

        Args:
            content: Memory text
            metadata: Caller metadata; its ``content`` key is replaced by
                the memory text

        Returns:
            Result with the new memory id

        Raises:
            ValidationError: For empty or oversized content, or bad metadata
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Memory content must not be empty")
        if len(content) > self.max_content_length:
            raise ValidationError(
                f"Memory content exceeds {self.max_content_length} characters ({len(content)})"
            )
        stored = _merge_metadata(metadata, content)

        with operation_scope("create_memory", tenant=self.store.handle):
            logger.info(f"Creating memory from {len(content)} characters of content")
            try:
                embedding = await self.engine.embed(content)
                result = await self.store.insert(embedding.vector, stored)
            except Exception as e:
                logger.error(f"Failed to create memory: {e}")
                raise wrap_error("Failed to create memory", e) from e

            logger.info(f"Memory created with ID: {result.vector_id}")
            return CreateMemoryResult(
                success=True,
                memory_id=result.vector_id,
                message=f"Memory created from {len(content)} characters of content",
            )

    async def search_memories(
        self,
        query: str,
        k: int = 10,
        filters: Optional[Union[Dict[str, Any], SearchFilters]] = None,
    ) -> List[MemoryResult]:
        """
        Search memories by meaning.

        Filters are applied after the nearest-neighbor search, so fewer
        than ``k`` results may come back. Callers clamp ``k`` to 1..100.

        Args:
            query: Natural-language query
            k: Number of neighbors to fetch
            filters: Optional metadata filters

        Returns:
            Matching memories, nearest first

        Raises:
            ValidationError: For an empty query or invalid filters
        """
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Search query must not be empty")
        search_filters = _parse_filters(filters)

        with operation_scope("search_memories", tenant=self.store.handle, k=k):
            logger.info(f"Searching memories with query: \"{preview(query)}\"")
            try:
                embedding = await self.engine.embed(query)
                hits = await self.store.search(embedding.vector, k)
            except Exception as e:
                logger.error(f"Failed to search memories: {e}")
                raise wrap_error("Failed to search memories", e) from e

            memories = [
                MemoryResult(
                    id=hit.id,
                    content=_content_of(hit.metadata),
                    metadata=hit.metadata,
                    distance=hit.distance,
                )
                for hit in hits
            ]
            if search_filters is not None and not search_filters.is_empty():
                memories = [m for m in memories if matches_filters(m.metadata, search_filters)]

            logger.info(f"Found {len(memories)} relevant memories")
            return memories

    async def get_memory(self, memory_id: int) -> Optional[MemoryResult]:
        """
        Get a memory by id.

        Returns:
            The memory, or None if there is no such id
        """
        with operation_scope("get_memory", tenant=self.store.handle):
            logger.info(f"Retrieving memory with ID: {memory_id}")
            try:
                record = await self.store.get_by_id(memory_id)
            except Exception as e:
                logger.error(f"Failed to retrieve memory {memory_id}: {e}")
                raise wrap_error("Failed to retrieve memory", e) from e

            if record is None:
                return None
            return MemoryResult(
                id=memory_id,
                content=_content_of(record.metadata),
                metadata=record.metadata,
            )

    async def get_stats(self) -> MemoryStats:
        """Get memory statistics. Never raises."""
        try:
            store_stats = await self.store.get_stats()
            engine_info = self.engine.info()
            return MemoryStats(
                total_memories=store_stats["total_vectors"],
                embedding_ready=engine_info["is_initialized"],
                store_ready=store_stats["is_initialized"],
                embedding_model=engine_info["model"],
                tenant_handle=store_stats["tenant_handle"],
            )
        except Exception as e:
            logger.error(f"Failed to get memory stats: {e}")
            return MemoryStats(tenant_handle=getattr(self.store, "handle", None))


def _merge_metadata(
    metadata: Optional[Union[Dict[str, Any], MemoryMetadata]],
    content: str,
) -> Dict[str, Any]:
    """Validate caller metadata and force ``content`` to the memory text."""
    if metadata is None:
        model = MemoryMetadata()
    elif isinstance(metadata, MemoryMetadata):
        model = metadata
    elif isinstance(metadata, dict):
        # content is overwritten below, whatever the caller sent
        fields = {key: value for key, value in metadata.items() if key != "content"}
        try:
            model = MemoryMetadata.model_validate(fields)
        except PydanticValidationError as e:
            raise ValidationError("Invalid memory metadata", cause=e) from e
    else:
        raise ValidationError(f"Memory metadata must be a mapping, got {type(metadata).__name__}")

    stored = model.to_dict()
    stored["content"] = content
    return stored


def _parse_filters(filters: Optional[Union[Dict[str, Any], SearchFilters]]) -> Optional[SearchFilters]:
    if filters is None or isinstance(filters, SearchFilters):
        return filters
    try:
        return SearchFilters.model_validate(filters)
    except PydanticValidationError as e:
        raise ValidationError("Invalid search filters", cause=e) from e


def _content_of(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    if not metadata:
        return None
    content = metadata.get("content")
    return content if isinstance(content, str) and content else None


def _importance_of(metadata: Dict[str, Any]) -> float:
    """Importance of a hit; missing or non-numeric counts as 0."""
    value = metadata.get("importance")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def matches_filters(metadata: Optional[Dict[str, Any]], filters: SearchFilters) -> bool:
    """
    Check a hit's metadata against search filters.

    All filters are AND-combined; tags match when any filter tag is
    present. Metadata that is absent counts as an empty mapping. A hit
    with no parseable ``timestamp``/``createdAt`` passes date filters.

    Args:
        metadata: Stored metadata of the hit
        filters: Filters to apply

    Returns:
        True if the hit should be kept
    """
    metadata = metadata or {}

    if filters.tags:
        tags = metadata.get("tags") or []
        if not isinstance(tags, (list, tuple, set)):
            tags = []
        if not any(tag in tags for tag in filters.tags):
            return False

    if filters.importance_min is not None:
        if _importance_of(metadata) < filters.importance_min:
            return False

    if filters.importance_max is not None:
        if _importance_of(metadata) > filters.importance_max:
            return False

    if filters.client:
        client = metadata.get("client") or ""
        if not isinstance(client, str) or filters.client not in client:
            return False

    if filters.date_from is not None or filters.date_to is not None:
        stamp = parse_datetime(metadata.get("timestamp") or metadata.get("createdAt"))
        if stamp is not None:
            if filters.date_from is not None and stamp < parse_datetime(filters.date_from):
                return False
            if filters.date_to is not None and stamp > parse_datetime(filters.date_to):
                return False

    return True

