"""
Type definitions for the memory system.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime from string or return as-is if already datetime.

    Handles ISO format strings including 'Z' suffix for UTC. Naive values
    are taken to be UTC so they compare with aware ones.

    Args:
        value: String or datetime to parse

    Returns:
        Parsed timezone-aware datetime, or None if absent or unparseable
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        if value.endswith('Z'):
            value = value[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class HNSWParams:
    """
    Build/search parameters of an approximate nearest-neighbor graph.

    Attributes:
        m: Graph fan-out (neighbors per node)
        ef_construction: Search breadth while building the graph
        ef_search: Search breadth at query time
    """

    m: int = 16
    ef_construction: int = 200
    ef_search: int = 50

    def __post_init__(self):
        for name in ("m", "ef_construction", "ef_search"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"HNSW parameter {name} must be a positive integer, got {value!r}")

    @classmethod
    def from_config(cls, index_config) -> "HNSWParams":
        """Build parameters from an IndexConfig."""
        return cls(
            m=index_config.m,
            ef_construction=index_config.ef_construction,
            ef_search=index_config.ef_search,
        )

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary."""
        return {
            "m": self.m,
            "ef_construction": self.ef_construction,
            "ef_search": self.ef_search,
        }


@dataclass
class TensorOutput:
    """
    Raw output of an embedding backend.

    Attributes:
        data: Flat buffer of floats, row-major
        dims: Tensor shape; (dim,) for one input or (batch, dim) for many
    """

    data: Sequence[float]
    dims: Tuple[int, ...]


@dataclass
class EmbeddingResult:
    """A single text embedding."""

    vector: List[float]
    dimensions: int
    model_id: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "vector": self.vector,
            "dimensions": self.dimensions,
            "model_id": self.model_id,
        }


class MemoryMetadata(BaseModel):
    """
    Metadata stored alongside a memory vector.

    The recognized fields are typed; any other key the caller sends is
    kept as an extra attribute and round-trips unchanged.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    content: Optional[str] = None
    context: Optional[str] = None
    importance: Optional[int] = Field(default=None, ge=1, le=10)
    tags: Optional[List[str]] = None
    timestamp: Optional[str] = None
    client: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @property
    def extra(self) -> Dict[str, Any]:
        """Caller-supplied keys outside the recognized fields."""
        return dict(self.model_extra or {})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain mapping using the stored key names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SearchFilters(BaseModel):
    """
    Post-search metadata filters.

    All filters are AND-combined; each one is optional.
    """

    model_config = ConfigDict(extra="allow")

    tags: Optional[List[str]] = None
    importance_min: Optional[int] = Field(default=None, ge=1, le=10)
    importance_max: Optional[int] = Field(default=None, ge=1, le=10)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    client: Optional[str] = None
    context: Optional[str] = None

    def is_empty(self) -> bool:
        """Whether no filter would exclude anything."""
        return not (
            self.tags
            or self.importance_min is not None
            or self.importance_max is not None
            or self.date_from is not None
            or self.date_to is not None
            or self.client
        )


@dataclass
class SearchHit:
    """
    A raw nearest-neighbor hit from a vector index.

    Attributes:
        id: Vector id (non-negative)
        distance: Cosine distance to the query (non-negative; smaller is closer)
        metadata: Stored metadata mapping, if any
    """

    id: int
    distance: float
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "distance": self.distance,
            "metadata": self.metadata,
        }


@dataclass
class VectorRecord:
    """A stored vector with its metadata."""

    id: int
    vector: List[float]
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class InsertResult:
    """Result of inserting a vector into a tenant store."""

    success: bool
    vector_id: int
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "vector_id": self.vector_id,
            "message": self.message,
        }


@dataclass
class DeploymentResult:
    """Result of provisioning a new tenant."""

    tenant_handle: str
    owner_address: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "tenant_handle": self.tenant_handle,
            "owner_address": self.owner_address,
        }


@dataclass
class MemoryResult:
    """
    A memory as returned to callers.

    Attributes:
        id: Memory id within its tenant
        content: Original text, echoed from metadata
        metadata: Full stored metadata
        distance: Distance to the query (search results only)
    """

    id: int
    content: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    distance: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "id": self.id,
            "content": self.content,
            "metadata": self.metadata,
        }
        if self.distance is not None:
            result["distance"] = self.distance
        return result


@dataclass
class CreateMemoryResult:
    """Result of creating a memory."""

    success: bool
    memory_id: int
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "memory_id": self.memory_id,
            "message": self.message,
        }


@dataclass
class MemoryStats:
    """Statistics about a tenant's memories."""

    total_memories: int = 0
    embedding_ready: bool = False
    store_ready: bool = False
    embedding_model: Optional[str] = None
    tenant_handle: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_memories": self.total_memories,
            "embedding_ready": self.embedding_ready,
            "store_ready": self.store_ready,
            "embedding_model": self.embedding_model,
            "tenant_handle": self.tenant_handle,
            **self.extra,
        }
