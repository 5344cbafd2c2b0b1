"""
memvault - semantic memory storage with per-tenant vector indexes.

Store short pieces of text as memories and retrieve the most similar
ones later. Each tenant gets an isolated vector index, provisioned
through a ledger and searched with metadata filters.
"""

from .errors import (
    MemvaultError,
    ValidationError,
    InitializationError,
    ShapeError,
    StoreError,
    DeploymentError,
    NotFoundError,
    AccessDeniedError,
    QuotaError,
    QuotaForbiddenError,
    QuotaExceededError,
    QuotaCheckError,
)

from .config import MemvaultConfig, load_config

from .memory import (
    EmbeddingEngine,
    HashingBackend,
    SentenceTransformerBackend,
    TenantVectorStore,
    MemoryOrchestrator,
    MemoryGateway,
    QuotaGate,
    MemoryMetadata,
    SearchFilters,
    HNSWParams,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "MemvaultError",
    "ValidationError",
    "InitializationError",
    "ShapeError",
    "StoreError",
    "DeploymentError",
    "NotFoundError",
    "AccessDeniedError",
    "QuotaError",
    "QuotaForbiddenError",
    "QuotaExceededError",
    "QuotaCheckError",
    # Config
    "MemvaultConfig",
    "load_config",
    # Memory
    "EmbeddingEngine",
    "HashingBackend",
    "SentenceTransformerBackend",
    "TenantVectorStore",
    "MemoryOrchestrator",
    "MemoryGateway",
    "QuotaGate",
    "MemoryMetadata",
    "SearchFilters",
    "HNSWParams",
]
