"""
Semantic memory orchestration.

Turns text into embeddings, keeps one isolated vector index per tenant,
and searches it with metadata filters.

Key features:
- Lazily loaded, process-wide embedding model
- Per-tenant stores over faiss HNSW or exact numpy indexes
- Single-flight initialization of the shared ledger config
- Post-search filters on tags, importance, client and date
- Quota-metered writes through the gateway
"""

from .types import (
    EmbeddingResult,
    TensorOutput,
    MemoryMetadata,
    SearchFilters,
    SearchHit,
    VectorRecord,
    InsertResult,
    HNSWParams,
    DeploymentResult,
    MemoryResult,
    CreateMemoryResult,
    MemoryStats,
)

from .singleflight import SingleFlight

from .embeddings import (
    EmbeddingBackend,
    SentenceTransformerBackend,
    HashingBackend,
    EmbeddingEngine,
    get_embedding_engine,
    set_embedding_engine,
)

from .index import (
    VectorIndex,
    FlatIndex,
    HNSWIndex,
    IndexProvider,
    InMemoryIndexProvider,
    LocalIndexProvider,
)

from .ledger import (
    Wallet,
    LedgerClient,
    LocalLedger,
    SharedLedgerConfig,
    get_shared_config,
    reset_shared_config,
)

from .store import TenantVectorStore

from .orchestrator import MemoryOrchestrator

from .quota import (
    Subscription,
    SubscriptionStore,
    InMemorySubscriptionStore,
    QuotaGate,
)

from .gateway import (
    Instance,
    InstanceStore,
    InMemoryInstanceStore,
    MemoryGateway,
)


__all__ = [
    # Types
    "EmbeddingResult",
    "TensorOutput",
    "MemoryMetadata",
    "SearchFilters",
    "SearchHit",
    "VectorRecord",
    "InsertResult",
    "HNSWParams",
    "DeploymentResult",
    "MemoryResult",
    "CreateMemoryResult",
    "MemoryStats",
    "SingleFlight",
    # Embeddings
    "EmbeddingBackend",
    "SentenceTransformerBackend",
    "HashingBackend",
    "EmbeddingEngine",
    "get_embedding_engine",
    "set_embedding_engine",
    # Indexes
    "VectorIndex",
    "FlatIndex",
    "HNSWIndex",
    "IndexProvider",
    "InMemoryIndexProvider",
    "LocalIndexProvider",
    # Ledger
    "Wallet",
    "LedgerClient",
    "LocalLedger",
    "SharedLedgerConfig",
    "get_shared_config",
    "reset_shared_config",
    # Store and orchestration
    "TenantVectorStore",
    "MemoryOrchestrator",
    # Quota
    "Subscription",
    "SubscriptionStore",
    "InMemorySubscriptionStore",
    "QuotaGate",
    # Gateway
    "Instance",
    "InstanceStore",
    "InMemoryInstanceStore",
    "MemoryGateway",
]
