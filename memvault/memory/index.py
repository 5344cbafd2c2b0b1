"""
Vector index capability and local implementations.

A tenant's memories live in one VectorIndex. Indexes assign ids
atomically (count-then-add under a lock), return cosine distances, and
can persist themselves to a directory:

- ``vectors.npy`` / ``index.faiss``: the vectors
- ``metadata.json``: per-id metadata and the dimension

Files are written to a sibling temporary file and moved into place, and
an insert only becomes visible once its files are written.
"""

import copy
import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

try:
    import faiss
except Exception:
    faiss = None

from .types import HNSWParams, SearchHit, VectorRecord

logger = logging.getLogger(__name__)


VECTORS_FILE = "vectors.npy"
FAISS_FILE = "index.faiss"
METADATA_FILE = "metadata.json"

_HANDLE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def _unit(vector: Sequence[float]) -> np.ndarray:
    """Convert to a float32 row and scale it to unit length."""
    array = np.asarray(vector, dtype=np.float32).ravel()
    norm = float(np.linalg.norm(array))
    if norm > 0:
        array = array / norm
    return array


def _distance(similarity: float) -> float:
    """Cosine distance from cosine similarity, never negative."""
    return max(0.0, 1.0 - float(similarity))


class VectorIndex(ABC):
    """
    Abstract base class for tenant vector indexes.

    Subclasses implement storage and search of unit-length vectors;
    this class owns the lock, the metadata list and persistence of
    metadata.
    """

    def __init__(self, dimension: Optional[int] = None, storage_dir: Optional[Path] = None):
        """
        Initialize the index.

        Args:
            dimension: Vector dimension; fixed by the first insert when None
            storage_dir: Directory to persist to after each insert, if any
        """
        self.dimension = dimension
        self.storage_dir = Path(storage_dir) if storage_dir else None
        self._metadata: List[Optional[Dict[str, Any]]] = []
        self._lock = threading.Lock()

    # Storage hooks

    @abstractmethod
    def _appended(self, vector: np.ndarray, in_place: bool) -> Any:
        """
        Return vector storage with one unit vector appended.

        When ``in_place`` is False the current storage must be left untouched.
        """
        pass

    @abstractmethod
    def _commit(self, storage: Any) -> None:
        """Make storage returned by ``_appended`` the current storage."""
        pass

    @abstractmethod
    def _search(self, query: np.ndarray, k: int) -> List[tuple]:
        """Return up to k (id, similarity) pairs, most similar first."""
        pass

    @abstractmethod
    def _vector(self, vector_id: int) -> np.ndarray:
        """Return the stored vector for an existing id."""
        pass

    @abstractmethod
    def _storage(self) -> Any:
        """Current vector storage."""
        pass

    @abstractmethod
    def _write_vectors(self, storage: Any, path: Path) -> None:
        pass

    @abstractmethod
    def _vectors_file(self) -> str:
        pass

    # Public operations

    def insert(self, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None) -> int:
        """
        Insert a vector and assign it the next id.

        Args:
            vector: Vector to store; scaled to unit length
            metadata: Metadata mapping stored with it

        Returns:
            Assigned id, equal to the element count before the insert

        Raises:
            ValueError: If the vector is empty or its dimension does not match
            OSError: If the index cannot be written to its storage directory;
                the index is left unchanged
        """
        row = _unit(vector)
        if row.size == 0:
            raise ValueError("Cannot insert an empty vector")

        with self._lock:
            if self.dimension is not None and row.size != self.dimension:
                raise ValueError(
                    f"Vector dimension mismatch: index holds {self.dimension}, got {row.size}"
                )

            vector_id = len(self._metadata)
            entries = self._metadata + [copy.deepcopy(metadata) if metadata is not None else None]
            storage = self._appended(row, in_place=self.storage_dir is None)

            if self.storage_dir is not None:
                self._write_files(self.storage_dir, storage, int(row.size), entries)

            self._commit(storage)
            self._metadata = entries
            if self.dimension is None:
                self.dimension = int(row.size)

        return vector_id

    def knn_search(self, vector: Sequence[float], k: int) -> List[SearchHit]:
        """
        Find the k stored vectors nearest to a query.

        Args:
            vector: Query vector
            k: Maximum number of hits (>= 1)

        Returns:
            Hits ordered by ascending cosine distance
        """
        if k < 1:
            raise ValueError(f"k must be at least 1, got {k}")

        query = _unit(vector)
        with self._lock:
            if not self._metadata:
                return []
            if query.size != self.dimension:
                raise ValueError(
                    f"Query dimension mismatch: index holds {self.dimension}, got {query.size}"
                )
            pairs = self._search(query, min(k, len(self._metadata)))
            return [
                SearchHit(
                    id=int(vector_id),
                    distance=_distance(similarity),
                    metadata=copy.deepcopy(self._metadata[vector_id]),
                )
                for vector_id, similarity in pairs
                if 0 <= vector_id < len(self._metadata)
            ]

    def get(self, vector_id: int) -> Optional[VectorRecord]:
        """Get a stored vector by id, or None if there is no such id."""
        with self._lock:
            if vector_id < 0 or vector_id >= len(self._metadata):
                return None
            return VectorRecord(
                id=vector_id,
                vector=self._vector(vector_id).tolist(),
                metadata=copy.deepcopy(self._metadata[vector_id]),
            )

    def size(self) -> int:
        """Number of stored vectors."""
        with self._lock:
            return len(self._metadata)

    def save(self, directory: Optional[Path] = None) -> None:
        """Persist the index to a directory (defaults to its storage directory)."""
        target = Path(directory) if directory else self.storage_dir
        if target is None:
            raise ValueError("No directory to save the index to")
        with self._lock:
            self._save_locked(target)

    def _save_locked(self, directory: Path) -> None:
        self._write_files(directory, self._storage(), self.dimension, self._metadata)

    def _write_files(
        self,
        directory: Path,
        storage: Any,
        dimension: Optional[int],
        entries: List[Optional[Dict[str, Any]]],
    ) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        vectors_tmp = directory / (self._vectors_file() + ".tmp")
        metadata_tmp = directory / (METADATA_FILE + ".tmp")
        try:
            if storage is not None:
                self._write_vectors(storage, vectors_tmp)
            with metadata_tmp.open("w", encoding="utf-8") as fh:
                json.dump(
                    {"dimension": dimension, "metadata": entries},
                    fh,
                    ensure_ascii=False,
                    indent=2,
                    default=str,
                )
            # Vectors first; loading tolerates trailing vectors.
            if storage is not None:
                os.replace(vectors_tmp, directory / self._vectors_file())
            os.replace(metadata_tmp, directory / METADATA_FILE)
        finally:
            for leftover in (vectors_tmp, metadata_tmp):
                leftover.unlink(missing_ok=True)

    @staticmethod
    def _read_metadata(directory: Path) -> Dict[str, Any]:
        with (directory / METADATA_FILE).open("r", encoding="utf-8") as fh:
            return json.load(fh)

    def close(self) -> None:
        """Release resources held by the index. Data is kept."""
        pass


class FlatIndex(VectorIndex):
    """
    Exact nearest-neighbor index backed by a numpy matrix.

    Suitable for development, tests and small tenants.
    """

    def __init__(self, dimension: Optional[int] = None, storage_dir: Optional[Path] = None):
        super().__init__(dimension, storage_dir)
        self._vectors = np.empty((0, dimension or 0), dtype=np.float32)

    def _appended(self, vector: np.ndarray, in_place: bool) -> np.ndarray:
        current = self._vectors
        if current.size == 0:
            current = np.empty((0, vector.size), dtype=np.float32)
        return np.vstack([current, vector])

    def _commit(self, storage: np.ndarray) -> None:
        self._vectors = storage

    def _storage(self) -> np.ndarray:
        return self._vectors

    def _search(self, query: np.ndarray, k: int) -> List[tuple]:
        similarities = self._vectors @ query
        order = np.argsort(-similarities, kind="stable")[:k]
        return [(int(i), float(similarities[i])) for i in order]

    def _vector(self, vector_id: int) -> np.ndarray:
        return self._vectors[vector_id]

    def _vectors_file(self) -> str:
        return VECTORS_FILE

    def _write_vectors(self, storage: np.ndarray, path: Path) -> None:
        with path.open("wb") as fh:
            np.save(fh, storage.astype(np.float32))

    @classmethod
    def load(cls, directory: Path) -> "FlatIndex":
        """Load a flat index persisted with ``save``."""
        directory = Path(directory)
        data = cls._read_metadata(directory)
        index = cls(dimension=data.get("dimension"), storage_dir=directory)
        index._metadata = list(data.get("metadata", []))
        vectors_file = directory / VECTORS_FILE
        if index._metadata and vectors_file.exists():
            vectors = np.load(vectors_file)
            if vectors.dtype != np.float32:
                vectors = vectors.astype(np.float32)
            if len(vectors) > len(index._metadata):
                logger.warning(
                    f"Index at {directory} has {len(vectors) - len(index._metadata)} "
                    f"unrecorded vectors; ignoring them"
                )
                vectors = vectors[: len(index._metadata)]
            elif len(vectors) < len(index._metadata):
                raise ValueError(
                    f"Index at {directory} is inconsistent: "
                    f"{len(vectors)} vectors, {len(index._metadata)} metadata entries"
                )
            index._vectors = vectors
        return index


class HNSWIndex(VectorIndex):
    """
    Approximate nearest-neighbor index backed by faiss ``IndexHNSWFlat``.

    Uses inner product over unit vectors, so scores are cosine
    similarities.
    """

    def __init__(
        self,
        params: Optional[HNSWParams] = None,
        dimension: Optional[int] = None,
        storage_dir: Optional[Path] = None,
    ):
        if faiss is None:
            raise RuntimeError("faiss is not available; install faiss-cpu or faiss-gpu to use this backend")
        super().__init__(dimension, storage_dir)
        self.params = params or HNSWParams()
        self._faiss_index = None
        if dimension:
            self._faiss_index = self._build(dimension)

    def _build(self, dimension: int):
        index = faiss.IndexHNSWFlat(dimension, self.params.m, faiss.METRIC_INNER_PRODUCT)
        index.hnsw.efConstruction = self.params.ef_construction
        index.hnsw.efSearch = self.params.ef_search
        return index

    def _appended(self, vector: np.ndarray, in_place: bool):
        if self._faiss_index is None:
            index = self._build(vector.size)
        elif in_place:
            index = self._faiss_index
        else:
            index = faiss.clone_index(self._faiss_index)
        index.add(vector.reshape(1, -1))
        return index

    def _commit(self, storage) -> None:
        self._faiss_index = storage

    def _storage(self):
        return self._faiss_index

    def _search(self, query: np.ndarray, k: int) -> List[tuple]:
        self._faiss_index.hnsw.efSearch = max(self.params.ef_search, k)
        D, I = self._faiss_index.search(query.reshape(1, -1), k)
        return [(int(i), float(d)) for d, i in zip(D[0], I[0]) if i >= 0]

    def _vector(self, vector_id: int) -> np.ndarray:
        return np.asarray(self._faiss_index.reconstruct(int(vector_id)), dtype=np.float32)

    def _vectors_file(self) -> str:
        return FAISS_FILE

    def _write_vectors(self, storage, path: Path) -> None:
        faiss.write_index(storage, str(path))

    @classmethod
    def load(cls, directory: Path, params: Optional[HNSWParams] = None) -> "HNSWIndex":
        """Load an HNSW index persisted with ``save``."""
        directory = Path(directory)
        data = cls._read_metadata(directory)
        index = cls(params=params, storage_dir=directory)
        index.dimension = data.get("dimension")
        index._metadata = list(data.get("metadata", []))
        faiss_file = directory / FAISS_FILE
        if faiss_file.exists():
            index._faiss_index = faiss.read_index(str(faiss_file))
            index._faiss_index.hnsw.efSearch = index.params.ef_search
            if index._faiss_index.ntotal != len(index._metadata):
                raise ValueError(
                    f"Index at {directory} is inconsistent: "
                    f"{index._faiss_index.ntotal} vectors, {len(index._metadata)} metadata entries"
                )
        elif index._metadata:
            raise ValueError(f"Index at {directory} has metadata but no vectors")
        return index

    def close(self) -> None:
        with self._lock:
            if self.storage_dir is not None and self._faiss_index is not None:
                self._save_locked(self.storage_dir)


class IndexProvider(ABC):
    """
    Creates and opens tenant indexes.

    Every ``open`` of a tenant returns the same in-process index object,
    so all stores bound to one tenant share its id-assignment lock.
    """

    def __init__(self):
        self._indexes: Dict[str, VectorIndex] = {}
        self._registry_lock = threading.Lock()

    @abstractmethod
    def create(self, handle: str, params: Optional[HNSWParams] = None) -> None:
        """
        Create an empty index for a new tenant.

        Raises:
            ValueError: If the tenant already has an index
        """
        pass

    @abstractmethod
    def open(self, handle: str, params: Optional[HNSWParams] = None) -> VectorIndex:
        """
        Open a tenant's index.

        Raises:
            KeyError: If the tenant has no index
        """
        pass

    @abstractmethod
    def exists(self, handle: str) -> bool:
        """Whether a tenant has an index."""
        pass


class InMemoryIndexProvider(IndexProvider):
    """Keeps tenant indexes in memory only. Used for tests and scratch work."""

    def __init__(self, kind: str = "flat"):
        super().__init__()
        self.kind = kind

    def create(self, handle: str, params: Optional[HNSWParams] = None) -> None:
        with self._registry_lock:
            if handle in self._indexes:
                raise ValueError(f"Tenant index already exists: {handle}")
            self._indexes[handle] = _new_index(self.kind, params)
        logger.debug(f"Created in-memory index: {handle}")

    def open(self, handle: str, params: Optional[HNSWParams] = None) -> VectorIndex:
        with self._registry_lock:
            try:
                return self._indexes[handle]
            except KeyError:
                raise KeyError(f"Unknown tenant: {handle}") from None

    def exists(self, handle: str) -> bool:
        with self._registry_lock:
            return handle in self._indexes


class LocalIndexProvider(IndexProvider):
    """
    Persists tenant indexes on disk under ``data_dir/<handle>/``.

    Args:
        data_dir: Root directory for tenant indexes
        kind: "hnsw" (faiss) or "flat" (numpy)
    """

    def __init__(self, data_dir: str, kind: str = "hnsw"):
        super().__init__()
        if kind not in ("hnsw", "flat"):
            raise ValueError(f"Unknown index kind: {kind}")
        self.data_dir = Path(data_dir).expanduser()
        self.kind = kind

    def _path(self, handle: str) -> Path:
        if not _HANDLE_PATTERN.match(handle or ""):
            raise ValueError(f"Invalid tenant handle: {handle!r}")
        return self.data_dir / handle

    def exists(self, handle: str) -> bool:
        path = self._path(handle)
        with self._registry_lock:
            if handle in self._indexes:
                return True
        return (path / METADATA_FILE).exists()

    def create(self, handle: str, params: Optional[HNSWParams] = None) -> None:
        path = self._path(handle)
        with self._registry_lock:
            if handle in self._indexes or (path / METADATA_FILE).exists():
                raise ValueError(f"Tenant index already exists: {handle}")
            index = _new_index(self.kind, params, storage_dir=path)
            index.save()
            self._indexes[handle] = index
        logger.info(f"Created {self.kind} index at {path}")

    def open(self, handle: str, params: Optional[HNSWParams] = None) -> VectorIndex:
        path = self._path(handle)
        with self._registry_lock:
            if handle in self._indexes:
                return self._indexes[handle]
            if not (path / METADATA_FILE).exists():
                raise KeyError(f"Unknown tenant: {handle}")
            if self.kind == "hnsw":
                index = HNSWIndex.load(path, params)
            else:
                index = FlatIndex.load(path)
            self._indexes[handle] = index
        logger.debug(f"Opened {self.kind} index at {path} ({index.size()} vectors)")
        return index


def _new_index(kind: str, params: Optional[HNSWParams] = None, storage_dir: Optional[Path] = None) -> VectorIndex:
    if kind == "hnsw":
        return HNSWIndex(params=params, storage_dir=storage_dir)
    if kind == "flat":
        return FlatIndex(storage_dir=storage_dir)
    raise ValueError(f"Unknown index kind: {kind}")


def create_index_provider(index_config) -> IndexProvider:
    """
    Create an index provider from configuration.

    Args:
        index_config: An IndexConfig

    Returns:
        ``InMemoryIndexProvider`` for backend "memory", else a ``LocalIndexProvider``
    """
    if index_config.backend == "memory":
        return InMemoryIndexProvider()
    return LocalIndexProvider(index_config.data_dir, kind=index_config.backend)
