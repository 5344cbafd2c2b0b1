"""
Embedding engine for semantic memory.

Converts text to fixed-length, mean-pooled, L2-normalized vectors. The
engine owns one backend (model) per process; the model is loaded lazily
on first use and shared by every tenant.
"""

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..config import load_config
from ..errors import InitializationError, MemvaultError, ShapeError, ValidationError, wrap_error
from ..observability import preview
from .singleflight import SingleFlight
from .types import EmbeddingResult, TensorOutput

logger = logging.getLogger(__name__)


DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class EmbeddingBackend(ABC):
    """Abstract base class for embedding backends."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Identifier of the underlying model."""
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Declared embedding dimension; only meaningful once loaded."""
        pass

    @abstractmethod
    def load(self) -> None:
        """
        Load the model.

        Blocking; the engine runs it in an executor.
        """
        pass

    @abstractmethod
    def embed(self, texts: Sequence[str], pooling: str = "mean", normalize: bool = True) -> TensorOutput:
        """
        Embed a batch of texts.

        Args:
            texts: Texts to embed
            pooling: Token pooling strategy
            normalize: Whether to L2-normalize each vector

        Returns:
            Flat tensor output with its shape
        """
        pass


class SentenceTransformerBackend(EmbeddingBackend):
    """
    Sentence-transformers based embedding backend.

    Provides high-quality semantic embeddings using pre-trained
    transformer models. The model is downloaded on first load and
    used offline afterwards.
    """

    def __init__(self, model_name: Optional[str] = None, device: Optional[str] = None):
        """
        Initialize with a sentence-transformers model name.

        Args:
            model_name: Name of the model to use. Defaults to MiniLM.
            device: Torch device, or None to let the library choose
        """
        self.model_name = model_name or DEFAULT_MODEL
        self.device = device
        self._model = None
        self._dimension = 0

    @property
    def model_id(self) -> str:
        return self.model_name

    @property
    def dimension(self) -> int:
        return self._dimension

    def load(self) -> None:
        """Load the model and read its declared dimension."""
        from sentence_transformers import SentenceTransformer

        self._model = SentenceTransformer(self.model_name, device=self.device)
        self._dimension = int(self._model.get_sentence_embedding_dimension() or 0)
        logger.info(f"Loaded embedding model: {self.model_name} ({self._dimension} dimensions)")

    def embed(self, texts: Sequence[str], pooling: str = "mean", normalize: bool = True) -> TensorOutput:
        """Generate embeddings using sentence-transformers."""
        if self._model is None:
            raise RuntimeError("Embedding model is not loaded")
        # Pooling is part of the model definition; MiniLM pools by mean
        embeddings = self._model.encode(
            list(texts),
            convert_to_numpy=True,
            normalize_embeddings=normalize,
        )
        embeddings = np.asarray(embeddings, dtype=np.float32)
        return TensorOutput(data=embeddings.ravel(), dims=tuple(int(d) for d in embeddings.shape))


class HashingBackend(EmbeddingBackend):
    """
    Hashed bag-of-words embedding backend.

    A lightweight alternative that needs no model download. Each word is
    hashed to a bucket with a hashed sign, so equal texts always map to
    equal vectors and texts sharing words land close together.
    """

    def __init__(self, dimension: int = 384):
        """
        Initialize the backend.

        Args:
            dimension: Embedding vector dimension
        """
        self._dimension = dimension

    @property
    def model_id(self) -> str:
        return f"hashing-{self._dimension}"

    @property
    def dimension(self) -> int:
        return self._dimension

    def load(self) -> None:
        if self._dimension <= 0:
            raise ValueError(f"Invalid embedding dimension: {self._dimension}")

    def embed(self, texts: Sequence[str], pooling: str = "mean", normalize: bool = True) -> TensorOutput:
        """Generate hashed embeddings for a batch of texts."""
        matrix = np.zeros((len(texts), self._dimension), dtype=np.float32)
        for row, text in enumerate(texts):
            matrix[row] = self._embed_one(text, normalize)
        return TensorOutput(data=matrix.ravel(), dims=(len(texts), self._dimension))

    def _embed_one(self, text: str, normalize: bool) -> np.ndarray:
        vector = np.zeros(self._dimension, dtype=np.float32)
        words = self._tokenize(text)
        if not words:
            return vector

        for word in words:
            word_hash = int(hashlib.md5(word.encode()).hexdigest(), 16)
            index = word_hash % self._dimension

            # Use a second hash for the sign
            sign_hash = int(hashlib.sha256(word.encode()).hexdigest(), 16)
            sign = 1.0 if sign_hash % 2 == 0 else -1.0

            # Mean pooling over words
            vector[index] += sign / len(words)

        if normalize:
            norm = float(np.linalg.norm(vector))
            if norm > 0:
                vector /= norm
        return vector

    def _tokenize(self, text: str) -> List[str]:
        """Lowercase and split on non-alphanumerics, dropping very short words."""
        words = []
        current = []
        for char in text.lower():
            if char.isalnum():
                current.append(char)
            elif current:
                words.append(''.join(current))
                current = []
        if current:
            words.append(''.join(current))
        return [w for w in words if len(w) > 2]


def create_backend(embedding_config) -> EmbeddingBackend:
    """
    Create an embedding backend from configuration.

    Args:
        embedding_config: An EmbeddingConfig

    Returns:
        The configured backend (not yet loaded)
    """
    backend = embedding_config.backend.lower()
    if backend in ("sentence-transformers", "sentence_transformers"):
        return SentenceTransformerBackend(embedding_config.model, device=embedding_config.device)
    if backend == "hashing":
        return HashingBackend(embedding_config.dimension)
    raise ValueError(f"Unknown embedding backend: {embedding_config.backend}")


class EmbeddingEngine:
    """
    Process-wide text embedding engine.

    The model loads lazily: the first call to ``embed``/``embed_batch``
    (or ``ensure_ready``) starts the load, concurrent callers share it, and
    a failed load is retried on the next call.

    Example:
        >>> engine = EmbeddingEngine(HashingBackend(dimension=64))
        >>> result = await engine.embed("User prefers dark mode")
        >>> result.dimensions
        64
    """

    def __init__(self, backend: EmbeddingBackend):
        """
        Initialize the engine.

        Args:
            backend: Embedding backend; loaded on first use
        """
        self.backend = backend
        self._loader: SingleFlight[EmbeddingBackend] = SingleFlight(
            self._load, name=f"embedding-model:{backend.model_id}"
        )

    @property
    def is_ready(self) -> bool:
        """Whether the model has been loaded."""
        return self._loader.is_ready

    @property
    def model_id(self) -> str:
        return self.backend.model_id

    @property
    def dimension(self) -> int:
        return self.backend.dimension if self.is_ready else 0

    async def _load(self) -> EmbeddingBackend:
        logger.info(f"Loading embedding model: {self.backend.model_id}")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.backend.load)
        except Exception as e:
            logger.error(f"Embedding model initialization failed: {e}")
            raise InitializationError("Failed to initialize embedding model", cause=e) from e

        if self.backend.dimension <= 0:
            raise InitializationError(
                f"Embedding model declared invalid dimension: {self.backend.dimension}"
            )
        logger.info(f"Embedding model ready: {self.backend.model_id}")
        return self.backend

    async def ensure_ready(self) -> None:
        """
        Load the model if it is not loaded yet.

        Raises:
            InitializationError: If loading fails; a later call retries
        """
        await self._loader.get_or_init()

    async def embed(self, text: str) -> EmbeddingResult:
        """
        Embed a single text.

        Args:
            text: Non-empty text

        Returns:
            Normalized, mean-pooled embedding

        Raises:
            ValidationError: If text is empty
            ShapeError: If the backend returns a vector of the wrong size
        """
        _require_text(text)
        logger.debug(f"Embedding text: \"{preview(text)}\"")
        results = await self._embed_checked([text])
        return results[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[EmbeddingResult]:
        """
        Embed several texts in one backend call.

        Args:
            texts: Non-empty texts

        Returns:
            One result per text, in input order

        Raises:
            ValidationError: If any text is empty
            ShapeError: If the backend tensor does not match the batch
        """
        texts = list(texts)
        if not texts:
            return []
        for text in texts:
            _require_text(text)
        logger.info(f"Embedding {len(texts)} texts (batch)")
        return await self._embed_checked(texts)

    async def _embed_checked(self, texts: List[str]) -> List[EmbeddingResult]:
        await self.ensure_ready()

        loop = asyncio.get_running_loop()
        try:
            output = await loop.run_in_executor(
                None, lambda: self.backend.embed(texts, pooling="mean", normalize=True)
            )
        except Exception as e:
            raise wrap_error("Failed to generate embeddings", e) from e

        vectors = self._split(output, len(texts))
        logger.debug(f"Generated {len(vectors)} embeddings of {self.backend.dimension} dimensions")
        return [
            EmbeddingResult(vector=vector, dimensions=len(vector), model_id=self.backend.model_id)
            for vector in vectors
        ]

    def _split(self, output: TensorOutput, count: int) -> List[List[float]]:
        """Check a backend tensor against the batch and split it into rows."""
        dims = tuple(output.dims)
        if len(dims) not in (1, 2):
            raise ShapeError(f"Unexpected tensor rank {len(dims)} with dims {list(dims)}")

        dimension = dims[-1]
        if dimension <= 0:
            raise ShapeError(f"Invalid embedding dimension: {dimension}")
        if dimension != self.backend.dimension:
            raise ShapeError(
                f"Embedding dimension mismatch: expected {self.backend.dimension} but got {dimension}"
            )

        if len(dims) == 1:
            if count != 1:
                raise ShapeError(f"Expected 1 text for a rank-1 tensor, got {count} texts")
        elif dims[0] != count:
            raise ShapeError(f"Batch dimension mismatch: expected {count} but got {dims[0]}")

        data = np.asarray(output.data, dtype=np.float32).ravel()
        if data.size != count * dimension:
            raise ShapeError(
                f"Tensor holds {data.size} values, expected {count} x {dimension}"
            )

        return [row.tolist() for row in data.reshape(count, dimension)]

    def info(self) -> Dict[str, Any]:
        """Describe the engine without triggering a model load."""
        return {
            "model": self.backend.model_id,
            "is_initialized": self.is_ready,
            "dimension": self.dimension,
        }


def _require_text(text: str) -> None:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Text to embed must be a non-empty string")


_engine: Optional[EmbeddingEngine] = None


def get_embedding_engine(config=None) -> EmbeddingEngine:
    """
    Get the process-wide embedding engine, creating it if needed.

    Args:
        config: Optional MemvaultConfig; loaded from the usual sources when omitted

    Returns:
        The shared engine
    """
    global _engine
    if _engine is None:
        if config is None:
            config = load_config()
        try:
            backend = create_backend(config.embedding)
        except ValueError as e:
            raise MemvaultError("Invalid embedding configuration", cause=e) from e
        _engine = EmbeddingEngine(backend)
    return _engine


def set_embedding_engine(engine: Optional[EmbeddingEngine]) -> None:
    """Replace the process-wide embedding engine (None clears it)."""
    global _engine
    _engine = engine
