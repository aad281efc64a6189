"""
Embedding module for Jarvis search.

Uses sentence-transformers to convert text into vector embeddings, plus the
vector math the search engine relies on.
"""

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

import numpy as np

from config import settings

logger = logging.getLogger(__name__)


class ProviderUnavailableError(RuntimeError):
    """Raised when no embedding provider can serve requests."""


class EmbeddingProvider(Protocol):
    def embed(self, text: str) -> Sequence[float]: ...


class Embedder:
    """Handles text embedding using sentence-transformers."""

    def __init__(self, model_name: Optional[str] = None):
        """
        Initialize the embedder.

        Args:
            model_name: Name of the sentence-transformers model to use.
                       Defaults to the `embed_model` setting.
        """
        self.model_name = model_name or settings.embed_model
        self.model = None
        self.embedding_dim = 384  # common for many small ST models; refined after load

    def load_model(self):
        """Lazy load the sentence-transformers model."""
        if self.model is not None:
            return
        try:
            logger.info("Loading sentence-transformers model: %s", self.model_name)
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ProviderUnavailableError(
                "sentence-transformers is required for embeddings. "
                f"Install it and ensure model '{self.model_name}' is available. Reason: {e}"
            ) from e

        try:
            self.model = SentenceTransformer(self.model_name)
            test_embedding = self.model.encode(["test"])
            self.embedding_dim = test_embedding.shape[1]
            logger.info("Model loaded. Embedding dimension: %d", self.embedding_dim)
        except Exception as e:
            self.model = None
            raise ProviderUnavailableError(
                f"Failed to load sentence-transformers model '{self.model_name}': {e}"
            ) from e

    def embed(self, text: str) -> List[float]:
        """
        Convert text to embedding vector.

        Args:
            text: Text to embed

        Returns:
            List of floats representing the embedding vector
        """
        self.load_model()

        if not text or not text.strip():
            return [0.0] * self.embedding_dim

        try:
            embedding = self.model.encode([text], convert_to_numpy=True)
            return embedding[0].tolist()
        except Exception as e:
            raise RuntimeError(f"Embedding failed: {e}") from e

    def get_embedding_dim(self) -> int:
        """Get the dimension of embedding vectors."""
        self.load_model()
        return self.embedding_dim


def normalize_vector(vector: Sequence[float]) -> np.ndarray:
    """
    Normalize a vector to unit L2 length.

    A zero vector is returned unchanged.
    """
    v = np.asarray(vector, dtype=np.float32)
    norm = np.linalg.norm(v)

    if norm == 0:
        return v

    return v / norm


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Similarity of two unit vectors: their dot product.

    Both vectors are expected to be normalized already.
    """
    if len(vec1) != len(vec2):
        raise ValueError(f"Vector dimensions don't match: {len(vec1)} vs {len(vec2)}")
    return float(np.dot(np.asarray(vec1, dtype=np.float64), np.asarray(vec2, dtype=np.float64)))


def mean_embedding(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Component-wise mean of the vectors, not renormalized."""
    return np.mean(np.asarray(vectors, dtype=np.float64), axis=0)


async def embed_normalized(provider: Optional[EmbeddingProvider], text: str) -> np.ndarray:
    """Embed ``text`` in a worker thread and return the unit-normalized vector."""
    if provider is None:
        raise ProviderUnavailableError("No embedding provider is loaded")
    vector = await asyncio.to_thread(provider.embed, text)
    return normalize_vector(vector)
