"""
Text encoders. Semantic vectors with sentence-transformers, plus a deterministic
token-hash provider for offline tests and development.
"""

from abc import ABC, abstractmethod
from functools import lru_cache
import hashlib
import re
import threading
from typing import List, Optional

import numpy as np
from sentence_transformers import SentenceTransformer

from ..core.errors import (
    DimensionMismatchError,
    EncodingFailure,
    InvalidInputError,
    PlaceFinderError,
)
from .types import as_vector

_TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)
TOKEN_CACHE_SIZE = 65536


@lru_cache(maxsize=TOKEN_CACHE_SIZE)
def token_vector(token: str, dimension: int) -> np.ndarray:
    """Pseudo-random unit vector seeded from the token hash. Shared and read-only."""
    seed = int.from_bytes(hashlib.md5(token.encode("utf-8")).digest()[:8], "little")
    vector = np.random.default_rng(seed).standard_normal(dimension)
    vector /= np.linalg.norm(vector)
    vector.flags.writeable = False
    return vector


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass

    def load(self) -> None:
        """Load model state ahead of the first request. No-op by default."""
        pass

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_text(text) for text in texts]


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic token-hash embedding provider for testing purposes.

    Each token is mapped to a pseudo-random unit vector seeded from its hash;
    the text vector is the mean of its token vectors, L2-normalized. Texts
    sharing words therefore score higher than unrelated texts, which is enough
    to exercise ranking without downloading a model.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def embed_text(self, text: str) -> List[float]:
        """Mean-pool the token vectors and normalize."""
        tokens = _TOKEN_PATTERN.findall(text.lower())
        if not tokens:
            # Punctuation-only text still gets a stable vector
            tokens = [text.strip()]

        pooled = np.mean([token_vector(token, self.dimension) for token in tokens], axis=0)
        norm = np.linalg.norm(pooled)
        if norm > 0:
            pooled = pooled / norm
        return pooled.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Uses all-MiniLM-L6-v2 by default, which mean-pools token embeddings;
    outputs are L2-normalized at encode time.
    """

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2", device: Optional[str] = None):
        self.model_name = model_name
        self.device = device
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            self._model = SentenceTransformer(self.model_name, device=self.device)
        return self._model

    def load(self) -> None:
        self.model

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        return embedding.tolist()

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        embeddings = self.model.encode(list(texts), convert_to_numpy=True, normalize_embeddings=True)
        return embeddings.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension


class TextEncoder:
    """
    Shared text encoder handed out by the encoder cache.

    Validates input, enforces the dimension and unit-norm invariants on every
    output vector, and translates provider errors into EncodingFailure.
    """

    def __init__(self, provider: IEmbeddingProvider, dimension: int, model_version: str,
                 serialize_inference: bool = True):
        self.provider = provider
        self.dimension = dimension
        self.model_version = model_version
        self._inference_lock = threading.Lock() if serialize_inference else None

    def warm_up(self) -> None:
        """Load the model and check its output dimension."""
        try:
            self.provider.load()
        except Exception as e:
            raise EncodingFailure(f"Failed to load encoder model {self.model_version}: {e}") from e
        self.encode("warm up")

    def _embed(self, texts: List[str]) -> List[List[float]]:
        try:
            if self._inference_lock is None:
                return self.provider.embed_texts(texts)
            with self._inference_lock:
                return self.provider.embed_texts(texts)
        except PlaceFinderError:
            raise
        except Exception as e:
            raise EncodingFailure(f"Inference failed: {e}") from e

    def _finish(self, raw) -> np.ndarray:
        vector = np.asarray(raw, dtype=np.float64).reshape(-1)
        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector))
        if not np.all(np.isfinite(vector)):
            raise EncodingFailure("Encoder produced non-finite values")

        norm = np.linalg.norm(vector)
        if norm == 0:
            raise EncodingFailure("Encoder produced a zero vector")
        return as_vector(vector / norm)

    @staticmethod
    def _check_text(text) -> None:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInputError("Cannot encode empty text")

    def encode(self, text: str) -> np.ndarray:
        """Encode text into a unit-length vector of the configured dimension."""
        self._check_text(text)
        return self._finish(self._embed([text])[0])

    def encode_batch(self, texts: List[str]) -> List[np.ndarray]:
        """Encode several texts in one inference call."""
        for text in texts:
            self._check_text(text)
        if not texts:
            return []

        raw = self._embed(list(texts))
        if len(raw) != len(texts):
            raise EncodingFailure(f"Encoder returned {len(raw)} vectors for {len(texts)} texts")
        return [self._finish(item) for item in raw]
