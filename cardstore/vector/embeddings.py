"""
Embedding providers: text in, fixed-size vector out.
"""

from abc import ABC, abstractmethod
import hashlib
import re
from typing import List

import numpy as np
from sentence_transformers import SentenceTransformer

TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        """Embed multiple texts into an array of shape (len(texts), dimension)."""
        if not texts:
            return np.zeros((0, self.get_dimension()), dtype=np.float32)
        return np.array([self.embed_text(text) for text in texts], dtype=np.float32)

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic feature-hashing embedding, no model download required.

    Each lowercase word token is hashed to a bucket and a sign; the vector is
    the L2-normalised sum. Texts sharing words land close together, which is
    enough for local development and tests.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def _bucket(self, token: str):
        digest = hashlib.md5(token.encode("utf-8")).digest()
        position = int.from_bytes(digest[:4], "little") % self.dimension
        sign = 1.0 if digest[4] & 1 else -1.0
        return position, sign

    def embed_text(self, text: str) -> List[float]:
        """Generate deterministic embedding vector from hashed tokens."""
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in TOKEN_PATTERN.findall(text.lower()):
            position, sign = self._bucket(token)
            vector[position] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()

    def get_dimension(self) -> int:
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False)
        return embedding.tolist()

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.get_dimension()), dtype=np.float32)
        return np.asarray(self.model.encode(texts, convert_to_tensor=False), dtype=np.float32)

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension
