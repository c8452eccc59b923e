"""
Vector stores: nearest-neighbour lookup over embeddings with exact-match metadata filters.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import numpy as np

from .types import QueryResult, VectorRecord, matches_filter


class IVectorStore(ABC):
    """Abstract interface for vector storage operations."""

    @abstractmethod
    def add(self, record: VectorRecord) -> None:
        """Add or replace a single vector record."""
        pass

    @abstractmethod
    def batch_add(self, records: List[VectorRecord]) -> None:
        """Add or replace multiple vector records."""
        pass

    @abstractmethod
    def search(self, query_vector: np.ndarray, top_k: int = 5,
               where: Optional[Dict[str, object]] = None) -> List[QueryResult]:
        """Search for similar vectors and return results ranked by descending similarity."""
        pass

    @abstractmethod
    def delete(self, record_id: str) -> None:
        """Delete a vector record by ID. Unknown ids are ignored."""
        pass

    @abstractmethod
    def delete_where(self, where: Dict[str, object]) -> int:
        """Delete every record whose metadata matches ``where``. Returns the number removed."""
        pass

    @abstractmethod
    def metadata(self) -> Dict[str, Dict[str, object]]:
        """Map of record id to metadata for every stored record."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of stored records."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all records from the store."""
        pass


def normalize(vector) -> Optional[np.ndarray]:
    """L2-normalise a vector; zero or empty vectors yield None."""
    array = np.asarray(vector, dtype=np.float32).reshape(-1)
    if array.size == 0:
        return None
    norm = np.linalg.norm(array)
    if norm == 0:
        return None
    return array / norm


class SimpleInMemoryVectorStore(IVectorStore):
    """Simple in-memory implementation of IVectorStore using cosine similarity."""

    def __init__(self):
        self._vectors: Dict[str, VectorRecord] = {}  # record_id -> VectorRecord
        self._index: Dict[str, np.ndarray] = {}      # record_id -> normalized vector

    def add(self, record: VectorRecord) -> None:
        """Add or replace a single vector record."""
        normalized = normalize(record.vector) if record.vector is not None else None
        if normalized is None:
            # Nothing searchable; drop any previous version
            self.delete(record.id)
            return

        self._vectors[record.id] = record
        self._index[record.id] = normalized

    def batch_add(self, records: List[VectorRecord]) -> None:
        for record in records:
            self.add(record)

    def search(self, query_vector: np.ndarray, top_k: int = 5,
               where: Optional[Dict[str, object]] = None) -> List[QueryResult]:
        """Search for similar vectors and return ranked results."""
        if not self._index or top_k <= 0:
            return []

        normalized_query = normalize(query_vector)
        if normalized_query is None:
            return []

        candidates = []
        for record_id, stored_vector in self._index.items():
            record = self._vectors[record_id]
            if not matches_filter(record.metadata, where):
                continue
            similarity = float(np.dot(normalized_query, stored_vector))
            candidates.append((record_id, similarity))

        # Stable sort keeps insertion order among equal similarities
        candidates.sort(key=lambda item: item[1], reverse=True)

        return [
            QueryResult(id=record_id, score=score, metadata=self._vectors[record_id].metadata)
            for record_id, score in candidates[:top_k]
        ]

    def delete(self, record_id: str) -> None:
        self._vectors.pop(record_id, None)
        self._index.pop(record_id, None)

    def delete_where(self, where: Dict[str, object]) -> int:
        doomed = [record_id for record_id, record in self._vectors.items()
                  if matches_filter(record.metadata, where)]
        for record_id in doomed:
            self.delete(record_id)
        return len(doomed)

    def metadata(self) -> Dict[str, Dict[str, object]]:
        return {record_id: record.metadata for record_id, record in self._vectors.items()}

    def count(self) -> int:
        return len(self._vectors)

    def clear(self) -> None:
        self._vectors.clear()
        self._index.clear()
