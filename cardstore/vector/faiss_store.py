"""
FAISS-backed vector store with upsert and delete-by-filter.
"""

from typing import Dict, List, Optional

import faiss
import numpy as np

from .index import IVectorStore, normalize
from .types import QueryResult, VectorRecord, matches_filter


class FaissVectorStore(IVectorStore):
    """FAISS-backed implementation of IVectorStore.

    Vectors live in an ``IndexIDMap2`` over a flat inner-product index, so
    records can be removed by their numeric FAISS id. Inner product over
    normalised vectors is cosine similarity. Metadata is kept alongside in
    Python since FAISS stores vectors only.
    """

    def __init__(self, dimension: int = 384):
        """
        Initialize FAISS vector store.

        Args:
            dimension: Dimension of the vectors (default: 384 for hash embeddings)
        """
        self.dimension = dimension
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))

        # Record id <-> FAISS int64 id
        self.id_to_vector_index: Dict[str, int] = {}
        self.vector_id_map: Dict[int, str] = {}
        self.metadata_by_id: Dict[str, Dict[str, object]] = {}
        self.next_vector_index = 0

    def _prepare(self, record: VectorRecord) -> Optional[np.ndarray]:
        if record.vector is None or len(record.vector) == 0:
            return None

        if len(record.vector) != self.dimension:
            raise ValueError(f"Vector dimension {len(record.vector)} does not match expected dimension {self.dimension}")

        return normalize(record.vector)

    def add(self, record: VectorRecord) -> None:
        """Add or replace a single vector record."""
        self.batch_add([record])

    def batch_add(self, records: List[VectorRecord]) -> None:
        """Add or replace multiple vector records in one FAISS call."""
        if not records:
            return

        # Last write wins when the same id appears twice in one batch
        latest: Dict[str, VectorRecord] = {}
        for record in records:
            latest[record.id] = record

        vectors_to_add = []
        numeric_ids = []
        for record in latest.values():
            normalized = self._prepare(record)
            self.delete(record.id)
            if normalized is None:
                continue

            vector_index = self.next_vector_index
            self.next_vector_index += 1

            vectors_to_add.append(normalized)
            numeric_ids.append(vector_index)
            self.id_to_vector_index[record.id] = vector_index
            self.vector_id_map[vector_index] = record.id
            self.metadata_by_id[record.id] = record.metadata

        if not vectors_to_add:
            return

        batch_vectors = np.vstack(vectors_to_add).astype(np.float32)
        self.index.add_with_ids(batch_vectors, np.array(numeric_ids, dtype=np.int64))

    def search(self, query_vector: np.ndarray, top_k: int = 5,
               where: Optional[Dict[str, object]] = None) -> List[QueryResult]:
        """Search for similar vectors and return ranked results."""
        if not self.index.ntotal or top_k <= 0:
            return []

        normalized_query = normalize(query_vector)
        if normalized_query is None:
            return []

        query_array = normalized_query.astype(np.float32).reshape(1, -1)

        # FAISS cannot filter on metadata; scan everything when a filter is given
        n_results = self.index.ntotal if where else min(top_k, self.index.ntotal)
        scores, indices = self.index.search(query_array, n_results)

        query_results = []
        for score, vector_index in zip(scores[0], indices[0].tolist()):
            if vector_index == -1 or vector_index not in self.vector_id_map:
                continue
            record_id = self.vector_id_map[vector_index]
            metadata = self.metadata_by_id.get(record_id, {})
            if not matches_filter(metadata, where):
                continue

            query_results.append(QueryResult(id=record_id, score=float(score), metadata=metadata))
            if len(query_results) >= top_k:
                break

        return query_results

    def delete(self, record_id: str) -> None:
        vector_index = self.id_to_vector_index.pop(record_id, None)
        self.metadata_by_id.pop(record_id, None)
        if vector_index is None:
            return

        self.vector_id_map.pop(vector_index, None)
        self.index.remove_ids(np.array([vector_index], dtype=np.int64))

    def delete_where(self, where: Dict[str, object]) -> int:
        doomed = [record_id for record_id, metadata in self.metadata_by_id.items()
                  if matches_filter(metadata, where)]
        if not doomed:
            return 0

        numeric_ids = [self.id_to_vector_index.pop(record_id) for record_id in doomed]
        for record_id, vector_index in zip(doomed, numeric_ids):
            self.metadata_by_id.pop(record_id, None)
            self.vector_id_map.pop(vector_index, None)

        self.index.remove_ids(np.array(numeric_ids, dtype=np.int64))
        return len(doomed)

    def metadata(self) -> Dict[str, Dict[str, object]]:
        return dict(self.metadata_by_id)

    def count(self) -> int:
        return int(self.index.ntotal)

    def clear(self) -> None:
        """Clear all records from the FAISS store."""
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))
        self.id_to_vector_index.clear()
        self.vector_id_map.clear()
        self.metadata_by_id.clear()
        self.next_vector_index = 0
