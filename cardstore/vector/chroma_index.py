"""
Chroma-backed vector index adapter.

The collection stores the card document, its metadata and an embedding
computed locally by the configured embedding provider.
"""

from typing import Dict, List, Optional, Set

from ..core.errors import VectorIndexError
from ..util.logging import logger
from .adapter import DECK_ID_KEY, IVectorIndex
from .embeddings import IEmbeddingProvider
from .types import IndexDocument, IndexMatch


class ChromaVectorIndex(IVectorIndex):
    """IVectorIndex over a Chroma collection using cosine space."""

    def __init__(self, collection_name: str = "flashcards", path: Optional[str] = None,
                 embedding_provider: Optional[IEmbeddingProvider] = None, client=None):
        try:
            import chromadb
            from chromadb.config import Settings
        except ImportError:
            raise ImportError("chromadb not installed. Please install the 'chroma' extra.")

        if embedding_provider is None:
            from ..core.config import get_embedding_provider
            embedding_provider = get_embedding_provider()

        self.embedding_provider = embedding_provider
        self.collection_name = collection_name
        self.persistent = path is not None

        if client is not None:
            self.client = client
        elif path is not None:
            self.client = chromadb.PersistentClient(path=path, settings=Settings(anonymized_telemetry=False, allow_reset=True))
        else:
            self.client = chromadb.EphemeralClient(settings=Settings(anonymized_telemetry=False, allow_reset=True))

        self.collection = self._get_collection()
        logger.info(f"Chroma collection '{collection_name}' ready with {self.collection.count()} vectors")

    def _get_collection(self):
        return self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"}
        )

    def add(self, documents: List[IndexDocument]) -> None:
        if not documents:
            return

        try:
            embeddings = self.embedding_provider.embed_texts([doc.document for doc in documents])
            self.collection.upsert(
                ids=[doc.id for doc in documents],
                embeddings=[embedding.tolist() for embedding in embeddings],
                documents=[doc.document for doc in documents],
                metadatas=[dict(doc.metadata) for doc in documents],
            )
        except Exception as e:
            logger.log_vector_operation("add", f"{len(documents)} records", {"error": str(e)[:100]}, status="failed")
            raise VectorIndexError(f"Chroma upsert failed: {e}") from e

        logger.log_vector_operation("add", f"{len(documents)} records", {"provider": "chroma"})

    def remove_where(self, where: Dict[str, object]) -> int:
        try:
            matched = self.collection.get(where=where, include=[])
            ids = matched.get("ids") or []
            if ids:
                self.collection.delete(ids=ids)
        except Exception as e:
            logger.log_vector_operation("remove_where", str(where), {"error": str(e)[:100]}, status="failed")
            raise VectorIndexError(f"Chroma delete failed: {e}") from e

        logger.log_vector_operation("remove_where", str(where), {"provider": "chroma", "removed": len(ids)})
        return len(ids)

    def query(self, text: str, k: int, where: Optional[Dict[str, object]] = None) -> List[IndexMatch]:
        try:
            if self.collection.count() == 0:
                return []
            query_embedding = self.embedding_provider.embed_text(text)
            result = self.collection.query(
                query_embeddings=[list(query_embedding)],
                n_results=k,
                where=where or None,
                include=["metadatas", "distances"],
            )
        except Exception as e:
            logger.log_vector_operation("query", text[:50], {"error": str(e)[:100]}, status="failed")
            raise VectorIndexError(f"Chroma query failed: {e}") from e

        ids = (result.get("ids") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        return [
            IndexMatch(id=record_id, metadata=dict(metadata or {}), distance=float(distance))
            for record_id, metadata, distance in zip(ids, metadatas, distances)
        ]

    def deck_ids(self) -> Set[str]:
        try:
            stored = self.collection.get(include=["metadatas"])
        except Exception as e:
            raise VectorIndexError(f"Chroma scan failed: {e}") from e

        return {m[DECK_ID_KEY] for m in (stored.get("metadatas") or []) if m and m.get(DECK_ID_KEY)}

    def card_refs(self) -> Dict[str, str]:
        try:
            stored = self.collection.get(include=["metadatas"])
        except Exception as e:
            raise VectorIndexError(f"Chroma scan failed: {e}") from e

        return {
            record_id: (metadata or {}).get(DECK_ID_KEY) or ""
            for record_id, metadata in zip(stored.get("ids") or [], stored.get("metadatas") or [])
        }

    def count(self) -> int:
        return self.collection.count()

    def clear(self) -> None:
        try:
            self.client.delete_collection(self.collection_name)
            self.collection = self._get_collection()
        except Exception as e:
            raise VectorIndexError(f"Chroma clear failed: {e}") from e
