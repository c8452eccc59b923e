"""
Vector index adapter: semantic nearest-neighbour lookup with exact-match metadata filtering.

This layer carries no business logic. It embeds documents, stores them
keyed by card id, deletes by metadata filter and answers ranked queries
where a lower distance means more similar.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set

import numpy as np

from ..core.errors import VectorIndexError
from ..util.logging import logger
from .embeddings import IEmbeddingProvider
from .index import IVectorStore
from .types import IndexDocument, IndexMatch, VectorRecord

DECK_ID_KEY = "deckId"
CARD_ID_KEY = "cardId"


def card_document(question: str, answer: str) -> str:
    """Text that gets embedded for a card."""
    return f"{question}\n{answer}"


def card_metadata(card_id: str, deck_id: str, question: str, answer: str,
                  source: Optional[str] = None) -> Dict[str, object]:
    """Filterable/returnable metadata stored with each vector record."""
    metadata: Dict[str, object] = {
        CARD_ID_KEY: card_id,
        DECK_ID_KEY: deck_id,
        "question": question,
        "answer": answer,
    }
    if source is not None:
        metadata["source"] = source
    return metadata


def build_documents(deck_id: str, cards, source: Optional[str] = None) -> List[IndexDocument]:
    """Project cards (anything with id/question/answer attributes) to index documents."""
    return [
        IndexDocument(
            id=card.id,
            document=card_document(card.question, card.answer),
            metadata=card_metadata(card.id, deck_id, card.question, card.answer, source),
        )
        for card in cards
    ]


class IVectorIndex(ABC):
    """Abstract interface to the external semantic index."""

    persistent = False
    """Whether records survive a process restart."""

    @abstractmethod
    def add(self, documents: List[IndexDocument]) -> None:
        """Upsert documents by id."""
        pass

    @abstractmethod
    def remove_where(self, where: Dict[str, object]) -> int:
        """Delete every record whose metadata matches ``where``. Idempotent."""
        pass

    @abstractmethod
    def query(self, text: str, k: int, where: Optional[Dict[str, object]] = None) -> List[IndexMatch]:
        """Up to ``k`` nearest matches to ``text``, restricted to ``where`` when given."""
        pass

    @abstractmethod
    def deck_ids(self) -> Set[str]:
        """Every deck id referenced by a stored record."""
        pass

    @abstractmethod
    def card_refs(self) -> Dict[str, str]:
        """Map every stored record id to the deck id it is tagged with."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class EmbeddingVectorIndex(IVectorIndex):
    """Index adapter over a local :class:`IVectorStore` and an embedding provider."""

    def __init__(self, vector_store: IVectorStore, embedding_provider: IEmbeddingProvider):
        self.vector_store = vector_store
        self.embedding_provider = embedding_provider
        self._lock = threading.RLock()

    @property
    def provider_name(self) -> str:
        return self.vector_store.__class__.__name__

    def add(self, documents: List[IndexDocument]) -> None:
        if not documents:
            return

        try:
            embeddings = self.embedding_provider.embed_texts([doc.document for doc in documents])
            records = [
                VectorRecord(id=doc.id, vector=np.asarray(embedding, dtype=np.float32), metadata=dict(doc.metadata))
                for doc, embedding in zip(documents, embeddings)
            ]
            with self._lock:
                self.vector_store.batch_add(records)
        except Exception as e:
            logger.log_vector_operation("add", f"{len(documents)} records", {"error": str(e)[:100]}, status="failed")
            raise VectorIndexError(f"Vector index add failed: {e}") from e

        logger.log_vector_operation("add", f"{len(documents)} records", {
            "provider": self.provider_name,
            "dimension": self.embedding_provider.get_dimension(),
        })

    def remove_where(self, where: Dict[str, object]) -> int:
        try:
            with self._lock:
                removed = self.vector_store.delete_where(where)
        except Exception as e:
            logger.log_vector_operation("remove_where", str(where), {"error": str(e)[:100]}, status="failed")
            raise VectorIndexError(f"Vector index delete failed: {e}") from e

        logger.log_vector_operation("remove_where", str(where), {"provider": self.provider_name, "removed": removed})
        return removed

    def query(self, text: str, k: int, where: Optional[Dict[str, object]] = None) -> List[IndexMatch]:
        try:
            query_vector = np.asarray(self.embedding_provider.embed_text(text), dtype=np.float32)
            with self._lock:
                results = self.vector_store.search(query_vector, top_k=k, where=where)
        except Exception as e:
            logger.log_vector_operation("query", text[:50], {"error": str(e)[:100]}, status="failed")
            raise VectorIndexError(f"Vector index query failed: {e}") from e

        # Cosine distance
        return [IndexMatch(id=r.id, metadata=dict(r.metadata), distance=1.0 - float(r.score)) for r in results]

    def deck_ids(self) -> Set[str]:
        with self._lock:
            metadata = self.vector_store.metadata()
        return {m[DECK_ID_KEY] for m in metadata.values() if m.get(DECK_ID_KEY)}

    def card_refs(self) -> Dict[str, str]:
        with self._lock:
            metadata = self.vector_store.metadata()
        return {record_id: m.get(DECK_ID_KEY) or "" for record_id, m in metadata.items()}

    def count(self) -> int:
        with self._lock:
            return self.vector_store.count()

    def clear(self) -> None:
        try:
            with self._lock:
                self.vector_store.clear()
        except Exception as e:
            raise VectorIndexError(f"Vector index clear failed: {e}") from e
