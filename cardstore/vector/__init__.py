"""
Vector index overlay - searchable, non-canonical projection of the SQLite flashcards.
"""

from .index import IVectorStore, SimpleInMemoryVectorStore
from .faiss_store import FaissVectorStore
from .types import VectorRecord, QueryResult, IndexDocument, IndexMatch
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding
from .adapter import IVectorIndex, EmbeddingVectorIndex, build_documents, card_document, card_metadata

__all__ = [
    'IVectorStore',
    'SimpleInMemoryVectorStore',
    'FaissVectorStore',
    'VectorRecord',
    'QueryResult',
    'IndexDocument',
    'IndexMatch',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'IVectorIndex',
    'EmbeddingVectorIndex',
    'build_documents',
    'card_document',
    'card_metadata',
]
