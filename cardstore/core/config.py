"""
Environment-driven configuration for the relational store, the vector index and reconciliation.
"""

import os
from pathlib import Path

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/cardstore.db")

# Debug flag exposes /docs and /debug
DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Vector index configuration
VECTOR_PROVIDER = os.getenv("VECTOR_PROVIDER", "memory")  # memory|faiss|chroma
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "all-MiniLM-L6-v2")
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))
CHROMA_PATH = os.getenv("CHROMA_PATH")  # in-process client when unset
VECTOR_COLLECTION = os.getenv("VECTOR_COLLECTION", "flashcards")

# Bounded retry for vector index calls
INDEX_RETRY_ATTEMPTS = int(os.getenv("INDEX_RETRY_ATTEMPTS", "3"))
INDEX_RETRY_DELAY_SEC = float(os.getenv("INDEX_RETRY_DELAY_SEC", "0.2"))

# Search defaults
DEFAULT_SEARCH_K = int(os.getenv("DEFAULT_SEARCH_K", "10"))

# Card listing limits
DEFAULT_CARD_LIMIT = 50
MAX_CARD_LIMIT = 200

# Reconciliation heartbeat (default disabled)
RECONCILE_ENABLED = os.getenv("RECONCILE_ENABLED", "false").lower() == "true"
RECONCILE_INTERVAL_SEC = int(os.getenv("RECONCILE_INTERVAL_SEC", "300"))
REBUILD_ON_STARTUP = os.getenv("REBUILD_ON_STARTUP", "true").lower() == "true"

VALID_VECTOR_PROVIDERS = ("memory", "faiss", "chroma")
VALID_EMBED_PROVIDERS = ("hash", "sentence")

# Version string
VERSION = "1.0.0"


def get_embedding_provider():
    """Get configured embedding provider implementation."""
    from ..vector.embeddings import DeterministicHashEmbedding, SentenceTransformerEmbedding

    if EMBED_PROVIDER == "sentence":
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME)
    return DeterministicHashEmbedding(EMBED_DIM)


def get_vector_store(dimension: int):
    """Get configured vector store for the embedding-backed index."""
    if VECTOR_PROVIDER == "faiss":
        from ..vector.faiss_store import FaissVectorStore
        return FaissVectorStore(dimension=dimension)

    from ..vector.index import SimpleInMemoryVectorStore
    return SimpleInMemoryVectorStore()


def get_vector_index():
    """Build the configured vector index adapter. Called once at process start."""
    if VECTOR_PROVIDER == "chroma":
        from ..vector.chroma_index import ChromaVectorIndex
        return ChromaVectorIndex(collection_name=VECTOR_COLLECTION, path=CHROMA_PATH)

    from ..vector.adapter import EmbeddingVectorIndex
    embedding_provider = get_embedding_provider()
    vector_store = get_vector_store(embedding_provider.get_dimension())
    return EmbeddingVectorIndex(vector_store, embedding_provider)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def is_reconcile_enabled():
    """Check if the reconciliation heartbeat should run inside the API process."""
    return RECONCILE_ENABLED


def get_reconcile_interval():
    """Get reconciliation interval in seconds."""
    return RECONCILE_INTERVAL_SEC


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if VECTOR_PROVIDER not in VALID_VECTOR_PROVIDERS:
        issues.append(f"Invalid VECTOR_PROVIDER: {VECTOR_PROVIDER}")

    if EMBED_PROVIDER not in VALID_EMBED_PROVIDERS:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if INDEX_RETRY_ATTEMPTS < 1:
        issues.append("INDEX_RETRY_ATTEMPTS must be >= 1")

    if INDEX_RETRY_DELAY_SEC < 0:
        issues.append("INDEX_RETRY_DELAY_SEC must be >= 0")

    if DEFAULT_SEARCH_K < 1:
        issues.append("DEFAULT_SEARCH_K must be >= 1")

    if RECONCILE_INTERVAL_SEC < 1:
        issues.append("RECONCILE_INTERVAL_SEC must be >= 1")

    return issues
