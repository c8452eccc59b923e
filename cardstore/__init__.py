"""
Flashcard deck storage with semantic retrieval.
SQLite is the canonical store; the vector index is a searchable overlay kept in sync by the coordinator.
"""

__version__ = "1.0.0"
