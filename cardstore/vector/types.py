"""
Records exchanged with the vector index.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np


@dataclass
class VectorRecord:
    """Represents a vector record with metadata."""

    id: str
    """Unique identifier, the flashcard id"""

    vector: Optional[np.ndarray]
    """The embedding of question + answer"""

    metadata: Dict[str, object]
    """Filterable metadata: cardId, deckId, question, answer, source"""


@dataclass
class QueryResult:
    """Represents a search result from a vector store."""

    id: str
    """Identifier for the matching record"""

    score: float
    """Cosine similarity of the match"""

    metadata: Dict[str, object]
    """Metadata associated with the matched record"""


@dataclass
class IndexDocument:
    """A card as handed to the vector index adapter."""

    id: str
    document: str
    metadata: Dict[str, object] = field(default_factory=dict)


@dataclass
class IndexMatch:
    """A ranked match from the vector index adapter. Lower distance means more similar."""

    id: str
    metadata: Dict[str, object]
    distance: float


def matches_filter(metadata: Dict[str, object], where: Optional[Dict[str, object]]) -> bool:
    """Exact-match metadata filter: every key in ``where`` must equal the stored value."""
    if not where:
        return True
    return all(metadata.get(key) == value for key, value in where.items())
