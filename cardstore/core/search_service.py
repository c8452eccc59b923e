"""
Search executor: rank, filter and project vector index matches.

Matches whose deck no longer resolves in SQLite are dropped, so vector
records left behind by a failed purge never surface as live cards.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .config import DEFAULT_SEARCH_K
from .dao import DAO
from .query_parser import normalize_terms, parse_query
from ..util.logging import logger
from ..vector.adapter import DECK_ID_KEY, IVectorIndex


@dataclass
class CardHit:
    """Public shape of a search result."""
    id: str
    question: str
    answer: str

    def to_api(self) -> Dict[str, str]:
        return {"id": self.id, "question": self.question, "answer": self.answer}


def normalize_k(k: Any, default: int = DEFAULT_SEARCH_K) -> int:
    """Requested result count; absent, non-numeric, non-finite or non-positive values fall back to ``default``."""
    if k is None or isinstance(k, bool):
        return default
    try:
        value = float(k)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(value) or value <= 0:
        return default
    return max(1, int(value))


def is_excluded(question: str, answer: str, exclude: Sequence[str]) -> bool:
    """Case-insensitive substring match of any exclusion term against question + " " + answer."""
    if not exclude:
        return False
    haystack = f"{question} {answer}".lower()
    return any(term in haystack for term in exclude)


class SearchExecutor:
    """Issues interpreted queries to the vector index and shapes the result."""

    def __init__(self, dao: DAO, vector_index: IVectorIndex, default_k: int = DEFAULT_SEARCH_K):
        self.dao = dao
        self.vector_index = vector_index
        self.default_k = default_k

    def search(self, query: str, k: Any = None, deck_id: Optional[str] = None,
               exclude: Optional[Sequence[str]] = None) -> List[CardHit]:
        """Nearest cards to ``query``, most similar first.

        Never errors on zero matches. Vector index failures propagate as
        VectorIndexError.
        """
        k = normalize_k(k, self.default_k)
        terms = normalize_terms(exclude or [])
        where = {DECK_ID_KEY: deck_id} if deck_id else None

        matches = self.vector_index.query(query or "", k, where)

        # Stable: equal distances keep the index's order
        ranked = sorted(matches, key=lambda match: match.distance)

        live_decks = self.dao.existing_deck_ids(str(m.metadata.get(DECK_ID_KEY, "")) for m in ranked)

        hits = []
        orphaned = 0
        for match in ranked:
            if match.metadata.get(DECK_ID_KEY) not in live_decks:
                orphaned += 1
                continue

            question = str(match.metadata.get("question", ""))
            answer = str(match.metadata.get("answer", ""))
            if is_excluded(question, answer, terms):
                continue

            hits.append(CardHit(id=match.id, question=question, answer=answer))

        logger.log_search(query or "", k, len(hits), {
            "deck_id": deck_id,
            "exclude": terms,
            "candidates": len(matches),
            "orphaned": orphaned,
        })
        return hits

    def search_text(self, raw: str, k: Any = None, deck_id: Optional[str] = None,
                    extra_exclude: Optional[Sequence[str]] = None) -> List[CardHit]:
        """Interpret a free-text request (", excluding ...") and run it."""
        parsed = parse_query(raw)
        exclude = normalize_terms(list(parsed.exclude) + list(extra_exclude or []))
        return self.search(parsed.query, k=k, deck_id=deck_id, exclude=exclude)
