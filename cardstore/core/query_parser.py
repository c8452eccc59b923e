"""
Query interpreter: split a free-text search into a semantic query and exclusion terms.

    "plants, excluding trees, shrubs and moss"
        -> query "plants", exclude ["trees", "shrubs", "moss"]
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List

EXCLUDING_CLAUSE = re.compile(r"^(.*?)(?:,\s*excluding\b\s*(.*))?$", re.IGNORECASE | re.DOTALL)
TERM_SEPARATOR = re.compile(r",|\band\b", re.IGNORECASE)


@dataclass
class ParsedQuery:
    query: str
    exclude: List[str] = field(default_factory=list)

    def to_dict(self):
        return {"query": self.query, "exclude": list(self.exclude)}


def normalize_terms(terms: Iterable[str]) -> List[str]:
    """Trim and lowercase terms, drop empties and repeats, keep first-seen order."""
    seen = set()
    result = []
    for term in terms:
        cleaned = term.strip().lower()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            result.append(cleaned)
    return result


def split_terms(text: str) -> List[str]:
    """Split an exclusion clause on commas and the standalone word "and"."""
    return normalize_terms(TERM_SEPARATOR.split(text))


def parse_query(raw: str) -> ParsedQuery:
    """Parse a raw search string.

    The trailing clause introduced by ", excluding" (any case) lists terms
    to exclude; everything before it is the semantic query. Without such a
    clause the whole trimmed input is the query.
    """
    text = (raw or "").strip()
    if not text:
        return ParsedQuery(query="", exclude=[])

    match = EXCLUDING_CLAUSE.match(text)
    base = match.group(1).strip()
    clause = match.group(2)
    exclude = split_terms(clause) if clause else []
    return ParsedQuery(query=base, exclude=exclude)


def split_exclude_param(value: str) -> List[str]:
    """Parse a comma-separated ``exclude`` request parameter."""
    if not value:
        return []
    return normalize_terms(value.split(","))
