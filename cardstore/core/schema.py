"""
Typed records returned by the relational store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import StrictBool, StrictFloat, StrictInt, StrictStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

MetadataValue = Union[StrictStr, StrictInt, StrictFloat, StrictBool, None]
CardMetadata = Dict[str, MetadataValue]

_metadata_adapter = TypeAdapter(Optional[CardMetadata])


class IndexState(str, Enum):
    """Index state of a live card. The removed state of a deleted deck is an ``index_purges`` row."""
    UNINDEXED = "unindexed"
    INDEXED = "indexed"


def validate_metadata(value: Any) -> Optional[CardMetadata]:
    """Validate card metadata as a flat string-keyed map of scalar values."""
    try:
        return _metadata_adapter.validate_python(value)
    except PydanticValidationError as e:
        raise ValidationError(f"metadata must be an object of scalar values: {e.errors()[0]['msg']}")


@dataclass
class Deck:
    id: str
    title: str
    source: Optional[str]
    created_at: str
    updated_at: str

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "source": self.source,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Flashcard:
    id: str
    deck_id: str
    question: str
    answer: str
    created_at: str
    updated_at: str
    metadata: Optional[CardMetadata] = None
    index_state: IndexState = IndexState.UNINDEXED

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deckId": self.deck_id,
            "question": self.question,
            "answer": self.answer,
            "metadata": self.metadata,
            "indexState": self.index_state.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class PendingPurge:
    """A deleted deck whose vector records have not been confirmed removed."""
    deck_id: str
    card_count: int
    requested_at: str
    attempts: int = 0
    last_error: Optional[str] = None


@dataclass
class DeckPatch:
    """Partial deck update. Fields left as None are untouched unless listed in ``fields_set``."""
    title: Optional[str] = None
    source: Optional[str] = None
    fields_set: set = field(default_factory=set)
