"""
Request and response bodies for the HTTP API. Wire field names are camelCase.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, StrictStr, field_validator

from ..core.schema import CardMetadata


def _not_blank(value: Optional[str], name: str) -> Optional[str]:
    if value is not None and not value.strip():
        raise ValueError(f'{name} cannot be empty')
    return value


class CreateDeckRequest(BaseModel):
    title: StrictStr
    source: Optional[StrictStr] = None

    @field_validator('title')
    @classmethod
    def title_must_not_be_empty(cls, v):
        return _not_blank(v, 'title')


class UpdateDeckRequest(BaseModel):
    title: Optional[StrictStr] = None
    source: Optional[StrictStr] = None

    @field_validator('title')
    @classmethod
    def title_must_not_be_empty(cls, v):
        return _not_blank(v, 'title')


class CardInput(BaseModel):
    question: StrictStr
    answer: StrictStr
    metadata: Optional[CardMetadata] = None

    @field_validator('question')
    @classmethod
    def question_must_not_be_empty(cls, v):
        return _not_blank(v, 'question')

    @field_validator('answer')
    @classmethod
    def answer_must_not_be_empty(cls, v):
        return _not_blank(v, 'answer')


class CreateCardsRequest(BaseModel):
    cards: List[CardInput]

    @field_validator('cards')
    @classmethod
    def cards_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('cards must be a non-empty array')
        return v


class SaveDeckRequest(CreateCardsRequest):
    title: StrictStr
    source: Optional[StrictStr] = None

    @field_validator('title')
    @classmethod
    def title_must_not_be_empty(cls, v):
        return _not_blank(v, 'title')


class IndexCard(BaseModel):
    id: StrictStr
    question: StrictStr
    answer: StrictStr


class IndexRequest(BaseModel):
    deckId: StrictStr
    cards: List[IndexCard]
    source: Optional[StrictStr] = None

    @field_validator('deckId')
    @classmethod
    def deck_id_must_not_be_empty(cls, v):
        return _not_blank(v, 'deckId')


class DeckResponse(BaseModel):
    id: str
    title: str
    source: Optional[str]
    createdAt: str
    updatedAt: str


class FlashcardResponse(BaseModel):
    id: str
    deckId: str
    question: str
    answer: str
    metadata: Optional[Dict[str, Any]] = None
    indexState: str
    createdAt: str
    updatedAt: str


class SaveDeckResponse(BaseModel):
    deck: DeckResponse
    cards: List[FlashcardResponse]
    indexed: bool


class SearchCard(BaseModel):
    id: str
    question: str
    answer: str


class SearchResponse(BaseModel):
    cards: List[SearchCard]


class OkResponse(BaseModel):
    ok: bool = True


class ReindexResponse(OkResponse):
    indexed: int


class ReconcileResponse(BaseModel):
    ok: bool
    purgesRetried: int
    purgesCompleted: int
    decksReindexed: int
    cardsReindexed: int
    orphanDecksPurged: int
    orphanCardsPurged: int
    orphanRecordsRemoved: int
    failures: List[str]


class HealthResponse(BaseModel):
    status: str
    version: str
    dbHealth: bool
    deckCount: int
    cardCount: int
    vectorCount: int


class DebugResponse(BaseModel):
    heartbeat: Dict[str, Any]
    pendingPurges: List[str]
    unindexedDecks: List[str]
    activeDeckLocks: int


class ValidationFieldError(BaseModel):
    field: str
    message: str


class ValidationErrorResponse(BaseModel):
    error_type: str = "VALIDATION_ERROR"
    message: str
    errors: List[ValidationFieldError]
