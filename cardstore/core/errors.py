"""
Error taxonomy shared by the relational store, the vector index adapter and the API.
"""

from typing import Any, Dict, List, Optional


class CardStoreError(Exception):
    """Base class for all cardstore failures."""

    error_type = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        return {"error_type": self.error_type, "message": self.message}


class ValidationError(CardStoreError):
    """Malformed or missing required field. Never retried."""

    error_type = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(CardStoreError):
    """Unknown deck id."""

    error_type = "NOT_FOUND"
    status_code = 404


class PersistenceError(CardStoreError):
    """Relational store unavailable or constraint violated. The transaction was rolled back."""

    error_type = "PERSISTENCE_ERROR"
    status_code = 500


class VectorIndexError(CardStoreError):
    """Vector index unavailable or rejected the call.

    ``committed`` is True when the failure happened after the relational
    transaction committed, so the relational change stands.
    """

    error_type = "INDEX_ERROR"
    status_code = 500

    def __init__(self, message: str, committed: bool = False, deck_id: Optional[str] = None):
        super().__init__(message)
        self.committed = committed
        self.deck_id = deck_id

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.committed:
            payload["committed"] = True
            payload["deckId"] = self.deck_id
        return payload


class NotSearchableError(VectorIndexError):
    """Deck and cards were saved but could not be indexed; they are not yet searchable."""

    def __init__(self, message: str, deck=None, cards: Optional[List] = None):
        super().__init__(message, committed=True, deck_id=deck.id if deck is not None else None)
        self.deck = deck
        self.cards = cards or []

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["searchable"] = False
        if self.deck is not None:
            payload["deck"] = self.deck.to_api()
        payload["cards"] = [card.to_api() for card in self.cards]
        return payload
