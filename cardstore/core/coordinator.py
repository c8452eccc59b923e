"""
Consistency coordinator: keeps SQLite and the vector index in step without a shared transaction.

Both paths are relational-first. On save the deck and cards commit in one
SQLite transaction before anything is indexed, so a card can exist without
being searchable but never the other way round. On delete the cascade
commits first and a purge request is recorded with it; the vector removal
follows. Whatever the index fails to do is left for :mod:`reconcile`.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import INDEX_RETRY_ATTEMPTS, INDEX_RETRY_DELAY_SEC
from .dao import DAO, new_id, validate_card_inputs, validate_source, validate_title
from .errors import NotSearchableError, ValidationError, VectorIndexError
from .locks import DeckLocks
from .retry import with_retry
from .schema import Deck, DeckPatch, Flashcard, IndexState
from ..util.logging import logger
from ..vector.adapter import CARD_ID_KEY, DECK_ID_KEY, IVectorIndex, build_documents


@dataclass
class SaveResult:
    deck: Deck
    cards: List[Flashcard]
    indexed: bool = True

    def to_api(self) -> Dict[str, Any]:
        return {
            "deck": self.deck.to_api(),
            "cards": [card.to_api() for card in self.cards],
            "indexed": self.indexed,
        }


@dataclass
class IndexCardInput:
    """A card as supplied to raw indexing: id, question and answer."""
    id: str
    question: str
    answer: str


def validate_index_cards(cards: Any) -> List[IndexCardInput]:
    if not isinstance(cards, list):
        raise ValidationError("cards must be an array")

    validated = []
    for position, card in enumerate(cards):
        if not isinstance(card, dict):
            raise ValidationError(f"cards[{position}] must be an object")
        values = [card.get(name) for name in ("id", "question", "answer")]
        if not all(isinstance(value, str) and value.strip() for value in values):
            raise ValidationError(f"cards[{position}] requires non-empty string id, question and answer")
        validated.append(IndexCardInput(*values))
    return validated


class ConsistencyCoordinator:
    """Sequences writes and deletes across the relational store and the vector index."""

    def __init__(self, dao: DAO, vector_index: IVectorIndex, locks: Optional[DeckLocks] = None,
                 retry_attempts: int = INDEX_RETRY_ATTEMPTS, retry_delay: float = INDEX_RETRY_DELAY_SEC):
        self.dao = dao
        self.vector_index = vector_index
        self.locks = locks or DeckLocks()
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    def _retry(self, operation, description: str):
        return with_retry(operation, description, attempts=self.retry_attempts, initial_delay=self.retry_delay)

    def _index(self, deck_id: str, cards: List, source: Optional[str]) -> None:
        """Add cards to the vector index and record them as indexed."""
        documents = build_documents(deck_id, cards, source)
        self._retry(lambda: self.vector_index.add(documents), "vector.add")
        self.dao.mark_indexed([card.id for card in cards])
        for card in cards:
            if isinstance(card, Flashcard):
                card.index_state = IndexState.INDEXED

    # Save path

    def save_deck(self, title: Any, source: Any, cards: Any) -> SaveResult:
        """Create a deck with its cards, then make them searchable.

        Raises:
            ValidationError: bad title, source or any card; nothing is written.
            PersistenceError: the relational transaction failed and was rolled back.
            NotSearchableError: deck and cards are committed but indexing failed.
        """
        title = validate_title(title)
        source = validate_source(source)
        validate_card_inputs(cards)

        deck_id = new_id()
        with self.locks.lock(deck_id):
            with self.dao.transaction() as conn:
                deck = self.dao.create_deck(title, source, deck_id=deck_id, conn=conn)
                created = self.dao.create_cards(deck.id, cards, conn=conn)

            try:
                self._index(deck.id, created, deck.source)
            except VectorIndexError as e:
                logger.log_deck_operation("save", deck.id, status="degraded",
                                          details={"cards": len(created), "searchable": False})
                raise NotSearchableError(
                    f"Deck saved but not yet searchable: {e.message}", deck=deck, cards=created
                ) from e

        logger.log_deck_operation("save", deck.id, details={"cards": len(created), "searchable": True})
        return SaveResult(deck=deck, cards=created, indexed=True)

    def add_cards(self, deck_id: str, cards: Any) -> List[Flashcard]:
        """Append a batch of cards to an existing deck, then index them."""
        with self.locks.lock(deck_id):
            created = self.dao.create_cards(deck_id, cards)
            deck = self.dao.get_deck(deck_id)

            try:
                self._index(deck_id, created, deck.source)
            except VectorIndexError as e:
                raise NotSearchableError(
                    f"Cards saved but not yet searchable: {e.message}", deck=deck, cards=created
                ) from e

        return created

    def update_deck(self, deck_id: str, patch: DeckPatch) -> Deck:
        """Rename a deck or change its source.

        A source change rewrites the cards' vector metadata. If that fails
        the cards are left unindexed for reconciliation and the update stands.
        """
        with self.locks.lock(deck_id):
            before = self.dao.get_deck(deck_id)
            deck = self.dao.update_deck(deck_id, patch)

            if deck.source != before.source:
                cards = self.dao.list_all_cards(deck_id)
                if cards:
                    self.dao.mark_deck_unindexed(deck_id)
                    try:
                        self._index(deck_id, cards, deck.source)
                    except VectorIndexError as e:
                        logger.warning(f"Deck {deck_id} source changed but re-index failed: {e.message}")

        return deck

    # Delete path

    def delete_deck(self, deck_id: str) -> int:
        """Delete a deck and its cards, then remove its vector records.

        Raises:
            NotFoundError: unknown deck id.
            VectorIndexError: the deck is deleted (``committed``) but its vector
                records remain; search hides them and reconciliation purges them.
        """
        with self.locks.lock(deck_id):
            removed_cards = self.dao.delete_deck(deck_id)
            self._purge(deck_id)

        return removed_cards

    def _purge(self, deck_id: str) -> int:
        try:
            removed = self._retry(lambda: self.vector_index.remove_where({DECK_ID_KEY: deck_id}), "vector.remove_where")
        except VectorIndexError as e:
            self.dao.record_purge_failure(deck_id, e.message)
            raise VectorIndexError(
                f"Deck deleted but vector records remain: {e.message}", committed=True, deck_id=deck_id
            ) from e

        self.dao.clear_purge(deck_id)
        return removed

    # Raw index operations and repair

    def index_cards(self, deck_id: str, cards: Any, source: Any = None) -> int:
        """Index caller-supplied cards for an existing deck. Returns the number indexed."""
        if not isinstance(deck_id, str) or not deck_id.strip():
            raise ValidationError("deckId is required (string)")
        source = validate_source(source)
        validated = validate_index_cards(cards)

        with self.locks.lock(deck_id):
            self.dao.get_deck(deck_id)
            owners = self.dao.card_deck_ids(card.id for card in validated)
            foreign = sorted(card_id for card_id, owner in owners.items() if owner != deck_id)
            if foreign:
                raise ValidationError(f"Cards belong to another deck: {', '.join(foreign)}")
            if validated:
                self._index(deck_id, validated, source)

        return len(validated)

    def remove_deck_index(self, deck_id: str) -> int:
        """Remove every vector record of a deck. Safe to repeat."""
        with self.locks.lock(deck_id):
            removed = self._retry(lambda: self.vector_index.remove_where({DECK_ID_KEY: deck_id}), "vector.remove_where")
            self.dao.mark_deck_unindexed(deck_id)
            self.dao.clear_purge(deck_id)

        return removed

    def reindex_deck(self, deck_id: str) -> int:
        """Re-add all of a deck's cards to the index. Returns the number indexed."""
        with self.locks.lock(deck_id):
            deck = self.dao.get_deck(deck_id)
            cards = self.dao.list_all_cards(deck_id)
            if cards:
                self._index(deck_id, cards, deck.source)

        logger.log_deck_operation("reindex", deck_id, details={"cards": len(cards)})
        return len(cards)

    def retry_purge(self, deck_id: str) -> int:
        """Retry the vector removal of a deleted deck. No-op if the deck was recreated."""
        with self.locks.lock(deck_id):
            if self.dao.deck_exists(deck_id):
                self.dao.clear_purge(deck_id)
                return 0
            return self._purge(deck_id)

    def purge_orphan(self, deck_id: str) -> int:
        """Remove vector records of a deck id that no longer resolves in SQLite."""
        with self.locks.lock(deck_id):
            if self.dao.deck_exists(deck_id):
                return 0
            return self._retry(lambda: self.vector_index.remove_where({DECK_ID_KEY: deck_id}), "vector.remove_where")

    def purge_stale_card(self, card_id: str, tagged_deck_id: str) -> int:
        """Remove a vector record whose card is gone or is tagged with the wrong deck.

        A card that still exists under another deck is marked unindexed so
        the next reindex puts it back with the right tag.
        """
        with self.locks.lock(tagged_deck_id):
            owner = self.dao.card_deck_ids([card_id]).get(card_id)
            if owner == tagged_deck_id:
                return 0
            removed = self._retry(lambda: self.vector_index.remove_where({CARD_ID_KEY: card_id}), "vector.remove_where")
            if owner is not None:
                self.dao.mark_unindexed([card_id])

        logger.log_vector_operation("purge_stale", card_id, {"taggedDeck": tagged_deck_id, "owner": owner})
        return removed
