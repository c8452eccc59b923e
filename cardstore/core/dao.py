"""
Relational store access layer: decks, flashcards and their index state.

SQLite is authoritative. Every write stamps created_at/updated_at; updates
only touch updated_at. Methods accept an optional ``conn`` so the
coordinator can run several of them inside a single transaction.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .config import DEFAULT_CARD_LIMIT, MAX_CARD_LIMIT
from .db import Database
from .errors import NotFoundError, PersistenceError, ValidationError
from .schema import Deck, DeckPatch, Flashcard, IndexState, PendingPurge, validate_metadata
from ..util.logging import logger

DECK_COLUMNS = "id, title, source, created_at, updated_at"
CARD_COLUMNS = "id, deck_id, question, answer, metadata, index_state, created_at, updated_at"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


def clamp_limit(limit: Optional[int]) -> int:
    """Clamp a page size into (0, MAX_CARD_LIMIT]."""
    if limit is None:
        return DEFAULT_CARD_LIMIT
    return max(1, min(int(limit), MAX_CARD_LIMIT))


def clamp_offset(offset: Optional[int]) -> int:
    if offset is None:
        return 0
    return max(0, int(offset))


def validate_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title is required (non-empty string)")
    return title.strip()


def validate_source(source: Any) -> Optional[str]:
    if source is not None and not isinstance(source, str):
        raise ValidationError("source must be a string or null")
    return source


def validate_card_inputs(cards: Any) -> List[Dict[str, Any]]:
    """Validate a whole batch up front. Any invalid entry rejects the batch."""
    if not isinstance(cards, list) or not cards:
        raise ValidationError("cards must be a non-empty array")

    validated = []
    for position, card in enumerate(cards):
        if not isinstance(card, dict):
            raise ValidationError(f"cards[{position}] must be an object")

        question = card.get("question")
        answer = card.get("answer")
        if not isinstance(question, str) or not question.strip():
            raise ValidationError(f"cards[{position}].question is required (non-empty string)")
        if not isinstance(answer, str) or not answer.strip():
            raise ValidationError(f"cards[{position}].answer is required (non-empty string)")

        validated.append({
            "question": question,
            "answer": answer,
            "metadata": validate_metadata(card.get("metadata")),
        })
    return validated


def _row_to_deck(row: sqlite3.Row) -> Deck:
    return Deck(
        id=row["id"],
        title=row["title"],
        source=row["source"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_card(row: sqlite3.Row) -> Flashcard:
    metadata = json.loads(row["metadata"]) if row["metadata"] else None
    return Flashcard(
        id=row["id"],
        deck_id=row["deck_id"],
        question=row["question"],
        answer=row["answer"],
        metadata=metadata,
        index_state=IndexState(row["index_state"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class DAO:
    """Data access object over an explicit :class:`Database` handle."""

    def __init__(self, db: Database):
        self.db = db

    @contextmanager
    def transaction(self):
        """One relational transaction. sqlite failures surface as PersistenceError after rollback."""
        try:
            with self.db.transaction() as conn:
                yield conn
        except sqlite3.Error as e:
            logger.error(f"Relational transaction rolled back: {e}")
            raise PersistenceError(f"Relational store failure: {e}") from e

    @contextmanager
    def _unit(self, conn: Optional[sqlite3.Connection]):
        if conn is not None:
            yield conn
        else:
            with self.transaction() as own_conn:
                yield own_conn

    @contextmanager
    def _read(self):
        try:
            with self.db.get_db() as conn:
                yield conn
        except sqlite3.Error as e:
            logger.error(f"Relational read failed: {e}")
            raise PersistenceError(f"Relational store failure: {e}") from e

    # Decks

    def create_deck(self, title: Any, source: Any = None, deck_id: Optional[str] = None,
                    conn: Optional[sqlite3.Connection] = None) -> Deck:
        """Insert a deck and return it."""
        title = validate_title(title)
        source = validate_source(source)
        now = utc_now()
        deck = Deck(id=deck_id or new_id(), title=title, source=source, created_at=now, updated_at=now)

        with self._unit(conn) as c:
            c.execute(
                f"INSERT INTO decks ({DECK_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                (deck.id, deck.title, deck.source, deck.created_at, deck.updated_at)
            )

        logger.log_deck_operation("create", deck.id, details={"title": deck.title})
        return deck

    def get_deck(self, deck_id: str, conn: Optional[sqlite3.Connection] = None) -> Deck:
        """Get a deck by id or raise NotFoundError."""
        if conn is not None:
            row = conn.execute(f"SELECT {DECK_COLUMNS} FROM decks WHERE id = ?", (deck_id,)).fetchone()
        else:
            with self._read() as c:
                row = c.execute(f"SELECT {DECK_COLUMNS} FROM decks WHERE id = ?", (deck_id,)).fetchone()

        if row is None:
            raise NotFoundError(f"Deck not found: {deck_id}")
        return _row_to_deck(row)

    def deck_exists(self, deck_id: str) -> bool:
        with self._read() as conn:
            row = conn.execute("SELECT 1 FROM decks WHERE id = ?", (deck_id,)).fetchone()
            return row is not None

    def existing_deck_ids(self, deck_ids: Iterable[str]) -> Set[str]:
        """Return the subset of ``deck_ids`` that still resolve to a deck."""
        wanted = list({d for d in deck_ids if d})
        if not wanted:
            return set()

        placeholders = ", ".join("?" for _ in wanted)
        with self._read() as conn:
            rows = conn.execute(f"SELECT id FROM decks WHERE id IN ({placeholders})", wanted).fetchall()
            return {row["id"] for row in rows}

    def list_decks(self) -> List[Deck]:
        """List decks, newest first."""
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT {DECK_COLUMNS} FROM decks ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
            return [_row_to_deck(row) for row in rows]

    def update_deck(self, deck_id: str, patch: DeckPatch) -> Deck:
        """Rename a deck and/or change its source."""
        assignments = []
        params: List[Any] = []

        if "title" in patch.fields_set:
            assignments.append("title = ?")
            params.append(validate_title(patch.title))
        if "source" in patch.fields_set:
            assignments.append("source = ?")
            params.append(validate_source(patch.source))

        with self.transaction() as conn:
            self.get_deck(deck_id, conn=conn)
            assignments.append("updated_at = ?")
            params.append(utc_now())
            conn.execute(f"UPDATE decks SET {', '.join(assignments)} WHERE id = ?", (*params, deck_id))
            deck = self.get_deck(deck_id, conn=conn)

        logger.log_deck_operation("update", deck_id, details={"fields": sorted(patch.fields_set)})
        return deck

    def delete_deck(self, deck_id: str, conn: Optional[sqlite3.Connection] = None) -> int:
        """Delete a deck; its flashcards go with it (ON DELETE CASCADE).

        A purge request for the deck's vector records is written in the same
        transaction. Returns the number of cards removed.
        """
        with self._unit(conn) as c:
            self.get_deck(deck_id, conn=c)
            card_count = c.execute(
                "SELECT COUNT(*) FROM flashcards WHERE deck_id = ?", (deck_id,)
            ).fetchone()[0]
            c.execute("DELETE FROM decks WHERE id = ?", (deck_id,))
            c.execute(
                '''
                INSERT INTO index_purges (deck_id, card_count, requested_at, attempts, last_error)
                VALUES (?, ?, ?, 0, NULL)
                ON CONFLICT(deck_id) DO UPDATE SET
                    card_count = excluded.card_count,
                    requested_at = excluded.requested_at
                ''',
                (deck_id, card_count, utc_now())
            )

        logger.log_deck_operation("delete", deck_id, details={"cascaded_cards": card_count})
        return card_count

    def count_decks(self) -> int:
        with self._read() as conn:
            return conn.execute("SELECT COUNT(*) FROM decks").fetchone()[0]

    # Flashcards

    def create_cards(self, deck_id: str, cards: Any, conn: Optional[sqlite3.Connection] = None) -> List[Flashcard]:
        """Insert a batch of cards atomically: all are persisted or none are."""
        validated = validate_card_inputs(cards)
        now = utc_now()
        created = [
            Flashcard(
                id=new_id(),
                deck_id=deck_id,
                question=card["question"],
                answer=card["answer"],
                metadata=card["metadata"],
                created_at=now,
                updated_at=now,
            )
            for card in validated
        ]

        with self._unit(conn) as c:
            self.get_deck(deck_id, conn=c)
            c.executemany(
                f"INSERT INTO flashcards ({CARD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        card.id,
                        card.deck_id,
                        card.question,
                        card.answer,
                        json.dumps(card.metadata) if card.metadata is not None else None,
                        card.index_state.value,
                        card.created_at,
                        card.updated_at,
                    )
                    for card in created
                ]
            )

        logger.log_card_batch(deck_id, len(created))
        return created

    def list_cards(self, deck_id: str, text_filter: Optional[str] = None,
                   limit: Optional[int] = None, offset: Optional[int] = None) -> List[Flashcard]:
        """List a deck's cards, newest first.

        ``text_filter`` keeps cards whose question contains it as a
        case-sensitive substring.
        """
        limit = clamp_limit(limit)
        offset = clamp_offset(offset)

        with self._read() as conn:
            if conn.execute("SELECT 1 FROM decks WHERE id = ?", (deck_id,)).fetchone() is None:
                raise NotFoundError(f"Deck not found: {deck_id}")

            query = f"SELECT {CARD_COLUMNS} FROM flashcards WHERE deck_id = ?"
            params: List[Any] = [deck_id]
            if text_filter:
                query += " AND instr(question, ?) > 0"
                params.append(text_filter)
            query += " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
            params.extend([limit, offset])

            rows = conn.execute(query, params).fetchall()
            return [_row_to_card(row) for row in rows]

    def list_all_cards(self, deck_id: str) -> List[Flashcard]:
        """All cards of a deck in insertion order, for (re)indexing."""
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT {CARD_COLUMNS} FROM flashcards WHERE deck_id = ? ORDER BY rowid",
                (deck_id,)
            ).fetchall()
            return [_row_to_card(row) for row in rows]

    def card_deck_ids(self, card_ids: Iterable[str]) -> Dict[str, str]:
        """Map each of ``card_ids`` that still exists to the deck that owns it."""
        wanted = list({c for c in card_ids if c})
        owners: Dict[str, str] = {}

        with self._read() as conn:
            for start in range(0, len(wanted), 500):
                chunk = wanted[start:start + 500]
                placeholders = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT id, deck_id FROM flashcards WHERE id IN ({placeholders})", chunk
                ).fetchall()
                owners.update((row["id"], row["deck_id"]) for row in rows)
        return owners

    def get_card_count(self, deck_id: Optional[str] = None) -> int:
        with self._read() as conn:
            if deck_id:
                row = conn.execute("SELECT COUNT(*) FROM flashcards WHERE deck_id = ?", (deck_id,)).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM flashcards").fetchone()
            return row[0]

    # Index state

    def mark_indexed(self, card_ids: Sequence[str]) -> int:
        """Mark cards as present in the vector index. Unknown ids are ignored."""
        if not card_ids:
            return 0

        now = utc_now()
        with self.transaction() as conn:
            cursor = conn.executemany(
                "UPDATE flashcards SET index_state = ?, indexed_at = ? WHERE id = ?",
                [(IndexState.INDEXED.value, now, card_id) for card_id in card_ids]
            )
            return cursor.rowcount

    def mark_unindexed(self, card_ids: Sequence[str]) -> int:
        """Mark individual cards as missing from the vector index."""
        if not card_ids:
            return 0

        with self.transaction() as conn:
            cursor = conn.executemany(
                "UPDATE flashcards SET index_state = ?, indexed_at = NULL WHERE id = ?",
                [(IndexState.UNINDEXED.value, card_id) for card_id in card_ids]
            )
            return cursor.rowcount

    def mark_deck_unindexed(self, deck_id: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE flashcards SET index_state = ?, indexed_at = NULL WHERE deck_id = ?",
                (IndexState.UNINDEXED.value, deck_id)
            )
            return cursor.rowcount

    def mark_all_unindexed(self) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE flashcards SET index_state = ?, indexed_at = NULL",
                (IndexState.UNINDEXED.value,)
            )
            return cursor.rowcount

    def list_unindexed_deck_ids(self) -> List[str]:
        """Decks that still have at least one card missing from the vector index."""
        with self._read() as conn:
            rows = conn.execute(
                "SELECT DISTINCT deck_id FROM flashcards WHERE index_state = ? ORDER BY deck_id",
                (IndexState.UNINDEXED.value,)
            ).fetchall()
            return [row["deck_id"] for row in rows]

    def list_deck_ids(self) -> List[str]:
        with self._read() as conn:
            rows = conn.execute("SELECT id FROM decks ORDER BY created_at, rowid").fetchall()
            return [row["id"] for row in rows]

    def list_pending_purges(self) -> List[PendingPurge]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT deck_id, card_count, requested_at, attempts, last_error FROM index_purges ORDER BY requested_at"
            ).fetchall()
            return [
                PendingPurge(
                    deck_id=row["deck_id"],
                    card_count=row["card_count"],
                    requested_at=row["requested_at"],
                    attempts=row["attempts"],
                    last_error=row["last_error"],
                )
                for row in rows
            ]

    def record_purge_failure(self, deck_id: str, error: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE index_purges SET attempts = attempts + 1, last_error = ? WHERE deck_id = ?",
                (error[:500], deck_id)
            )

    def clear_purge(self, deck_id: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM index_purges WHERE deck_id = ?", (deck_id,))
