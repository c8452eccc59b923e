"""
Relational store: decks, flashcards, cascade and index-state bookkeeping.
"""

import sqlite3

import pytest

from cardstore.core.dao import DAO, clamp_limit, clamp_offset
from cardstore.core.db import Database, open_database
from cardstore.core.errors import NotFoundError, PersistenceError, ValidationError
from cardstore.core.schema import DeckPatch, IndexState


def test_database_health(dao):
    """Test that database initializes correctly."""
    assert dao.db.health_check() == True, "Database should be healthy"


def test_open_database_creates_directory(tmp_path):
    path = tmp_path / "nested" / "dir" / "cards.db"
    db = open_database(str(path))

    assert path.exists()
    assert db.health_check()


def test_closed_handle_rejects_work(db_path):
    db = open_database(db_path)
    db.close()

    assert db.closed
    with pytest.raises(sqlite3.ProgrammingError):
        with db.get_db():
            pass
    with pytest.raises(PersistenceError):
        DAO(db).list_decks()


def test_create_and_get_deck(dao):
    deck = dao.create_deck("  Physics  ", "textbook.pdf")

    assert deck.title == "Physics", "Title should be trimmed"
    assert deck.source == "textbook.pdf"
    assert deck.created_at == deck.updated_at

    fetched = dao.get_deck(deck.id)
    assert fetched == deck


@pytest.mark.parametrize("title", [None, "", "   ", 42])
def test_create_deck_rejects_bad_title(dao, title):
    with pytest.raises(ValidationError):
        dao.create_deck(title)
    assert dao.count_decks() == 0


def test_create_deck_rejects_non_string_source(dao):
    with pytest.raises(ValidationError):
        dao.create_deck("Physics", source=123)


def test_get_unknown_deck(dao):
    with pytest.raises(NotFoundError):
        dao.get_deck("missing")


def test_list_decks_newest_first(dao):
    first = dao.create_deck("First")
    second = dao.create_deck("Second")
    third = dao.create_deck("Third")

    assert [d.id for d in dao.list_decks()] == [third.id, second.id, first.id]


def test_update_deck_touches_updated_at_only(dao):
    deck = dao.create_deck("Old title")

    updated = dao.update_deck(deck.id, DeckPatch(title="New title", fields_set={"title"}))

    assert updated.title == "New title"
    assert updated.source is None
    assert updated.created_at == deck.created_at
    assert updated.updated_at >= deck.updated_at


def test_update_deck_can_clear_source(dao):
    deck = dao.create_deck("Deck", source="notes.md")

    updated = dao.update_deck(deck.id, DeckPatch(source=None, fields_set={"source"}))

    assert updated.source is None
    assert updated.title == "Deck"


def test_update_unknown_deck(dao):
    with pytest.raises(NotFoundError):
        dao.update_deck("missing", DeckPatch(title="x", fields_set={"title"}))


def test_create_cards_batch(dao):
    deck = dao.create_deck("Geography")

    cards = dao.create_cards(deck.id, [
        {"question": "What is a lake?", "answer": "A body of fresh water"},
        {"question": "What is a sea?", "answer": "A body of salt water", "metadata": {"difficulty": 2}},
    ])

    assert len(cards) == 2
    assert all(card.deck_id == deck.id for card in cards)
    assert all(card.index_state == IndexState.UNINDEXED for card in cards)
    assert cards[1].metadata == {"difficulty": 2}
    assert dao.get_card_count(deck.id) == 2


def test_create_cards_batch_is_atomic(dao):
    """A single invalid card rejects the whole batch."""
    deck = dao.create_deck("Geography")

    with pytest.raises(ValidationError):
        dao.create_cards(deck.id, [
            {"question": "Q1", "answer": "A1"},
            {"question": "Q2", "answer": "A2"},
            {"question": "", "answer": "A3"},
        ])

    assert dao.get_card_count(deck.id) == 0


@pytest.mark.parametrize("cards", [
    [],
    None,
    "not a list",
    [{"question": "Q"}],
    [{"question": "Q", "answer": 5}],
    [{"question": "Q", "answer": "A", "metadata": {"nested": {"a": 1}}}],
    [{"question": "Q", "answer": "A", "metadata": "opaque"}],
])
def test_create_cards_rejects_invalid_batches(dao, cards):
    deck = dao.create_deck("Deck")
    with pytest.raises(ValidationError):
        dao.create_cards(deck.id, cards)


def test_create_cards_unknown_deck(dao):
    with pytest.raises(NotFoundError):
        dao.create_cards("missing", [{"question": "Q", "answer": "A"}])


def test_list_cards_filter_and_paging(dao):
    deck = dao.create_deck("Deck")
    for i in range(5):
        dao.create_cards(deck.id, [{"question": f"Question {i}", "answer": f"Answer {i}"}])
    dao.create_cards(deck.id, [{"question": "lake question", "answer": "water"}])

    all_cards = dao.list_cards(deck.id)
    assert all_cards[0].question == "lake question", "Newest card first"
    assert len(all_cards) == 6

    filtered = dao.list_cards(deck.id, text_filter="lake")
    assert [c.question for c in filtered] == ["lake question"]

    # Case-sensitive substring
    assert dao.list_cards(deck.id, text_filter="LAKE") == []

    page = dao.list_cards(deck.id, limit=2, offset=1)
    assert [c.question for c in page] == ["Question 4", "Question 3"]


def test_list_cards_unknown_deck(dao):
    with pytest.raises(NotFoundError):
        dao.list_cards("missing")


def test_clamp_limit_and_offset():
    assert clamp_limit(None) == 50
    assert clamp_limit(0) == 1
    assert clamp_limit(-5) == 1
    assert clamp_limit(1000) == 200
    assert clamp_limit(25) == 25
    assert clamp_offset(None) == 0
    assert clamp_offset(-3) == 0
    assert clamp_offset(7) == 7


def test_delete_deck_cascades_and_records_purge(dao):
    deck = dao.create_deck("Doomed")
    dao.create_cards(deck.id, [{"question": "Q1", "answer": "A1"}, {"question": "Q2", "answer": "A2"}])

    removed = dao.delete_deck(deck.id)

    assert removed == 2
    assert not dao.deck_exists(deck.id)
    assert dao.get_card_count() == 0

    purges = dao.list_pending_purges()
    assert [p.deck_id for p in purges] == [deck.id]
    assert purges[0].card_count == 2


def test_delete_unknown_deck(dao):
    with pytest.raises(NotFoundError):
        dao.delete_deck("missing")
    assert dao.list_pending_purges() == []


def test_purge_failure_bookkeeping(dao):
    deck = dao.create_deck("Doomed")
    dao.delete_deck(deck.id)

    dao.record_purge_failure(deck.id, "index down")
    dao.record_purge_failure(deck.id, "index still down")

    purge = dao.list_pending_purges()[0]
    assert purge.attempts == 2
    assert purge.last_error == "index still down"

    dao.clear_purge(deck.id)
    assert dao.list_pending_purges() == []


def test_index_state_transitions(dao):
    deck = dao.create_deck("Deck")
    cards = dao.create_cards(deck.id, [{"question": "Q1", "answer": "A1"}, {"question": "Q2", "answer": "A2"}])
    assert dao.list_unindexed_deck_ids() == [deck.id]

    assert dao.mark_indexed([c.id for c in cards]) == 2
    assert dao.list_unindexed_deck_ids() == []
    assert all(c.index_state == IndexState.INDEXED for c in dao.list_all_cards(deck.id))

    dao.mark_deck_unindexed(deck.id)
    assert dao.list_unindexed_deck_ids() == [deck.id]

    assert dao.mark_unindexed([]) == 0
    dao.mark_indexed([c.id for c in cards])
    assert dao.mark_unindexed([cards[0].id, "unknown"]) == 1
    assert [c.index_state for c in dao.list_all_cards(deck.id)] == [IndexState.UNINDEXED, IndexState.INDEXED]


def test_card_states_are_unindexed_or_indexed(dao):
    assert {state.value for state in IndexState} == {"unindexed", "indexed"}

    deck = dao.create_deck("Deck")
    dao.create_cards(deck.id, [{"question": "Q", "answer": "A"}])
    dao.delete_deck(deck.id)

    assert [p.deck_id for p in dao.list_pending_purges()] == [deck.id]


def test_card_deck_ids(dao):
    first = dao.create_deck("First")
    second = dao.create_deck("Second")
    a = dao.create_cards(first.id, [{"question": "Q", "answer": "A"}])[0]
    b = dao.create_cards(second.id, [{"question": "Q", "answer": "A"}])[0]

    assert dao.card_deck_ids([a.id, b.id, "missing", ""]) == {a.id: first.id, b.id: second.id}
    assert dao.card_deck_ids([]) == {}


def test_existing_deck_ids(dao):
    keep = dao.create_deck("Keep")
    gone = dao.create_deck("Gone")
    dao.delete_deck(gone.id)

    assert dao.existing_deck_ids([keep.id, gone.id, "never", ""]) == {keep.id}
    assert dao.existing_deck_ids([]) == set()


def test_transaction_rolls_back_on_error(dao):
    with pytest.raises(NotFoundError):
        with dao.transaction() as conn:
            dao.create_deck("Half written", conn=conn)
            dao.create_cards("missing", [{"question": "Q", "answer": "A"}], conn=conn)

    assert dao.count_decks() == 0


def test_constraint_violation_is_persistence_error(dao):
    deck = dao.create_deck("Deck")
    with pytest.raises(PersistenceError):
        dao.create_deck("Duplicate", deck_id=deck.id)
    assert dao.count_decks() == 1


def test_foreign_keys_enforced(db_path):
    db = Database(db_path).open()
    with pytest.raises(sqlite3.IntegrityError):
        with db.transaction() as conn:
            conn.execute(
                "INSERT INTO flashcards (id, deck_id, question, answer, created_at, updated_at) "
                "VALUES ('c1', 'nope', 'q', 'a', 'now', 'now')"
            )
