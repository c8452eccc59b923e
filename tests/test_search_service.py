"""
Search executor: ranking, exclusion, default k and orphan filtering.
"""

from unittest.mock import MagicMock

import pytest

from cardstore.core.errors import VectorIndexError
from cardstore.core.search_service import SearchExecutor, is_excluded, normalize_k
from cardstore.vector.types import IndexMatch


def _match(card_id, deck_id, question, answer, distance):
    return IndexMatch(
        id=card_id,
        metadata={"cardId": card_id, "deckId": deck_id, "question": question, "answer": answer},
        distance=distance,
    )


@pytest.fixture
def stub_index():
    return MagicMock()


@pytest.fixture
def executor(dao, stub_index):
    return SearchExecutor(dao, stub_index, default_k=10)


@pytest.fixture
def live_deck(dao):
    return dao.create_deck("Live")


@pytest.mark.parametrize("k, expected", [
    (None, 10),
    ("", 10),
    ("abc", 10),
    (float("nan"), 10),
    (float("inf"), 10),
    (0, 10),
    (-3, 10),
    (True, 10),
    (3, 3),
    ("5", 5),
    (2.7, 2),
    (0.5, 1),
])
def test_normalize_k(k, expected):
    assert normalize_k(k, default=10) == expected


def test_is_excluded_is_case_insensitive_substring():
    assert is_excluded("What is the Dead Sea?", "A salt lake", ["seas", "sea"])
    assert is_excluded("Q", "Seashore", ["sea"])
    assert not is_excluded("What is a lake?", "Fresh water", ["sea"])
    assert not is_excluded("Q", "A", [])


def test_results_sorted_by_distance_with_stable_ties(executor, stub_index, live_deck):
    stub_index.query.return_value = [
        _match("c", live_deck.id, "Q-c", "A", 0.5),
        _match("a", live_deck.id, "Q-a", "A", 0.1),
        _match("b1", live_deck.id, "Q-b1", "A", 0.3),
        _match("b2", live_deck.id, "Q-b2", "A", 0.3),
    ]

    hits = executor.search("anything")

    assert [h.id for h in hits] == ["a", "b1", "b2", "c"]


def test_results_are_projected(executor, stub_index, live_deck):
    stub_index.query.return_value = [_match("a", live_deck.id, "What is a lake?", "Fresh water", 0.1)]

    hits = executor.search("lake")

    assert [h.to_api() for h in hits] == [{"id": "a", "question": "What is a lake?", "answer": "Fresh water"}]


def test_exclusion_filter(executor, stub_index, live_deck):
    stub_index.query.return_value = [
        _match("sea", live_deck.id, "What is a sea?", "Salt water", 0.1),
        _match("lake", live_deck.id, "What is a lake?", "Fresh water", 0.2),
        _match("ocean", live_deck.id, "What is an ocean?", "The biggest SEAS", 0.3),
    ]

    hits = executor.search("bodies of water", exclude=["Sea"])

    assert [h.id for h in hits] == ["lake"]
    for hit in hits:
        assert "sea" not in f"{hit.question} {hit.answer}".lower()


def test_default_k_matches_explicit_ten(executor, stub_index):
    stub_index.query.return_value = []

    executor.search("x")
    executor.search("x", k=10)

    first, second = stub_index.query.call_args_list
    assert first == second
    assert first.args == ("x", 10, None)


def test_deck_scope_passes_filter(executor, stub_index):
    stub_index.query.return_value = []

    executor.search("x", k=3, deck_id="deck-1")

    stub_index.query.assert_called_once_with("x", 3, {"deckId": "deck-1"})


def test_orphaned_matches_are_dropped(executor, stub_index, dao, live_deck):
    gone = dao.create_deck("Gone")
    dao.delete_deck(gone.id)
    stub_index.query.return_value = [
        _match("orphan", gone.id, "Q", "A", 0.0),
        _match("never", "never-existed", "Q", "A", 0.05),
        _match("live", live_deck.id, "Q", "A", 0.1),
    ]

    hits = executor.search("Q")

    assert [h.id for h in hits] == ["live"]


def test_zero_matches_is_empty(executor, stub_index):
    stub_index.query.return_value = []

    assert executor.search("nothing here") == []


def test_index_failure_propagates(executor, stub_index):
    stub_index.query.side_effect = VectorIndexError("index unavailable")

    with pytest.raises(VectorIndexError):
        executor.search("x")


def test_search_text_merges_exclusions(executor, stub_index, live_deck):
    stub_index.query.return_value = [
        _match("sea", live_deck.id, "What is a sea?", "Salt water", 0.1),
        _match("river", live_deck.id, "What is a river?", "Flowing water", 0.2),
        _match("lake", live_deck.id, "What is a lake?", "Fresh water", 0.3),
    ]

    hits = executor.search_text("bodies of water, excluding seas", extra_exclude=["River"])

    stub_index.query.assert_called_once_with("bodies of water", 10, None)
    # "seas" is not a substring of "What is a sea? Salt water"
    assert [h.id for h in hits] == ["sea", "lake"]


def test_round_trip_with_real_index(services):
    """Indexing "What is a lake?" and searching "lake" ranks it first."""
    result = services.coordinator.save_deck("Geography", None, [
        {"question": "Who wrote Hamlet?", "answer": "Shakespeare"},
        {"question": "What is a lake?", "answer": "An inland body of water"},
        {"question": "What is a mountain?", "answer": "A large landform"},
    ])
    lake = result.cards[1]

    hits = services.search.search("lake")

    assert hits[0].id == lake.id
    assert hits[0].question == "What is a lake?"
