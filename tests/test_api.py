"""
HTTP API: deck and card routes, raw index routes, search and error payloads.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from cardstore.api.main import create_app
from cardstore.core.errors import VectorIndexError


class TestDeckAPI:
    """Test cases for deck and card endpoints."""

    @pytest.fixture
    def client(self, services):
        """Create test client over per-test services."""
        with TestClient(create_app(services)) as test_client:
            yield test_client

    def _create_deck(self, client, title="Geography", source=None):
        response = client.post("/decks", json={"title": title, "source": source})
        assert response.status_code == 201
        return response.json()

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["dbHealth"] is True
        assert data["deckCount"] == 0

    def test_create_deck(self, client):
        deck = self._create_deck(client, "Physics", "book.pdf")

        assert deck["title"] == "Physics"
        assert deck["source"] == "book.pdf"
        assert set(deck) == {"id", "title", "source", "createdAt", "updatedAt"}

    @pytest.mark.parametrize("body", [{}, {"title": 5}, {"title": "   "}, {"title": "ok", "source": 3}])
    def test_create_deck_validation(self, client, body):
        response = client.post("/decks", json=body)

        assert response.status_code == 400
        assert response.json()["error_type"] == "VALIDATION_ERROR"

    def test_list_and_get_decks(self, client):
        first = self._create_deck(client, "First")
        second = self._create_deck(client, "Second")

        listed = client.get("/decks").json()
        assert [d["id"] for d in listed] == [second["id"], first["id"]]

        assert client.get(f"/decks/{first['id']}").json()["title"] == "First"
        missing = client.get("/decks/missing")
        assert missing.status_code == 404
        assert missing.json()["error_type"] == "NOT_FOUND"

    def test_patch_deck(self, client):
        deck = self._create_deck(client, "Old", "a.md")

        response = client.patch(f"/decks/{deck['id']}", json={"title": "New"})
        assert response.status_code == 200
        assert response.json()["title"] == "New"
        assert response.json()["source"] == "a.md", "Omitted fields are untouched"

        response = client.patch(f"/decks/{deck['id']}", json={"source": None})
        assert response.json()["source"] is None

    def test_patch_deck_errors(self, client):
        deck = self._create_deck(client)

        assert client.patch("/decks/missing", json={"title": "x"}).status_code == 404
        assert client.patch(f"/decks/{deck['id']}", json={"title": 7}).status_code == 400

    def test_cards_create_and_list(self, client):
        deck = self._create_deck(client)
        response = client.post(f"/decks/{deck['id']}/cards", json={"cards": [
            {"question": "What is a lake?", "answer": "Fresh water", "metadata": {"level": 1}},
            {"question": "What is a sea?", "answer": "Salt water"},
        ]})

        assert response.status_code == 201
        created = response.json()
        assert len(created) == 2
        assert created[0]["metadata"] == {"level": 1}
        assert created[0]["indexState"] == "indexed"

        listed = client.get(f"/decks/{deck['id']}/cards", params={"q": "lake"}).json()
        assert [c["question"] for c in listed] == ["What is a lake?"]

        page = client.get(f"/decks/{deck['id']}/cards", params={"limit": 1, "offset": 0}).json()
        assert len(page) == 1

    def test_cards_batch_rejected_atomically(self, client, dao):
        deck = self._create_deck(client)

        response = client.post(f"/decks/{deck['id']}/cards", json={"cards": [
            {"question": "Q1", "answer": "A1"},
            {"question": "Q2", "answer": ""},
        ]})

        assert response.status_code == 400
        assert dao.get_card_count(deck["id"]) == 0

    @pytest.mark.parametrize("body", [{}, {"cards": []}, {"cards": [{"question": "Q"}]}])
    def test_cards_validation(self, client, body):
        deck = self._create_deck(client)

        assert client.post(f"/decks/{deck['id']}/cards", json=body).status_code == 400

    def test_cards_unknown_deck(self, client):
        response = client.post("/decks/missing/cards", json={"cards": [{"question": "Q", "answer": "A"}]})

        assert response.status_code == 404
        assert client.get("/decks/missing/cards").status_code == 404

    def test_save_deck_and_search(self, client):
        response = client.post("/decks/save", json={
            "title": "Geography",
            "cards": [
                {"question": "What is a lake?", "answer": "An inland body of water"},
                {"question": "What is a sea?", "answer": "A large body of salt water"},
            ],
        })

        assert response.status_code == 201
        saved = response.json()
        assert saved["indexed"] is True
        assert len(saved["cards"]) == 2

        results = client.get("/search", params={"q": "lake"}).json()
        assert results["cards"][0]["question"] == "What is a lake?"
        assert set(results["cards"][0]) == {"id", "question", "answer"}

    def test_save_deck_index_failure(self, client, index, dao):
        index.fail_add = 5

        response = client.post("/decks/save", json={
            "title": "Geography",
            "cards": [{"question": "What is a lake?", "answer": "Water"}],
        })

        assert response.status_code == 500
        data = response.json()
        assert data["error_type"] == "INDEX_ERROR"
        assert data["committed"] is True
        assert data["searchable"] is False
        assert dao.deck_exists(data["deck"]["id"])
        assert data["cards"][0]["indexState"] == "unindexed"

    def test_delete_deck(self, client, index):
        deck_id = client.post("/decks/save", json={
            "title": "Geography",
            "cards": [{"question": "What is a lake?", "answer": "Water"}],
        }).json()["deck"]["id"]

        response = client.delete(f"/decks/{deck_id}")

        assert response.status_code == 204
        assert client.get(f"/decks/{deck_id}").status_code == 404
        assert client.get("/search", params={"q": "lake", "deckId": deck_id}).json() == {"cards": []}
        assert index.count() == 0
        assert client.delete(f"/decks/{deck_id}").status_code == 404

    def test_delete_deck_index_failure(self, client, index):
        deck_id = client.post("/decks/save", json={
            "title": "Geography",
            "cards": [{"question": "What is a lake?", "answer": "Water"}],
        }).json()["deck"]["id"]
        index.fail_remove = 2

        response = client.delete(f"/decks/{deck_id}")

        assert response.status_code == 500
        assert response.json() == {
            "error_type": "INDEX_ERROR",
            "message": response.json()["message"],
            "committed": True,
            "deckId": deck_id,
        }
        assert client.get(f"/decks/{deck_id}").status_code == 404
        assert client.get("/search", params={"q": "lake"}).json() == {"cards": []}

        reconcile = client.post("/reconcile").json()
        assert reconcile["purgesCompleted"] == 1
        assert index.count() == 0


class TestIndexAndSearchAPI:
    """Test cases for raw index and search endpoints."""

    @pytest.fixture
    def client(self, services):
        with TestClient(create_app(services)) as test_client:
            yield test_client

    @pytest.fixture
    def deck_id(self, dao):
        return dao.create_deck("Water").id

    def _index(self, client, deck_id, *cards):
        response = client.post("/index", json={
            "deckId": deck_id,
            "cards": [{"id": card_id, "question": q, "answer": a} for card_id, q, a in cards],
        })
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_index_and_remove(self, client, deck_id):
        self._index(client, deck_id, ("c1", "What is a lake?", "Fresh water"))
        assert [c["id"] for c in client.get("/search", params={"q": "lake"}).json()["cards"]] == ["c1"]

        response = client.delete(f"/index/decks/{deck_id}")
        assert response.json() == {"ok": True}
        assert client.get("/search", params={"q": "lake"}).json() == {"cards": []}

    def test_index_validation(self, client, deck_id):
        assert client.post("/index", json={"cards": []}).status_code == 400
        assert client.post("/index", json={"deckId": "", "cards": []}).status_code == 400
        assert client.post("/index", json={"deckId": deck_id, "cards": [{"id": "c1"}]}).status_code == 400
        assert client.post("/index", json={"deckId": "missing", "cards": []}).status_code == 404

    def test_index_rejects_card_of_another_deck(self, client, services, deck_id):
        saved = services.coordinator.save_deck("Lakes", None, [{"question": "What is a lake?", "answer": "Water"}])
        card = saved.cards[0]

        response = client.post("/index", json={
            "deckId": deck_id,
            "cards": [{"id": card.id, "question": card.question, "answer": card.answer}],
        })

        assert response.status_code == 400
        assert response.json()["error_type"] == "VALIDATION_ERROR"

        client.delete(f"/decks/{saved.deck.id}")
        assert client.get("/search", params={"q": "lake"}).json() == {"cards": []}

    @pytest.mark.parametrize("q", ["", "   ", ", excluding seas"])
    def test_search_requires_query(self, client, q):
        response = client.get("/search", params={"q": q})

        assert response.status_code == 400
        assert response.json()["error_type"] == "VALIDATION_ERROR"

    def test_search_without_q(self, client):
        assert client.get("/search").status_code == 400

    def test_search_excluding_clause_and_param(self, client, deck_id):
        self._index(
            client, deck_id,
            ("sea", "What is a sea?", "Salt water"),
            ("lake", "What is a lake?", "Fresh water"),
            ("river", "What is a river?", "Flowing water"),
        )

        by_clause = client.get("/search", params={"q": "water, excluding sea"}).json()["cards"]
        assert {c["id"] for c in by_clause} == {"lake", "river"}

        by_both = client.get("/search", params={"q": "water, excluding sea", "exclude": "River"}).json()["cards"]
        assert [c["id"] for c in by_both] == ["lake"]

    def test_search_k_and_deck_scope(self, client, deck_id, dao):
        other = dao.create_deck("Other").id
        self._index(client, deck_id, ("a", "water one", "x"), ("b", "water two", "y"))
        self._index(client, other, ("c", "water three", "z"))

        assert len(client.get("/search", params={"q": "water", "k": 1}).json()["cards"]) == 1
        assert len(client.get("/search", params={"q": "water", "k": "abc"}).json()["cards"]) == 3
        scoped = client.get("/search", params={"q": "water", "deckId": other}).json()["cards"]
        assert [c["id"] for c in scoped] == ["c"]

    def test_search_index_failure(self, client, index):
        with patch.object(index, "query", side_effect=VectorIndexError("index unavailable")):
            response = client.get("/search", params={"q": "water"})

        assert response.status_code == 500

    def test_reindex_endpoint(self, client, services, index):
        deck_id = services.coordinator.save_deck("Deck", None, [{"question": "Q", "answer": "A"}]).deck.id
        index.clear()

        response = client.post(f"/decks/{deck_id}/reindex")

        assert response.json() == {"ok": True, "indexed": 1}
        assert index.count() == 1
        assert client.post("/decks/missing/reindex").status_code == 404

    def test_debug_endpoint(self, client, monkeypatch):
        monkeypatch.setenv("DEBUG", "true")
        data = client.get("/debug").json()
        assert data["pendingPurges"] == []
        assert data["activeDeckLocks"] == 0

        monkeypatch.setenv("DEBUG", "false")
        assert client.get("/debug").status_code == 403
