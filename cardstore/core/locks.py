"""
Per-deck ordering for mutating operations.

Two mutations of the same deck (a delete racing a save, a reindex racing a
delete) run one after the other; mutations of different decks and all
searches run freely.
"""

import threading
from contextlib import contextmanager
from typing import Dict


class DeckLocks:
    """Registry of one re-entrant lock per deck id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._holders: Dict[str, int] = {}

    @contextmanager
    def lock(self, deck_id: str):
        with self._guard:
            deck_lock = self._locks.get(deck_id)
            if deck_lock is None:
                deck_lock = self._locks[deck_id] = threading.RLock()
            self._holders[deck_id] = self._holders.get(deck_id, 0) + 1

        deck_lock.acquire()
        try:
            yield
        finally:
            deck_lock.release()
            with self._guard:
                self._holders[deck_id] -= 1
                # Idle locks are dropped
                if self._holders[deck_id] == 0:
                    del self._holders[deck_id]
                    del self._locks[deck_id]

    def active(self) -> int:
        """Number of decks with a holder or waiter."""
        with self._guard:
            return len(self._locks)
