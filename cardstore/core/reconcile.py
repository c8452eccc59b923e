"""
Reconciliation between canonical SQLite state and the vector index.

SQLite wins. A pass repairs the kinds of drift the coordinator can
leave behind after a partial failure:

- purges that were recorded with a deck delete but never confirmed,
- vector records whose deck id no longer resolves (orphan decks),
- vector records whose card is gone or is tagged with another deck,
- cards still marked unindexed (saved but not yet searchable).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

from .coordinator import ConsistencyCoordinator
from .dao import DAO
from .errors import CardStoreError
from ..util.logging import logger
from ..vector.adapter import IVectorIndex


@dataclass
class ReconciliationSummary:
    """Summary of reconciliation results."""
    purges_retried: int = 0
    purges_completed: int = 0
    decks_reindexed: int = 0
    cards_reindexed: int = 0
    orphan_decks_purged: int = 0
    orphan_cards_purged: int = 0
    orphan_records_removed: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "purgesRetried": self.purges_retried,
            "purgesCompleted": self.purges_completed,
            "decksReindexed": self.decks_reindexed,
            "cardsReindexed": self.cards_reindexed,
            "orphanDecksPurged": self.orphan_decks_purged,
            "orphanCardsPurged": self.orphan_cards_purged,
            "orphanRecordsRemoved": self.orphan_records_removed,
            "failures": list(self.failures),
        }


class Reconciler:
    """Restores the invariant: a vector record exists iff its card and deck exist in SQLite."""

    def __init__(self, dao: DAO, vector_index: IVectorIndex, coordinator: ConsistencyCoordinator):
        self.dao = dao
        self.vector_index = vector_index
        self.coordinator = coordinator

    def run(self) -> ReconciliationSummary:
        """One full pass. A failing deck or card is recorded and the pass moves on."""
        summary = ReconciliationSummary()

        for purge in self.dao.list_pending_purges():
            summary.purges_retried += 1
            try:
                self.coordinator.retry_purge(purge.deck_id)
                summary.purges_completed += 1
            except CardStoreError as e:
                summary.failures.append(f"purge {purge.deck_id}: {e.message}")

        orphan_decks = self._purge_orphan_decks(summary)
        self._purge_stale_cards(summary, skip_decks=orphan_decks)

        for deck_id in self.dao.list_unindexed_deck_ids():
            try:
                summary.cards_reindexed += self.coordinator.reindex_deck(deck_id)
                summary.decks_reindexed += 1
            except CardStoreError as e:
                summary.failures.append(f"reindex {deck_id}: {e.message}")

        logger.log_reconcile("success" if summary.ok else "failed",
                             {k: v for k, v in summary.to_dict().items() if k != "failures"},
                             summary.failures)
        return summary

    def _purge_orphan_decks(self, summary: ReconciliationSummary) -> Set[str]:
        try:
            indexed_decks = self.vector_index.deck_ids()
        except CardStoreError as e:
            summary.failures.append(f"orphan scan: {e.message}")
            return set()

        orphans = indexed_decks - self.dao.existing_deck_ids(indexed_decks)
        for deck_id in sorted(orphans):
            try:
                removed = self.coordinator.purge_orphan(deck_id)
                summary.orphan_decks_purged += 1
                summary.orphan_records_removed += removed
            except CardStoreError as e:
                summary.failures.append(f"orphan {deck_id}: {e.message}")
        return orphans

    def _purge_stale_cards(self, summary: ReconciliationSummary, skip_decks: Set[str]) -> None:
        """Remove records whose card is gone from SQLite or belongs to a different deck."""
        try:
            refs = self.vector_index.card_refs()
        except CardStoreError as e:
            summary.failures.append(f"card scan: {e.message}")
            return

        owners = self.dao.card_deck_ids(refs)
        for card_id in sorted(refs):
            tagged = refs[card_id]
            if tagged in skip_decks or owners.get(card_id) == tagged:
                continue
            try:
                removed = self.coordinator.purge_stale_card(card_id, tagged)
            except CardStoreError as e:
                summary.failures.append(f"card {card_id}: {e.message}")
                continue
            if removed:
                summary.orphan_cards_purged += 1
                summary.orphan_records_removed += removed

    def rebuild(self) -> ReconciliationSummary:
        """Clear the index and re-embed every card from SQLite."""
        self.vector_index.clear()
        self.dao.mark_all_unindexed()
        logger.log_vector_operation("clear", "all", {"reason": "rebuild"})

        summary = ReconciliationSummary()
        for deck_id in self.dao.list_deck_ids():
            try:
                count = self.coordinator.reindex_deck(deck_id)
            except CardStoreError as e:
                summary.failures.append(f"reindex {deck_id}: {e.message}")
                continue
            if count:
                summary.decks_reindexed += 1
                summary.cards_reindexed += count

        for purge in self.dao.list_pending_purges():
            self.dao.clear_purge(purge.deck_id)

        logger.log_reconcile("rebuilt" if summary.ok else "failed",
                             {"decksReindexed": summary.decks_reindexed, "cardsReindexed": summary.cards_reindexed},
                             summary.failures)
        return summary
