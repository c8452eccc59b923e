#!/usr/bin/env python3
"""
Index Rebuild Utility
Rebuilds the vector index from canonical SQLite decks and cards after corruption or lost vectors.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from cardstore.core.config import validate_config
from cardstore.core.services import build_services


def main():
    """Rebuild vector index from SQLite."""
    issues = validate_config()
    if issues:
        for issue in issues:
            print(f"ERROR: {issue}")
        sys.exit(1)

    services = build_services()
    try:
        if not services.vector_index.persistent:
            print("ERROR: vector index is not persistent; a rebuild here would be lost. Restart the API with REBUILD_ON_STARTUP instead")
            sys.exit(1)

        print("Starting vector index rebuild...")

        deck_count = services.dao.count_decks()
        card_count = services.dao.get_card_count()
        print(f"Found {deck_count} decks with {card_count} cards in canonical store")

        summary = services.reconciler.rebuild()

        for failure in summary.failures:
            print(f"ERROR: {failure}")

        print(f"✓ Re-embedded {summary.cards_reindexed} cards across {summary.decks_reindexed} decks")

        # Verify index
        vector_count = services.vector_index.count()
        if vector_count == summary.cards_reindexed:
            print(f"✓ Vector index holds {vector_count} records")
        else:
            print(f"WARNING: Vector index holds {vector_count} records, expected {summary.cards_reindexed}")

        if not summary.ok:
            sys.exit(1)

        print("Index rebuild complete!")
    finally:
        services.close()


if __name__ == "__main__":
    main()
