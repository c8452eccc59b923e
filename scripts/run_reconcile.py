#!/usr/bin/env python3
"""
Reconciliation runner - repairs drift between SQLite and the vector index.

Runs one pass by default; ``--loop`` keeps running on the heartbeat schedule.
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from cardstore.core.config import get_reconcile_interval, validate_config
from cardstore.core.services import RECONCILE_TASK, build_services


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Reconcile the vector index with SQLite")
    parser.add_argument("--loop", action="store_true", help="keep running on the heartbeat schedule")
    parser.add_argument("--interval", type=int, default=None,
                        help="seconds between passes with --loop (default: RECONCILE_INTERVAL_SEC)")
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point for the reconcile script."""
    args = parse_args(argv)

    issues = validate_config()
    if issues:
        for issue in issues:
            print(f"❌ {issue}")
        sys.exit(1)

    services = build_services()
    try:
        if not services.vector_index.persistent:
            print("❌ Vector index is not persistent; reconcile through the running API (POST /reconcile) instead")
            sys.exit(1)

        if not args.loop:
            summary = services.reconciler.run()
            print(json.dumps(summary.to_dict(), indent=2))
            if not summary.ok:
                sys.exit(1)
            return

        interval = args.interval or get_reconcile_interval()
        services.heartbeat.register_task(RECONCILE_TASK, interval, services.reconciler.run)
        print(f"🏃 Reconciling every {interval} seconds (Ctrl+C to stop)")
        services.heartbeat.start(block=True)
    finally:
        services.close()


if __name__ == "__main__":
    main()
