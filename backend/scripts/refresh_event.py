#!/usr/bin/env python3
"""
Script to manually run one update cycle for one or more events.

Usage:
    python3 scripts/refresh_event.py 91822
    python3 scripts/refresh_event.py 91822 91823 --bootstrap
"""

import argparse
import asyncio
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from rally_api.client import RallyAPIClient
from storage.snapshot_store import SnapshotStore
from sync.orchestrator import UpdateOrchestrator, UpdateOutcome
from utils.logger import setup_logging


async def refresh_events(event_ids, bootstrap: bool):
    """Run a single update cycle per event, one event at a time."""
    config = Config()
    setup_logging(config)

    store = SnapshotStore(config.cache_dir)
    failed = False
    async with RallyAPIClient(config) as client:
        orchestrator = UpdateOrchestrator(config, client, store)
        try:
            for event_id in event_ids:
                if bootstrap and not store.exists(event_id):
                    store.write_placeholder(event_id)
                    print(f"Wrote placeholder for {event_id}")
                outcome = await orchestrator.request(event_id)
                print(f"{event_id}: {outcome.value}")
                failed = failed or outcome != UpdateOutcome.COMMITTED
        finally:
            # Pending retries are not awaited from a one-shot run
            await orchestrator.shutdown()
    return failed


def main():
    parser = argparse.ArgumentParser(description="Run one cache update per event")
    parser.add_argument("event_ids", nargs="+", type=int, help="Event IDs to update")
    parser.add_argument(
        "--bootstrap",
        action="store_true",
        help="Write a placeholder first for events not in the cache yet",
    )
    args = parser.parse_args()

    failed = asyncio.run(refresh_events(args.event_ids, args.bootstrap))
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
