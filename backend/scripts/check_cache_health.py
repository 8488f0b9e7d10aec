#!/usr/bin/env python3
"""
Check cache health by reading every snapshot document in the cache directory.
Shows each event's state and how long ago it was last updated.
Usage:
  python scripts/check_cache_health.py
  python scripts/check_cache_health.py --max-age-minutes 90
Exit code: 0 if every unfinished event with data was updated within --max-age-minutes, else 1.
"""

import sys
from pathlib import Path
from datetime import datetime, timezone

backend_dir = Path(__file__).resolve().parent.parent
for env_path in [backend_dir / ".env", backend_dir.parent / ".env"]:
    if env_path.exists():
        from dotenv import load_dotenv
        load_dotenv(env_path)
        break

sys.path.insert(0, str(backend_dir / "src"))


def main():
    import argparse
    parser = argparse.ArgumentParser(description="Check snapshot freshness in the cache directory")
    parser.add_argument("--max-age-minutes", type=int, default=75,
                        help="Consider an unfinished event stale after this many minutes (default 75)")
    args = parser.parse_args()

    from config import Config
    from storage.snapshot_store import SnapshotStore, SnapshotStoreError

    config = Config()
    store = SnapshotStore(config.cache_dir)
    ids = store.list_known_ids()
    if not ids:
        print("No snapshots in %s" % store.cache_dir)
        sys.exit(0)

    now = datetime.now(timezone.utc)
    stale = []
    for event_id in ids:
        try:
            snapshot = store.read(event_id)
        except SnapshotStoreError as e:
            print("%s: unreadable (%s)" % (event_id, e))
            stale.append(event_id)
            continue

        if snapshot.is_placeholder:
            print("%s: placeholder, strikes=%d" % (event_id, snapshot.finishing_strikes))
            continue
        if snapshot.finished:
            print("%s: finished, %d stages" % (event_id, snapshot.stage_count))
            continue

        age_min = None
        if snapshot.cache_time:
            last_dt = datetime.fromisoformat(snapshot.cache_time.replace("Z", "+00:00"))
            if last_dt.tzinfo is None:
                last_dt = last_dt.replace(tzinfo=timezone.utc)
            age_min = (now - last_dt).total_seconds() / 60
        print("%s: active, %d stages, %d restarters, updated %s%s" % (
            event_id,
            snapshot.stage_count,
            len(snapshot.restarters),
            "%.1f minutes ago" % age_min if age_min is not None else "never",
            ", last error: %s" % snapshot.last_error if snapshot.last_error else "",
        ))
        if age_min is None or age_min > args.max_age_minutes:
            stale.append(event_id)

    if stale:
        print("\nStale or unreadable events: %s" % ", ".join(str(i) for i in stale))
        sys.exit(1)

    print("\nCache appears healthy.")
    sys.exit(0)


if __name__ == "__main__":
    main()
