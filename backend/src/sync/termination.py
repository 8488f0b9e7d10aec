"""
Finishing detection for events whose leaderboard has gone away.
"""

import logging
from typing import Optional

from config import Config
from storage.snapshot_store import SnapshotNotFound, SnapshotStore
from sync.models import EventSnapshot

logger = logging.getLogger(__name__)


class TerminationTracker:
    """Counts consecutive "no leaderboard" cycles and finishes the event."""

    def __init__(self, store: SnapshotStore, config: Config):
        self.store = store
        self.threshold = config.finishing_strike_threshold
        self.evict_placeholders = config.evict_finished_placeholders

    def record_no_data(self, event_id: int) -> Optional[EventSnapshot]:
        """
        Add a finishing strike to the event's snapshot.

        On the strike that reaches the threshold the event is marked finished
        and its counter cleared; a placeholder that never saw data is evicted
        instead of being kept as a permanent empty record.

        Returns:
            The snapshot as it now stands, or None if it does not exist (anymore)
        """
        try:
            snapshot = self.store.read(event_id)
        except SnapshotNotFound:
            logger.warning("No snapshot to record finishing strike on", extra={"event_id": event_id})
            return None

        if snapshot.finished:
            logger.warning("Finishing strike for an event already marked finished", extra={"event_id": event_id})
            return snapshot

        snapshot.finishing_strikes += 1
        if snapshot.finishing_strikes >= self.threshold:
            snapshot.finished = True
            snapshot.finishing_strikes = 0
            if snapshot.is_placeholder and self.evict_placeholders:
                self.store.evict(event_id)
                logger.info("Stopping updates, placeholder evicted", extra={"event_id": event_id})
                return None
            self.store.write(snapshot)
            logger.info("Stopping updates", extra={"event_id": event_id})
            return snapshot

        self.store.write(snapshot)
        logger.info(
            f"Update stopping check {snapshot.finishing_strikes}",
            extra={"event_id": event_id, "finishing_strikes": snapshot.finishing_strikes},
        )
        return snapshot
