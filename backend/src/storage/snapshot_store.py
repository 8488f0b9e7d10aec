"""
File-backed snapshot store.

One JSON document per event id, ``<cache_dir>/<id>.json``. Writes replace the
whole document via a temp file and an atomic rename.
"""

import json
import logging
from pathlib import Path
from typing import List, Union

from sync.models import EventSnapshot

logger = logging.getLogger(__name__)


class SnapshotStoreError(Exception):
    """Base exception for snapshot store errors."""

    def __init__(self, event_id: int, message: str):
        super().__init__(message)
        self.event_id = event_id


class SnapshotNotFound(SnapshotStoreError):
    """No document exists for the event."""


class SnapshotCorrupt(SnapshotStoreError):
    """The document exists but cannot be decoded."""


class SnapshotWriteError(SnapshotStoreError):
    """Writing or removing the document failed."""


class SnapshotImmutable(SnapshotStoreError):
    """The stored document is finished and may only be evicted."""


class SnapshotStore:
    """Reads and writes per-event snapshot documents."""

    def __init__(self, cache_dir: Union[str, Path]):
        self.cache_dir = Path(cache_dir)

    def path_for(self, event_id: int) -> Path:
        return self.cache_dir / f"{event_id}.json"

    def exists(self, event_id: int) -> bool:
        return self.path_for(event_id).exists()

    def read(self, event_id: int) -> EventSnapshot:
        """
        Load the snapshot for an event.

        Raises:
            SnapshotNotFound: No document for this id
            SnapshotCorrupt: Document is not a JSON object
        """
        path = self.path_for(event_id)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise SnapshotNotFound(event_id, f"No snapshot for event {event_id}") from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SnapshotCorrupt(event_id, f"Snapshot for event {event_id} is not valid JSON: {e}") from e
        except OSError as e:
            raise SnapshotCorrupt(event_id, f"Snapshot for event {event_id} unreadable: {e}") from e

        if not isinstance(data, dict):
            raise SnapshotCorrupt(event_id, f"Snapshot for event {event_id} is not an object")

        try:
            return EventSnapshot.from_dict(data, event_id=event_id)
        except (KeyError, TypeError, AttributeError) as e:
            raise SnapshotCorrupt(event_id, f"Snapshot for event {event_id} has bad shape: {e}") from e

    def write(self, snapshot: EventSnapshot) -> Path:
        """
        Replace the stored document for ``snapshot.id``.

        Raises:
            SnapshotImmutable: The stored document is already finished
            SnapshotWriteError: Filesystem failure
        """
        event_id = snapshot.id
        try:
            current = self.read(event_id)
        except SnapshotNotFound:
            current = None
        except SnapshotCorrupt:
            # A corrupt document may be replaced
            current = None
        if current is not None and current.finished:
            raise SnapshotImmutable(event_id, f"Snapshot for event {event_id} is finished")

        path = self.path_for(event_id)
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_dict(), f)
            tmp_path.replace(path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise SnapshotWriteError(event_id, f"Failed to write snapshot for event {event_id}: {e}") from e

        logger.debug("Snapshot written", extra={"event_id": event_id, "path": str(path)})
        return path

    def write_placeholder(self, event_id: int) -> Path:
        """Write the bootstrap document for an event we have no data for yet."""
        return self.write(EventSnapshot.placeholder(event_id))

    def evict(self, event_id: int) -> bool:
        """
        Remove the document for an event.

        Returns:
            True if a document was removed, False if none existed
        """
        path = self.path_for(event_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise SnapshotWriteError(event_id, f"Failed to evict snapshot for event {event_id}: {e}") from e
        logger.info("Snapshot evicted", extra={"event_id": event_id})
        return True

    def list_known_ids(self) -> List[int]:
        """Ids of every stored document, ascending."""
        if not self.cache_dir.is_dir():
            return []
        ids = []
        for path in self.cache_dir.glob("*.json"):
            try:
                event_id = int(path.stem)
            except ValueError:
                logger.warning("Ignoring non-event file in cache", extra={"file": path.name})
                continue
            if event_id <= 0:
                logger.warning("Ignoring non-event file in cache", extra={"file": path.name})
                continue
            ids.append(event_id)
        return sorted(ids)
