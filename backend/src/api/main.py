"""
Serving layer: exposes cached event snapshots read-only, one document per event id.

A request for an event we have never seen writes a placeholder document and
starts the first update in the background.
"""

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storage.snapshot_store import SnapshotCorrupt, SnapshotNotFound, SnapshotStore, SnapshotStoreError
from sync.models import NO_DATA_YET
from sync.orchestrator import UpdateOrchestrator

logger = logging.getLogger(__name__)


def _parse_event_id(raw: str):
    if not raw.isdigit():
        return None
    event_id = int(raw)
    return event_id if event_id > 0 else None


def create_app(store: SnapshotStore, orchestrator: UpdateOrchestrator) -> FastAPI:
    """Build the API bound to one store and the process's orchestrator."""
    app = FastAPI(title="Rally Leaderboard Cache", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _bootstrap(event_id: int) -> JSONResponse:
        try:
            store.write_placeholder(event_id)
        except SnapshotStoreError as e:
            logger.error("Failed to write placeholder", extra={"event_id": event_id, "error": str(e)})
            return JSONResponse(status_code=500, content={"error": "Snapshot unavailable"})
        logger.info("New event requested", extra={"event_id": event_id})
        orchestrator.schedule(event_id)
        return JSONResponse(status_code=202, content={"error": NO_DATA_YET})

    @app.get("/")
    def index():
        return {"status": "OK", "in_flight": len(orchestrator.in_flight)}

    @app.get("/{event_id}")
    async def get_event(event_id: str):
        """Cached snapshot for one event; never waits on the remote API."""
        parsed = _parse_event_id(event_id)
        if parsed is None:
            return JSONResponse(status_code=400, content={"error": "Invalid ID parameter"})

        loop = asyncio.get_running_loop()
        try:
            try:
                snapshot = await loop.run_in_executor(None, store.read, parsed)
            except SnapshotNotFound:
                # Check and bootstrap on the loop thread, where commits run, so none lands in between
                if not store.exists(parsed):
                    return _bootstrap(parsed)
                snapshot = store.read(parsed)
        except SnapshotCorrupt as e:
            logger.error("Unreadable snapshot requested", extra={"event_id": parsed, "error": str(e)})
            return JSONResponse(status_code=500, content={"error": "Snapshot unavailable"})

        if snapshot.is_placeholder:
            return JSONResponse(status_code=202, content={"error": NO_DATA_YET})
        return snapshot.to_public_dict()

    return app
