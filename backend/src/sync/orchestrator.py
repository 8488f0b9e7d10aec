"""
Update Orchestrator - Coordinates per-event cache updates.

Owns the in-flight lease for each event, drives the stage aggregator, decides
between commit, retry and abandon, and runs the periodic sweep over every
cached event.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Set

from config import Config
from storage.snapshot_store import (
    SnapshotCorrupt,
    SnapshotNotFound,
    SnapshotStore,
    SnapshotStoreError,
)
from sync.aggregator import (
    AggregationFetchError,
    InvalidAggregation,
    NoDataYet,
    PageFetcher,
    StageAggregator,
    StageNotReady,
)
from sync.models import EventSnapshot
from sync.restarts import detect_restarts
from sync.termination import TerminationTracker

logger = logging.getLogger(__name__)


class UpdateState(Enum):
    """Update state enumeration."""
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    COMMITTED = "committed"  # New snapshot written
    RETRYING = "retrying"  # Leaderboard inconsistent, retry scheduled
    ABANDONED = "abandoned"  # Nothing written this cycle; next sweep tries again


class UpdateOutcome(Enum):
    """Result of one update request."""
    COMMITTED = "committed"
    RETRYING = "retrying"
    ABANDONED = "abandoned"
    ALREADY_IN_FLIGHT = "already_in_flight"


_OUTCOME_STATE = {
    UpdateOutcome.COMMITTED: UpdateState.COMMITTED,
    UpdateOutcome.RETRYING: UpdateState.RETRYING,
    UpdateOutcome.ABANDONED: UpdateState.ABANDONED,
}


class UpdateOrchestrator:
    """Orchestrates event cache updates."""

    def __init__(self, config: Config, fetcher: PageFetcher, store: SnapshotStore):
        self.config = config
        self.store = store
        self.aggregator = StageAggregator(fetcher, config)
        self.termination = TerminationTracker(store, config)
        self.running = False
        # Events with an update currently running; the only state shared between updates
        self.in_flight: Set[int] = set()
        self.last_states: Dict[int, UpdateState] = {}
        # Consecutive invalid cycles per event (reset on any other outcome)
        self._invalid_counts: Dict[int, int] = {}
        self._retry_tasks: Dict[int, asyncio.Task] = {}
        self._background_tasks: Set[asyncio.Task] = set()

    def is_in_flight(self, event_id: int) -> bool:
        return event_id in self.in_flight

    def state_of(self, event_id: int) -> UpdateState:
        if event_id in self.in_flight:
            return UpdateState.IN_FLIGHT
        return self.last_states.get(event_id, UpdateState.IDLE)

    async def request(self, event_id: int) -> UpdateOutcome:
        """
        Run one update cycle for an event.

        A request for an event that already has an update running is a no-op;
        the running update owns completion.

        Returns:
            Outcome of the cycle
        """
        # No await between test and insert: atomic under the event loop
        if event_id in self.in_flight:
            logger.debug("Update already in flight", extra={"event_id": event_id})
            return UpdateOutcome.ALREADY_IN_FLIGHT
        self.in_flight.add(event_id)

        outcome = UpdateOutcome.ABANDONED
        try:
            outcome = await self._run_update(event_id)
            return outcome
        finally:
            self.in_flight.discard(event_id)
            self.last_states[event_id] = _OUTCOME_STATE[outcome]
            if outcome != UpdateOutcome.RETRYING:
                self._invalid_counts.pop(event_id, None)

    async def _run_update(self, event_id: int) -> UpdateOutcome:
        started = time.monotonic()
        logger.info("Updating cache", extra={"event_id": event_id})

        try:
            draft = await self.aggregator.aggregate(event_id)
        except NoDataYet as e:
            logger.info("No leaderboard yet", extra={"event_id": event_id, "error": str(e)})
            try:
                self.termination.record_no_data(event_id)
            except SnapshotStoreError as store_error:
                logger.error("Failed to record finishing strike", extra={
                    "event_id": event_id,
                    "error": str(store_error)
                })
            return UpdateOutcome.ABANDONED
        except InvalidAggregation as e:
            logger.warning("Leaderboard inconsistent", extra={
                "event_id": event_id,
                "stage": e.stage,
                "error": e.reason
            })
            self._record_error(event_id, str(e))
            return self._schedule_retry(event_id)
        except StageNotReady as e:
            logger.info("Stage not published yet, update incomplete", extra={
                "event_id": event_id,
                "stage": e.stage
            })
            self._record_error(event_id, str(e))
            return UpdateOutcome.ABANDONED
        except AggregationFetchError as e:
            logger.warning("Leaderboard fetch failed", extra={
                "event_id": event_id,
                "error": str(e.error),
                "error_type": type(e.error).__name__
            })
            self._record_error(event_id, str(e))
            return UpdateOutcome.ABANDONED

        return self._commit(event_id, draft, started)

    def _commit(self, event_id: int, draft: EventSnapshot, started: float) -> UpdateOutcome:
        try:
            previous: Optional[EventSnapshot] = self.store.read(event_id)
        except SnapshotNotFound:
            previous = None
        except SnapshotCorrupt as e:
            logger.warning("Previous snapshot unreadable, restarts not tracked this cycle", extra={
                "event_id": event_id,
                "error": str(e)
            })
            previous = None

        if previous is not None and previous.finished:
            logger.warning("Event already finished, not committing", extra={"event_id": event_id})
            return UpdateOutcome.ABANDONED

        if previous is not None:
            draft.restarters = detect_restarts(previous, draft)

        draft.actual_time = int((time.monotonic() - started) * 1000)
        draft.cache_time = datetime.now(timezone.utc).isoformat()

        if not draft.is_complete:
            logger.error("Refusing to commit incomplete snapshot", extra={
                "event_id": event_id,
                "stage_count": draft.stage_count,
                "stages_collected": len(draft.stage_data)
            })
            return UpdateOutcome.ABANDONED

        try:
            self.store.write(draft)
        except SnapshotStoreError as e:
            logger.error("Snapshot commit failed", extra={"event_id": event_id, "error": str(e)})
            return UpdateOutcome.ABANDONED

        logger.info(
            f"Log updated for {event_id} in {draft.actual_time} ms with {draft.request_count} requests",
            extra={
                "event_id": event_id,
                "actual_time_ms": draft.actual_time,
                "request_count": draft.request_count,
                "restarters": len(draft.restarters)
            }
        )
        return UpdateOutcome.COMMITTED

    def _record_error(self, event_id: int, message: str):
        """Note the failure on the stored snapshot; never creates or finishes a document."""
        try:
            snapshot = self.store.read(event_id)
        except SnapshotStoreError:
            return
        if snapshot.finished or snapshot.is_placeholder:
            return
        snapshot.last_error = message
        try:
            self.store.write(snapshot)
        except SnapshotStoreError as e:
            logger.warning("Failed to record update error", extra={"event_id": event_id, "error": str(e)})

    def _schedule_retry(self, event_id: int) -> UpdateOutcome:
        attempts = self._invalid_counts.get(event_id, 0) + 1
        if attempts > self.config.max_invalid_retries:
            logger.warning("Giving up on inconsistent leaderboard until next sweep", extra={
                "event_id": event_id,
                "attempts": attempts
            })
            return UpdateOutcome.ABANDONED
        self._invalid_counts[event_id] = attempts

        existing = self._retry_tasks.get(event_id)
        if existing is not None and not existing.done():
            return UpdateOutcome.RETRYING

        delay = self.config.invalid_retry_delay_seconds
        logger.info("Retry scheduled", extra={"event_id": event_id, "delay": delay, "attempt": attempts})
        task = asyncio.create_task(self._retry_after(event_id, delay))
        self._retry_tasks[event_id] = task
        # Tracked until done, including after it drops out of _retry_tasks and runs
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return UpdateOutcome.RETRYING

    async def _retry_after(self, event_id: int, delay: float):
        try:
            await asyncio.sleep(delay)
            # This task is the retry; drop the handle so the next cycle can schedule its own
            self._retry_tasks.pop(event_id, None)
            await self.request(event_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Retry failed", extra={"event_id": event_id, "error": str(e)}, exc_info=True)

    def schedule(self, event_id: int) -> Optional[asyncio.Task]:
        """
        Start an update in the background.

        Returns:
            The task, or None when an update for the event is already running
        """
        if event_id in self.in_flight:
            return None
        task = asyncio.create_task(self.request(event_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task):
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background update failed", extra={
                "error": str(exc),
                "error_type": type(exc).__name__
            }, exc_info=exc)

    async def sweep_once(self) -> int:
        """
        Request an update for every cached event that is not finished.

        Returns:
            Number of updates started
        """
        logger.info("Looking for events to update")
        started = 0
        for event_id in self.store.list_known_ids():
            try:
                snapshot = self.store.read(event_id)
            except SnapshotNotFound:
                continue
            except SnapshotCorrupt as e:
                logger.error("Skipping unreadable snapshot", extra={"event_id": event_id, "error": str(e)})
                continue
            if snapshot.finished:
                continue

            if self.schedule(event_id) is not None:
                started += 1
                await asyncio.sleep(self.config.event_stagger_seconds)

        logger.info("Sweep dispatched", extra={"updates_started": started})
        return started

    async def run_sweep_loop(self):
        """Sweep every sweep_interval_seconds until shutdown."""
        logger.info("Sweep loop started", extra={"interval": self.config.sweep_interval_seconds})
        self.running = True
        while self.running:
            try:
                await self.sweep_once()
                await asyncio.sleep(self.config.sweep_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Sweep loop error", extra={"error": str(e)}, exc_info=True)
                await asyncio.sleep(60)

    async def shutdown(self):
        """Cancel pending and running retries and background updates."""
        logger.info("Orchestrator shutting down")
        self.running = False

        # A cycle finishing during cancellation can still schedule a retry; drain until none are left
        pending = {t for t in [*self._retry_tasks.values(), *self._background_tasks] if not t.done()}
        while pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            pending = {t for t in [*self._retry_tasks.values(), *self._background_tasks] if not t.done()}
        self._retry_tasks.clear()

        logger.info("Orchestrator stopped")
