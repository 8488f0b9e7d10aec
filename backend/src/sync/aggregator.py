"""
Stage aggregation for one event.

Fetches the overview page, then every stage's leaderboard (all pages), merges
the pages of each stage and validates the result before handing back an
EventSnapshot draft. Nothing is persisted here.
"""

import asyncio
import logging
from typing import List, Optional, Protocol

from config import Config
from rally_api.client import RallyAPIError
from sync.models import EventSnapshot, OverviewResult, RawPage, StageSnapshot

logger = logging.getLogger(__name__)

OVERVIEW_STAGE = 0


class PageFetcher(Protocol):
    async def fetch_page(self, event_id: int, stage: int, page: int) -> RawPage:
        ...


class AggregationError(Exception):
    """Base exception for aggregation failures."""

    def __init__(self, event_id: int, message: str):
        super().__init__(message)
        self.event_id = event_id


class NoDataYet(AggregationError):
    """The event has no leaderboard at all (overview or stage 1 reports no pages)."""


class StageNotReady(AggregationError):
    """A stage after the first has not been published yet; the cycle is incomplete."""

    def __init__(self, event_id: int, stage: int, page: int = 1):
        super().__init__(event_id, f"Stage {stage} page {page} of event {event_id} has no leaderboard yet")
        self.stage = stage
        self.page = page


class InvalidAggregation(AggregationError):
    """The collected leaderboard is structurally inconsistent."""

    def __init__(self, event_id: int, stage: int, reason: str):
        super().__init__(event_id, f"Stage {stage} of event {event_id} is invalid: {reason}")
        self.stage = stage
        self.reason = reason


class AggregationFetchError(AggregationError):
    """A page request failed."""

    def __init__(self, event_id: int, error: RallyAPIError):
        super().__init__(event_id, f"Fetch failed for event {event_id}: {error}")
        self.error = error


class _StageResult:
    """Pages of one stage, in page order, as they came back."""

    def __init__(self, stage: int, pages: List[RawPage]):
        self.stage = stage
        self.pages = pages

    @property
    def declared_pages(self) -> int:
        return self.pages[0].pages

    @property
    def declared_total(self) -> int:
        return self.pages[0].total


def merge_pages(pages: List[RawPage]) -> StageSnapshot:
    """Concatenate page entries in page order, keeping the first row per player."""
    seen = set()
    entries = []
    for page in sorted(pages, key=lambda p: p.page):
        for entry in page.entries:
            if entry.player_id in seen:
                continue
            seen.add(entry.player_id)
            entries.append(entry)
    return StageSnapshot(
        total=pages[0].total,
        entries=entries,
        times=[page.elapsed_ms for page in sorted(pages, key=lambda p: p.page)],
    )


def validate_stage(
    event_id: int,
    stage: int,
    snapshot: StageSnapshot,
    first_total: int,
    previous_total: Optional[int],
):
    """
    Structural checks for one merged stage.

    Raises:
        InvalidAggregation: On the first failed check
    """
    if len(snapshot.entries) != snapshot.total:
        raise InvalidAggregation(
            event_id, stage,
            f"{len(snapshot.entries)} entries but leaderboard total is {snapshot.total}"
        )
    if snapshot.total < first_total:
        raise InvalidAggregation(
            event_id, stage,
            f"total {snapshot.total} is below stage 1 total {first_total}"
        )
    if previous_total is not None and snapshot.total > previous_total:
        raise InvalidAggregation(
            event_id, stage,
            f"total {snapshot.total} exceeds previous stage total {previous_total}"
        )


class StageAggregator:
    """Collects and validates every stage of one event."""

    def __init__(self, fetcher: PageFetcher, config: Config):
        self.fetcher = fetcher
        self.config = config

    async def fetch_overview(self, event_id: int) -> OverviewResult:
        try:
            page = await self.fetcher.fetch_page(event_id, OVERVIEW_STAGE, 1)
        except RallyAPIError as e:
            raise AggregationFetchError(event_id, e) from e
        overview = OverviewResult.from_page(page)
        if overview.pages == 0:
            raise NoDataYet(event_id, f"Event {event_id} has no leaderboard yet")
        return overview

    async def _fetch_stage(self, event_id: int, stage: int, delay: float) -> _StageResult:
        """One stage: page 1, then the remaining pages concurrently."""
        if delay > 0:
            await asyncio.sleep(delay)

        first = await self.fetcher.fetch_page(event_id, stage, 1)
        if not first.has_data:
            if stage == 1:
                raise NoDataYet(event_id, f"Stage 1 of event {event_id} has no leaderboard yet")
            raise StageNotReady(event_id, stage)
        if first.pages == 1:
            return _StageResult(stage, [first])

        # Join on every page before looking at any failure
        rest = await asyncio.gather(
            *(
                self.fetcher.fetch_page(event_id, stage, page)
                for page in range(2, first.pages + 1)
            ),
            return_exceptions=True,
        )
        for page in rest:
            if isinstance(page, BaseException):
                raise page
        for page in rest:
            if not page.has_data:
                raise StageNotReady(event_id, stage, page.page)
        return _StageResult(stage, [first, *rest])

    async def aggregate(self, event_id: int) -> EventSnapshot:
        """
        Build a validated snapshot draft for an event.

        Raises:
            NoDataYet: Event (or its first stage) has no leaderboard
            StageNotReady: A later stage has no leaderboard yet
            InvalidAggregation: Page counts or entry counts are inconsistent
            AggregationFetchError: A page request failed
        """
        overview = await self.fetch_overview(event_id)
        stage_count = overview.stage_count
        if stage_count <= 0:
            raise InvalidAggregation(event_id, OVERVIEW_STAGE, f"overview reports {stage_count} stages")
        logger.debug("Overview fetched", extra={"event_id": event_id, "stage_count": stage_count})

        stagger = self.config.stage_request_stagger_seconds
        results = await asyncio.gather(
            *(
                self._fetch_stage(event_id, stage, (stage - 1) * stagger)
                for stage in range(1, stage_count + 1)
            ),
            return_exceptions=True,
        )

        # Every stage has resolved; pick the outcome by precedence
        stage_results: List[_StageResult] = []
        not_ready: Optional[StageNotReady] = None
        no_data: Optional[NoDataYet] = None
        for result in results:
            if isinstance(result, RallyAPIError):
                raise AggregationFetchError(event_id, result) from result
            if isinstance(result, NoDataYet):
                no_data = result
            elif isinstance(result, StageNotReady):
                not_ready = not_ready or result
            elif isinstance(result, BaseException):
                raise result
            else:
                stage_results.append(result)
        if no_data is not None:
            raise no_data
        if not_ready is not None:
            raise not_ready

        return self._build_draft(event_id, stage_count, stage_results)

    def _build_draft(self, event_id: int, stage_count: int, stage_results: List[_StageResult]) -> EventSnapshot:
        stage_data: List[StageSnapshot] = []
        request_count = 0
        total_time = 0
        first_total: Optional[int] = None
        previous_total: Optional[int] = None

        for result in sorted(stage_results, key=lambda r: r.stage):
            for page in result.pages[1:]:
                if page.pages != result.declared_pages:
                    raise InvalidAggregation(
                        event_id, result.stage,
                        f"page {page.page} reports {page.pages} pages, page 1 reported {result.declared_pages}"
                    )

            snapshot = merge_pages(result.pages)
            if first_total is None:
                first_total = snapshot.total
            validate_stage(event_id, result.stage, snapshot, first_total, previous_total)
            previous_total = snapshot.total

            stage_data.append(snapshot)
            request_count += len(result.pages)
            total_time += sum(snapshot.times)

        return EventSnapshot(
            id=event_id,
            stage_count=stage_count,
            stage_data=stage_data,
            request_count=request_count,
            total_time=total_time,
        )
