"""Leaderboard builders and a scripted page fetcher shared by the tests."""

import asyncio
from typing import Dict, List, Optional, Tuple, Union

from sync.models import Entry, EventSnapshot, RawPage, StageSnapshot


def driver_entries(first: int, last: int, time_offset: int = 0) -> List[Entry]:
    """Entries for players first..last (inclusive), named "Driver <n>"."""
    return [
        Entry(
            position=n,
            player_id=n,
            name=f"Driver {n}",
            vehicle_name="Ford Fiesta RS Rally",
            time=f"04:{n % 60:02d}.{time_offset:03d}",
            diff_first=f"+00:{n % 60:02d}.000",
        )
        for n in range(first, last + 1)
    ]


def page(stage: int, page_no: int, pages: int, total: int, entries: List[Entry], total_stages: int = 0) -> RawPage:
    return RawPage(
        stage=stage,
        page=page_no,
        pages=pages,
        total=total,
        total_stages=total_stages,
        entries=entries,
        elapsed_ms=10 * page_no,
    )


def overview(total_stages: int) -> RawPage:
    return page(0, 1, 1, 0, [], total_stages=total_stages)


def no_data(stage: int, page_no: int = 1) -> RawPage:
    return page(stage, page_no, 0, 0, [])


def event_91822_pages(stage2_total: int = 50) -> Dict[Tuple[int, int], RawPage]:
    """Two stages: stage 1 on one page of 50, stage 2 on two pages (30 + rest)."""
    return {
        (0, 1): overview(2),
        (1, 1): page(1, 1, 1, 50, driver_entries(1, 50), total_stages=2),
        (2, 1): page(2, 1, 2, stage2_total, driver_entries(1, 30), total_stages=2),
        (2, 2): page(2, 2, 2, stage2_total, driver_entries(31, stage2_total), total_stages=2),
    }


def snapshot_with_times(event_id: int, times: Dict[str, List], restarters: Optional[Dict[str, int]] = None) -> EventSnapshot:
    """Snapshot where times[name][i] is the driver's time on stage i + 1."""
    stage_count = max((len(t) for t in times.values()), default=0)
    stages = []
    for index in range(stage_count):
        entries = [
            Entry(position=pos, player_id=pos, name=name, vehicle_name="Lancia Delta HF", time=t[index], diff_first=None)
            for pos, (name, t) in enumerate(sorted(times.items()), start=1)
            if len(t) > index
        ]
        stages.append(StageSnapshot(total=len(entries), entries=entries, times=[10]))
    return EventSnapshot(
        id=event_id,
        stage_count=stage_count,
        stage_data=stages,
        restarters=dict(restarters or {}),
    )


class FakeFetcher:
    """Serves scripted pages keyed by (stage, page); exceptions are raised."""

    def __init__(self, pages: Dict[Tuple[int, int], Union[RawPage, Exception]], gate: Optional[asyncio.Event] = None):
        self.pages = pages
        self.gate = gate
        self.calls: List[Tuple[int, int, int]] = []

    async def fetch_page(self, event_id: int, stage: int, page: int) -> RawPage:
        self.calls.append((event_id, stage, page))
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        result = self.pages[(stage, page)]
        if isinstance(result, Exception):
            raise result
        return result
