"""
Leaderboard data model.

Typed views of the remote API pages and of the persisted per-event snapshot
document. Stage 0 (the event overview) is kept as its own type so it can
never end up in an event's stage list.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

NO_DATA_YET = "No data yet"


@dataclass
class Entry:
    """One driver row of a stage leaderboard."""

    position: int
    player_id: int
    name: str
    vehicle_name: str
    time: Any
    diff_first: Any

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "Entry":
        return cls(
            position=raw["Position"],
            player_id=raw["PlayerId"],
            name=raw["Name"],
            vehicle_name=raw.get("VehicleName"),
            time=raw.get("Time"),
            diff_first=raw.get("DiffFirst"),
        )

    def to_dict(self) -> Dict[str, Any]:
        # Same keys as the upstream API so cache clients read one shape
        return {
            "Position": self.position,
            "PlayerId": self.player_id,
            "Name": self.name,
            "VehicleName": self.vehicle_name,
            "Time": self.time,
            "DiffFirst": self.diff_first,
        }


@dataclass
class RawPage:
    """One page of one stage's leaderboard as returned by the API."""

    stage: int
    page: int
    pages: int
    total: int
    total_stages: int
    entries: List[Entry] = field(default_factory=list)
    elapsed_ms: int = 0

    @property
    def has_data(self) -> bool:
        return self.pages > 0


@dataclass
class OverviewResult:
    """Stage 0 response: only tells us how many stages the event has."""

    stage_count: int
    pages: int
    elapsed_ms: int = 0

    @classmethod
    def from_page(cls, page: RawPage) -> "OverviewResult":
        return cls(stage_count=page.total_stages, pages=page.pages, elapsed_ms=page.elapsed_ms)


@dataclass
class StageSnapshot:
    """Merged leaderboard of one stage."""

    total: int
    entries: List[Entry] = field(default_factory=list)
    times: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "entries": [entry.to_dict() for entry in self.entries],
            "times": list(self.times),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageSnapshot":
        return cls(
            total=data.get("total", 0),
            entries=[Entry.from_api(e) for e in data.get("entries", [])],
            times=list(data.get("times", [])),
        )


@dataclass
class EventSnapshot:
    """
    The persisted document for one event.

    A bootstrap placeholder is an EventSnapshot with ``error`` set and no stage
    data; it exists between the first client request for an unknown event and
    the first successful update.
    """

    id: int
    stage_count: int = 0
    stage_data: List[StageSnapshot] = field(default_factory=list)
    request_count: int = 0
    total_time: int = 0
    actual_time: int = 0
    cache_time: Optional[str] = None
    finished: bool = False
    finishing_strikes: int = 0
    restarters: Dict[str, int] = field(default_factory=dict)
    last_error: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def placeholder(cls, event_id: int) -> "EventSnapshot":
        return cls(id=event_id, error=NO_DATA_YET)

    @property
    def is_placeholder(self) -> bool:
        return self.error is not None

    @property
    def is_complete(self) -> bool:
        return len(self.stage_data) == self.stage_count

    def to_dict(self) -> Dict[str, Any]:
        if self.is_placeholder:
            data: Dict[str, Any] = {"id": self.id, "error": self.error}
            if self.finishing_strikes:
                data["finishingStrikes"] = self.finishing_strikes
            if self.finished:
                data["finished"] = True
            return data
        return {
            "id": self.id,
            "stageCount": self.stage_count,
            "stageData": [stage.to_dict() for stage in self.stage_data],
            "requestCount": self.request_count,
            "totalTime": self.total_time,
            "actualTime": self.actual_time,
            "cacheTime": self.cache_time,
            "finished": self.finished,
            "finishingStrikes": self.finishing_strikes,
            "restarters": dict(self.restarters),
            "lastError": self.last_error,
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Document as served to clients; internal failure detail stays on disk."""
        data = self.to_dict()
        data.pop("lastError", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], event_id: Optional[int] = None) -> "EventSnapshot":
        return cls(
            id=data.get("id", event_id),
            stage_count=data.get("stageCount", 0),
            stage_data=[StageSnapshot.from_dict(s) for s in data.get("stageData", [])],
            request_count=data.get("requestCount", 0),
            total_time=data.get("totalTime", 0),
            actual_time=data.get("actualTime", 0),
            cache_time=data.get("cacheTime"),
            finished=bool(data.get("finished", False)),
            finishing_strikes=data.get("finishingStrikes", 0),
            restarters=dict(data.get("restarters") or {}),
            last_error=data.get("lastError"),
            error=data.get("error"),
        )
