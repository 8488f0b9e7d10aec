from sync.models import Entry, EventSnapshot, StageSnapshot
from sync.restarts import detect_restarts, flagged_drivers

from fakes import snapshot_with_times


def test_driver_gaining_a_stage_is_not_flagged():
    previous = snapshot_with_times(1, {"D": [100]})
    current = snapshot_with_times(1, {"D": [100, 205]})
    assert flagged_drivers(previous, current) == set()
    assert detect_restarts(previous, current) == {}


def test_driver_losing_a_stage_is_flagged():
    previous = snapshot_with_times(1, {"D": [100, 205]})
    current = snapshot_with_times(1, {"D": [100]})
    assert detect_restarts(previous, current) == {"D": 1}


def test_changed_stage_time_is_flagged():
    previous = snapshot_with_times(1, {"D": ["03:10.000", "05:00.000"], "E": ["03:11.000"]})
    current = snapshot_with_times(1, {"D": ["03:10.000", "04:58.000"], "E": ["03:11.000"]})
    assert flagged_drivers(previous, current) == {"D"}


def test_counters_carry_forward():
    previous = snapshot_with_times(1, {"D": [100, 205], "E": [99]}, restarters={"D": 2, "E": 1})
    current = snapshot_with_times(1, {"D": [101], "E": [99]})
    assert detect_restarts(previous, current) == {"D": 3, "E": 1}


def test_new_driver_is_not_flagged():
    previous = snapshot_with_times(1, {"D": [100]})
    current = snapshot_with_times(1, {"D": [100], "N": [120]})
    assert detect_restarts(previous, current) == {}


def test_placeholder_has_nothing_to_compare():
    previous = snapshot_with_times(1, {})
    current = snapshot_with_times(1, {"D": [100, 205]})
    assert detect_restarts(previous, current) == {}


def _stage(*rows):
    entries = [
        Entry(position=pos, player_id=player_id, name=name, vehicle_name="Skoda Fabia", time=time, diff_first=None)
        for pos, (player_id, name, time) in enumerate(rows, start=1)
    ]
    return StageSnapshot(total=len(entries), entries=entries, times=[10])


def test_drivers_sharing_a_name_are_compared_separately():
    previous = EventSnapshot(id=1, stage_count=1, stage_data=[_stage((11, "Sam", "03:10.000"))])
    # A second "Sam" finishes later; the first Sam's time is unchanged
    current = EventSnapshot(id=1, stage_count=1, stage_data=[
        _stage((11, "Sam", "03:10.000"), (42, "Sam", "03:55.000")),
    ])
    assert flagged_drivers(previous, current) == set()
    assert detect_restarts(previous, current) == {}


def test_restart_counter_is_keyed_by_name():
    previous = EventSnapshot(id=1, stage_count=1, stage_data=[_stage((11, "Sam", "03:10.000"))])
    current = EventSnapshot(id=1, stage_count=1, stage_data=[_stage((11, "Sam", "03:12.000"))])
    assert detect_restarts(previous, current) == {"Sam": 1}
