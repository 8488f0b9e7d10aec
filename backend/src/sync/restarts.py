"""
Restart detection between two snapshots of the same event.

A driver who re-runs a stage shows up as a changed stage time, or as fewer
timed stages than before. Both snapshots are plain data; nothing here touches
the network or the filesystem.
"""

from typing import Any, Dict, Set, Tuple

from sync.models import EventSnapshot


def _stage_times(snapshot: EventSnapshot) -> Tuple[Dict[int, Dict[int, Any]], Dict[int, str]]:
    """
    Per-driver stage times keyed by player id.

    Returns:
        ({player id: {stage index (1-based): recorded time}}, {player id: display name})
    """
    times: Dict[int, Dict[int, Any]] = {}
    names: Dict[int, str] = {}
    for index, stage in enumerate(snapshot.stage_data, start=1):
        for entry in stage.entries:
            times.setdefault(entry.player_id, {})[index] = entry.time
            names[entry.player_id] = entry.name
    return times, names


def is_restart(previous_times: Dict[int, Any], current_times: Dict[int, Any]) -> bool:
    if len(current_times) < len(previous_times):
        return True
    for stage, time in previous_times.items():
        if current_times.get(stage) != time:
            return True
    return False


def flagged_drivers(previous: EventSnapshot, current: EventSnapshot) -> Set[str]:
    """Names of the drivers whose stage times show a restart."""
    previous_times, previous_names = _stage_times(previous)
    current_times, current_names = _stage_times(current)
    flagged = set()
    for player_id in set(previous_times) | set(current_times):
        if is_restart(previous_times.get(player_id, {}), current_times.get(player_id, {})):
            flagged.add(current_names.get(player_id) or previous_names[player_id])
    return flagged


def detect_restarts(previous: EventSnapshot, current: EventSnapshot) -> Dict[str, int]:
    """
    Restart counters for ``current``, carried forward from ``previous``.

    Flagged drivers get their previous count plus one; everyone else keeps
    whatever count they already had. Counters are keyed by driver name.
    """
    restarters = dict(previous.restarters)
    for name in flagged_drivers(previous, current):
        restarters[name] = restarters.get(name, 0) + 1
    return restarters
