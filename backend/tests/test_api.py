import threading

from fastapi.testclient import TestClient

from api.main import create_app
from storage.snapshot_store import SnapshotNotFound, SnapshotStore

from fakes import snapshot_with_times


class _RecordingOrchestrator:
    def __init__(self):
        self.in_flight = set()
        self.scheduled = []

    def schedule(self, event_id):
        self.scheduled.append(event_id)
        return None


def make_client(store):
    orchestrator = _RecordingOrchestrator()
    return TestClient(create_app(store, orchestrator)), orchestrator


def test_index(store):
    client, _ = make_client(store)
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json() == {"status": "OK", "in_flight": 0}


def test_invalid_id(store):
    client, orchestrator = make_client(store)
    for raw in ("abc", "0", "-3"):
        resp = client.get(f"/{raw}")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid ID parameter"}
    assert orchestrator.scheduled == []


def test_unknown_event_bootstraps_and_triggers_update(store):
    client, orchestrator = make_client(store)

    resp = client.get("/91822")

    assert resp.status_code == 202
    assert resp.json() == {"error": "No data yet"}
    assert store.read(91822).is_placeholder
    assert orchestrator.scheduled == [91822]


def test_placeholder_is_not_ready(store):
    store.write_placeholder(91822)
    client, orchestrator = make_client(store)

    resp = client.get("/91822")

    assert resp.status_code == 202
    assert resp.json() == {"error": "No data yet"}
    assert orchestrator.scheduled == []


def test_cached_snapshot_is_served_without_error_detail(store):
    snapshot = snapshot_with_times(91822, {"Alice": ["03:10.000"], "Bob": ["03:12.000"]})
    snapshot.last_error = "Fetch failed for event 91822: connection refused"
    store.write(snapshot)
    client, _ = make_client(store)

    resp = client.get("/91822")

    assert resp.status_code == 200
    body = resp.json()
    assert body["id"] == 91822
    assert body["stageCount"] == 1
    assert body["stageData"][0]["total"] == 2
    assert "lastError" not in body


def test_corrupt_snapshot(store):
    store.cache_dir.mkdir(parents=True)
    store.path_for(91822).write_text("{broken")
    client, orchestrator = make_client(store)

    resp = client.get("/91822")

    assert resp.status_code == 500
    assert resp.json() == {"error": "Snapshot unavailable"}
    assert orchestrator.scheduled == []


class _ThreadRecordingStore(SnapshotStore):
    def __init__(self, cache_dir):
        super().__init__(cache_dir)
        self.read_threads = []
        self.placeholder_threads = []

    def read(self, event_id):
        self.read_threads.append(threading.get_ident())
        return super().read(event_id)

    def write_placeholder(self, event_id):
        self.placeholder_threads.append(threading.get_ident())
        return super().write_placeholder(event_id)


def test_document_read_runs_off_the_event_loop(config):
    store = _ThreadRecordingStore(config.cache_dir)
    client, orchestrator = make_client(store)

    resp = client.get("/91822")

    assert resp.status_code == 202
    assert orchestrator.scheduled == [91822]
    # Lookup in a worker thread, bootstrap back on the loop thread
    assert len(store.placeholder_threads) == 1
    assert store.read_threads[0] != store.placeholder_threads[0]


class _CommitDuringLookupStore(SnapshotStore):
    """First lookup misses, and an update commits before the handler resumes."""

    def __init__(self, cache_dir):
        super().__init__(cache_dir)
        self.missed = False

    def read(self, event_id):
        if not self.missed:
            self.missed = True
            self.write(snapshot_with_times(event_id, {"Alice": ["03:10.000"]}))
            raise SnapshotNotFound(event_id, "gone")
        return super().read(event_id)


def test_miss_never_overwrites_a_snapshot_committed_meanwhile(config):
    store = _CommitDuringLookupStore(config.cache_dir)
    client, orchestrator = make_client(store)

    resp = client.get("/91822")

    assert resp.status_code == 200
    assert resp.json()["stageCount"] == 1
    assert not store.read(91822).is_placeholder
    assert orchestrator.scheduled == []
