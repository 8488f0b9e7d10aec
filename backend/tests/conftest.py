import pytest

from config import Config
from storage.snapshot_store import SnapshotStore


@pytest.fixture
def config(tmp_path):
    return Config(
        cache_dir=str(tmp_path / "cache"),
        stage_request_stagger_seconds=0.0,
        event_stagger_seconds=0.0,
        invalid_retry_delay_seconds=0.0,
        max_invalid_retries=2,
        min_request_interval=0.0,
    )


@pytest.fixture
def store(config):
    return SnapshotStore(config.cache_dir)
