import pytest

from config import Config


def test_default_config_is_valid():
    config = Config()
    assert config.validate() is True
    assert config.finishing_strike_threshold >= 1
    assert config.rally_api_base_url.startswith("http")


def test_overrides():
    config = Config(cache_dir="/tmp/rally", api_port=8080, finishing_strike_threshold=5)
    assert config.cache_dir == "/tmp/rally"
    assert config.api_port == 8080
    assert config.finishing_strike_threshold == 5


def test_invalid_values_are_all_reported():
    with pytest.raises(ValueError) as info:
        Config(max_requests_per_minute=0, event_stagger_seconds=-1, finishing_strike_threshold=0)
    message = str(info.value)
    assert "MAX_REQUESTS_PER_MINUTE" in message
    assert "EVENT_STAGGER_SECONDS" in message
    assert "FINISHING_STRIKE_THRESHOLD" in message


def test_log_format_must_be_known():
    with pytest.raises(ValueError):
        Config(log_format="xml")
