"""
Configuration management for the Rally Leaderboard Cache.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Rally leaderboard API
    rally_api_base_url: str = os.getenv("RALLY_API_BASE_URL", "https://www.dirtgame.com/uk/api/event")
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "30.0"))

    # Rate Limiting (process-wide, shared by every event update)
    max_requests_per_minute: int = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "600"))
    min_request_interval: float = float(os.getenv("MIN_REQUEST_INTERVAL", "0.0"))
    # Delay between dispatching stage N and stage N+1 of one event
    stage_request_stagger_seconds: float = float(os.getenv("STAGE_REQUEST_STAGGER_SECONDS", "0.5"))
    # Delay between starting two event updates in one sweep
    event_stagger_seconds: float = float(os.getenv("EVENT_STAGGER_SECONDS", "5.0"))

    # Sweep cadence (in seconds); every known, unfinished event is refreshed once per sweep
    sweep_interval_seconds: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "1800"))

    # Retry after a structurally inconsistent leaderboard (upstream still computing)
    invalid_retry_delay_seconds: float = float(os.getenv("INVALID_RETRY_DELAY_SECONDS", "30.0"))
    max_invalid_retries: int = int(os.getenv("MAX_INVALID_RETRIES", "5"))

    # "No leaderboard" responses needed before an event is marked finished
    finishing_strike_threshold: int = int(os.getenv("FINISHING_STRIKE_THRESHOLD", "3"))
    # Drop bootstrap placeholders for events that never produced data
    evict_finished_placeholders: bool = _env_bool("EVICT_FINISHED_PLACEHOLDERS", "true")

    # Snapshot cache
    cache_dir: str = os.getenv("CACHE_DIR", "cache")

    # Serving layer
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "3021"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json or text

    def validate(self):
        """Validate configuration."""
        errors = []

        if not self.rally_api_base_url:
            errors.append("RALLY_API_BASE_URL is required")
        if self.request_timeout <= 0:
            errors.append("REQUEST_TIMEOUT must be positive")
        if self.max_requests_per_minute <= 0:
            errors.append("MAX_REQUESTS_PER_MINUTE must be positive")
        for name in (
            "min_request_interval",
            "stage_request_stagger_seconds",
            "event_stagger_seconds",
            "invalid_retry_delay_seconds",
        ):
            if getattr(self, name) < 0:
                errors.append(f"{name.upper()} must not be negative")
        if self.sweep_interval_seconds <= 0:
            errors.append("SWEEP_INTERVAL_SECONDS must be positive")
        if self.max_invalid_retries < 0:
            errors.append("MAX_INVALID_RETRIES must not be negative")
        if self.finishing_strike_threshold < 1:
            errors.append("FINISHING_STRIKE_THRESHOLD must be at least 1")
        if not self.cache_dir:
            errors.append("CACHE_DIR is required")
        if self.log_format not in ("json", "text"):
            errors.append("LOG_FORMAT must be 'json' or 'text'")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True

    def __post_init__(self):
        """Validate after initialization."""
        self.validate()
