"""
Rally leaderboard API client with rate limiting and error handling.

Handles all communication with the community-event leaderboard API.
"""

import asyncio
import logging
import random
import time
from typing import Any, Dict, Optional

import httpx
from asyncio_throttle import Throttler

from config import Config
from sync.models import Entry, RawPage

logger = logging.getLogger(__name__)


class RallyAPIError(Exception):
    """Base exception for rally API errors."""

    def __init__(self, message: str, event_id: Optional[int] = None, stage: Optional[int] = None, page: Optional[int] = None):
        super().__init__(message)
        self.event_id = event_id
        self.stage = stage
        self.page = page


class RallyAPITransportError(RallyAPIError):
    """Raised when the request itself fails (network, timeout, bad status)."""
    pass


class RallyAPIParseError(RallyAPIError):
    """Raised when the response body is not a leaderboard page."""
    pass


class RallyAPIClient:
    """Client for the rally leaderboard API."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.base_url = config.rally_api_base_url

        self.throttler = Throttler(
            rate_limit=config.max_requests_per_minute,
            period=60.0
        )
        self.min_interval = config.min_request_interval
        self.last_request_time = 0.0

        self.client = httpx.AsyncClient(
            timeout=config.request_timeout,
            follow_redirects=True,
            transport=transport,
            headers={
                "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
                "Accept": "application/json",
                "Accept-Language": "en-GB,en;q=0.9",
            }
        )

    async def _wait_for_rate_limit(self):
        """Wait to respect rate limiting."""
        await self.throttler.acquire()

        if self.min_interval > 0:
            current_time = time.time()
            time_since_last = current_time - self.last_request_time
            if time_since_last < self.min_interval:
                wait_time = self.min_interval - time_since_last
                # Add jitter (±25%)
                jitter = wait_time * 0.25 * (random.random() * 2 - 1)
                await asyncio.sleep(wait_time + jitter)

        self.last_request_time = time.time()

    @staticmethod
    def build_params(event_id: int, stage: int, page: int) -> Dict[str, Any]:
        """Query parameters for one leaderboard page; noCache defeats upstream caching."""
        return {
            "assists": "any",
            "eventId": event_id,
            "leaderboard": "true",
            "noCache": int(time.time() * 1000),
            "page": page,
            "stageId": stage,
        }

    async def fetch_page(self, event_id: int, stage: int, page: int) -> RawPage:
        """
        Fetch and parse one leaderboard page.

        Args:
            event_id: Event ID
            stage: Stage index (0 is the event overview)
            page: 1-based page number

        Returns:
            RawPage; ``pages == 0`` means the event has no leaderboard yet

        Raises:
            RallyAPITransportError: Network failure, timeout or non-2xx status
            RallyAPIParseError: Body is not a leaderboard page
        """
        context = {"event_id": event_id, "stage": stage, "page": page}
        await self._wait_for_rate_limit()

        started = time.monotonic()
        try:
            response = await self.client.get(self.base_url, params=self.build_params(event_id, stage, page))
        except httpx.TimeoutException as e:
            logger.warning("Timeout from rally API", extra={**context, "error": str(e)})
            raise RallyAPITransportError(f"Request timeout for event {event_id} stage {stage} page {page}", **context) from e
        except httpx.HTTPError as e:
            logger.warning("Network error from rally API", extra={**context, "error": str(e)})
            raise RallyAPITransportError(f"Network error for event {event_id} stage {stage} page {page}: {e}", **context) from e
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if not response.is_success:
            error_text = response.text[:500]
            logger.warning("Error status from rally API", extra={
                **context,
                "status_code": response.status_code,
                "error": error_text
            })
            raise RallyAPITransportError(f"Status {response.status_code} for event {event_id} stage {stage} page {page}", **context)

        try:
            data = response.json()
        except ValueError as e:
            logger.error("JSON parse failed", extra={
                **context,
                "content_type": response.headers.get("content-type", "unknown"),
                "response_preview": response.text[:500] if response.text else "No text content",
            })
            raise RallyAPIParseError(f"Failed to parse JSON: {e}", **context) from e

        return self.parse_page(data, stage=stage, page=page, elapsed_ms=elapsed_ms, event_id=event_id)

    @staticmethod
    def parse_page(data: Any, stage: int, page: int, elapsed_ms: int = 0, event_id: Optional[int] = None) -> RawPage:
        """Turn a decoded response body into a RawPage."""
        context = {"event_id": event_id, "stage": stage, "page": page}
        if not isinstance(data, dict) or "Pages" not in data:
            raise RallyAPIParseError("Response is not a leaderboard page", **context)

        try:
            pages = int(data["Pages"])
            if pages == 0:
                return RawPage(
                    stage=stage,
                    page=page,
                    pages=0,
                    total=int(data.get("LeaderboardTotal") or 0),
                    total_stages=int(data.get("TotalStages") or 0),
                    elapsed_ms=elapsed_ms,
                )
            return RawPage(
                stage=stage,
                page=page,
                pages=pages,
                total=int(data["LeaderboardTotal"]),
                total_stages=int(data["TotalStages"]),
                entries=[Entry.from_api(e) for e in data.get("Entries") or []],
                elapsed_ms=elapsed_ms,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RallyAPIParseError(f"Malformed leaderboard page: {e!r}", **context) from e

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
