#!/usr/bin/env python3
"""
Rally Leaderboard Cache - Main Entry Point

Serves cached event leaderboards over HTTP and keeps every unfinished event
in sync with the remote leaderboard API.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Load .env from backend directory before Config() is used
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

import uvicorn

from api.main import create_app
from config import Config
from rally_api.client import RallyAPIClient
from storage.snapshot_store import SnapshotStore
from sync.orchestrator import UpdateOrchestrator
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


class RallyCacheService:
    """Main service class: HTTP server and sweep loop on one event loop."""

    def __init__(self, config: Config = None):
        self.config = config or Config()
        self.client = None
        self.store = None
        self.orchestrator = None
        self.server = None

    def initialize(self):
        """Build the client, store, orchestrator and HTTP server."""
        self.client = RallyAPIClient(self.config)
        self.store = SnapshotStore(self.config.cache_dir)
        self.orchestrator = UpdateOrchestrator(self.config, self.client, self.store)
        app = create_app(self.store, self.orchestrator)
        # uvicorn handles SIGINT/SIGTERM; serve() returning is our shutdown signal
        self.server = uvicorn.Server(uvicorn.Config(
            app,
            host=self.config.api_host,
            port=self.config.api_port,
            log_config=None,
        ))

    async def start(self):
        """Start the cache service."""
        logger.info("Starting Rally Cache Service", extra={
            "version": "1.0.0",
            "environment": self.config.environment,
            "cache_dir": self.config.cache_dir,
            "port": self.config.api_port
        })

        try:
            self.initialize()

            sweep_task = asyncio.create_task(self.orchestrator.run_sweep_loop())
            try:
                await self.server.serve()
            finally:
                sweep_task.cancel()
                await asyncio.gather(sweep_task, return_exceptions=True)

        except Exception as e:
            logger.error("Fatal error in cache service", extra={
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
            raise
        finally:
            await self.stop()

    async def stop(self):
        """Release the orchestrator's tasks and the HTTP client."""
        if self.orchestrator:
            await self.orchestrator.shutdown()
        if self.client:
            await self.client.close()
        logger.info("Rally Cache Service stopped")


async def main():
    """Main entry point."""
    config = Config()
    setup_logging(config)

    service = RallyCacheService(config)
    try:
        await service.start()
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error("Service crashed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
