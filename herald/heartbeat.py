"""
Liveness ping for external uptime monitors.
"""

import asyncio
import logging

from herald.config import HeartbeatConfig
from herald.errors import FetchError
from herald.platforms.http import HttpClient

logger = logging.getLogger(__name__)


class Heartbeat:
    """Request a URL with GET on a fixed interval while the process runs."""

    def __init__(self, config: HeartbeatConfig, http: HttpClient):
        self.url = config.url
        self.interval = config.interval
        self.http = http
        self.sent = 0

    async def beat(self) -> bool:
        """
        Send a single heartbeat.

        Returns
        -------
        bool
            True if the monitor accepted it.
        """
        try:
            await self.http.get_text(self.url)
        except FetchError as e:
            logger.warning("Failed to send heartbeat: %s", e)
            return False

        self.sent += 1
        logger.debug("Heartbeat sent")
        return True

    async def run(self) -> None:
        """Beat until cancelled."""
        logger.info("Sending heartbeats to %s every %ss", self.url, self.interval)
        while True:
            await self.beat()
            await asyncio.sleep(self.interval)
