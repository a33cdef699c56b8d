"""
Main entry point for Herald.

Wires configuration, storage, adapters, channels and the scheduler
together and runs until interrupted.
"""

import argparse
import asyncio
import contextlib
import logging
import logging.handlers
import signal
import sys
from collections import defaultdict
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import coloredlogs

from herald import __version__
from herald.channels import NotificationChannel, build_channels
from herald.config import AppConfig, load_config, merge_params
from herald.errors import ConfigError
from herald.heartbeat import Heartbeat
from herald.pipeline import Pipeline
from herald.platforms import HttpClient, build_adapters
from herald.router import NotificationRouter
from herald.scheduler import AccountPool, Scheduler
from herald.storage import StateStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Seconds in-flight cycles get to finish on shutdown.
SHUTDOWN_GRACE = 10.0


def redact_proxy_url(proxy_url: str) -> str:
    """
    Redact credentials from a proxy URL for safe logging.

    Parameters
    ----------
    proxy_url : str
        The proxy URL potentially containing credentials.

    Returns
    -------
    str
        The proxy URL with password redacted.
    """
    try:
        parsed = urlparse(proxy_url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:****@{netloc}"
            return f"{parsed.scheme}://{netloc}{parsed.path}"
        return proxy_url
    except ValueError:
        return "<proxy url>"


class Herald:
    """
    Main application.

    Owns every long-lived component and their lifecycle.
    """

    def __init__(self, config: AppConfig):
        """
        Initialize the application.

        Parameters
        ----------
        config : AppConfig
            Validated configuration.
        """
        self.config = config
        self.subscriptions = config.subscription_list()
        self.store: StateStore | None = None
        self.http: HttpClient | None = None
        self.channels: dict[str, NotificationChannel] = {}
        self.scheduler: Scheduler | None = None
        self.heartbeat: Heartbeat | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._stop_task: asyncio.Future | None = None

    async def setup(self) -> None:
        """Open storage and build every component."""
        self.store = StateStore(self.config.storage.database_path)
        await self.store.initialize()

        defaults = self.config.defaults
        if defaults.proxy:
            logger.info("Using proxy: %s", redact_proxy_url(defaults.proxy))

        self.http = HttpClient(
            timeout=defaults.request_timeout,
            max_retries=defaults.max_retries,
            user_agent=defaults.user_agent,
            proxy_url=defaults.proxy,
        )
        self.channels = build_channels(self.config)

        router = NotificationRouter(self.config.notify, self.channels)
        pipeline = Pipeline(
            build_adapters(self.http),
            self.store,
            router,
            AccountPool(self.config.accounts),
            seen_cap=self.config.storage.seen_cap,
        )
        self.scheduler = Scheduler(self.subscriptions, self.config.interval, pipeline)

        if self.config.heartbeat is not None:
            self.heartbeat = Heartbeat(self.config.heartbeat, self.http)

    async def check_channels(self) -> bool:
        """
        Test connectivity of every channel that has a target in use.

        Returns
        -------
        bool
            True if every channel answered.
        """
        configs: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for subscription in self.subscriptions:
            for ref in subscription.notify:
                target = self.config.notify[ref.target]
                configs[target.channel].append(merge_params(target.config, ref.overrides))

        ok = True
        for kind, channel_configs in configs.items():
            if not await self.channels[kind].test_connection(channel_configs):
                logger.warning("Connectivity check failed for %s channel", kind)
                ok = False
        return ok

    async def start(self) -> None:
        """Start watching and run until stopped."""
        logger.info("Starting Herald %s", __version__)

        await self.setup()
        await self.check_channels()

        if self._stop_task is not None:
            # Stopped while starting up.
            return

        if self.heartbeat is not None:
            self._heartbeat_task = asyncio.create_task(self.heartbeat.run())

        self.scheduler.start()
        logger.info("Herald started with %d subscription(s)", len(self.subscriptions))
        await self.scheduler.run()

    async def stop(self) -> None:
        """
        Stop gracefully, letting in-flight cycles finish first.

        Shutdown runs once; concurrent and later calls wait for that
        same shutdown to complete.
        """
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._stop_task)

    async def _shutdown(self) -> None:
        logger.info("Stopping Herald")

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._heartbeat_task

        if self.scheduler is not None:
            await self.scheduler.stop(SHUTDOWN_GRACE)

        for channel in self.channels.values():
            await channel.close()
        if self.http is not None:
            await self.http.close()
        if self.store is not None:
            await self.store.close()

        logger.info("Herald stopped")


def setup_logging(verbose: bool = False, log_dir: str | Path | None = None) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    verbose : bool
        If True, set log level to DEBUG.
    log_dir : str | Path | None
        If set, also write a daily rotated ``herald.log`` in this directory.
    """
    level = logging.DEBUG if verbose else logging.INFO

    coloredlogs.install(level=level, fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.TimedRotatingFileHandler(
            log_dir / "herald.log", when="midnight", backupCount=14, encoding="utf-8"
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        logging.getLogger().addHandler(handler)

    # Reduce noise from third-party libraries
    for name in ("httpx", "httpcore", "telegram", "aiohttp", "websockets"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="herald",
        description="Watch live streams and feeds, notify chats about changes",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to configuration file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-dir",
        default=None,
        help="Directory for daily rotated log files",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate the configuration and exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose, args.log_dir)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(1)

    if args.check:
        logger.info("Configuration is valid")
        sys.exit(0)

    app = Herald(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        loop.run_until_complete(app.stop())
        loop.close()


if __name__ == "__main__":
    main()
