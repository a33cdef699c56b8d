"""
Per-subscription scheduling.

Every subscription gets its own driver task ticking on its own
interval. Cycles of one subscription never overlap, and a failing or
hung cycle never affects the ticking of any other subscription.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any

from herald.config import Subscription

logger = logging.getLogger(__name__)

CycleFn = Callable[[Subscription], Awaitable[Any]]


class AccountPool:
    """
    One permit per shared platform account.

    Fetches that use the same account are serialized; fetches with
    different accounts, or none, run freely.
    """

    def __init__(self, accounts: Mapping[str, Any]):
        """
        Initialize the pool.

        Parameters
        ----------
        accounts : Mapping[str, Any]
            Account configurations by name.
        """
        self._accounts = dict(accounts)
        self._locks = {name: asyncio.Lock() for name in self._accounts}

    def get(self, name: str) -> Any:
        return self._accounts[name]

    def is_busy(self, name: str) -> bool:
        return self._locks[name].locked()

    @asynccontextmanager
    async def hold(self, name: str | None) -> AsyncIterator[Any]:
        """
        Hold the permit of an account for the duration of the block.

        Parameters
        ----------
        name : str | None
            Account name; None yields None without locking.

        Yields
        ------
        Any
            The account configuration, or None.
        """
        if name is None:
            yield None
            return

        lock = self._locks[name]
        if lock.locked():
            logger.debug("Waiting for account '%s'", name)
        async with lock:
            yield self._accounts[name]


class Scheduler:
    """
    Drive one independent timer per subscription.

    Ticks are computed from the previous tick time, not from cycle
    completion. A tick that falls while the previous cycle of the same
    subscription is still running is skipped.
    """

    def __init__(
        self,
        subscriptions: Sequence[Subscription],
        global_interval: float,
        on_tick: CycleFn,
    ):
        """
        Initialize the scheduler.

        Parameters
        ----------
        subscriptions : Sequence[Subscription]
            Subscriptions to drive.
        global_interval : float
            Interval in seconds for subscriptions without their own.
        on_tick : CycleFn
            Coroutine function running one cycle for a subscription.
        """
        self.subscriptions = list(subscriptions)
        self.global_interval = global_interval
        self.on_tick = on_tick
        self._running = False
        self._drivers: list[asyncio.Task] = []
        self._cycles: dict[str, asyncio.Task] = {}
        self.skipped: dict[str, int] = {}

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> list[asyncio.Task]:
        """
        Start one driver task per subscription.

        Returns
        -------
        list[asyncio.Task]
            The driver tasks.
        """
        self._running = True
        for subscription in self.subscriptions:
            task = asyncio.create_task(
                self._drive(subscription), name=f"driver:{subscription.name}"
            )
            self._drivers.append(task)
            logger.info(
                "Started watching '%s' every %ss",
                subscription.name,
                subscription.effective_interval(self.global_interval),
            )
        return self._drivers

    async def run(self) -> None:
        """Start the drivers and wait until they are stopped."""
        if not self._drivers:
            self.start()
        try:
            await asyncio.gather(*self._drivers)
        except asyncio.CancelledError:
            logger.info("Scheduler tasks cancelled")

    async def stop(self, grace: float = 10.0) -> None:
        """
        Stop ticking and wind down in-flight cycles.

        Parameters
        ----------
        grace : float
            Seconds to let running cycles finish before cancelling them.
        """
        self._running = False

        for task in self._drivers:
            task.cancel()
        if self._drivers:
            await asyncio.gather(*self._drivers, return_exceptions=True)
        self._drivers.clear()

        in_flight = [task for task in self._cycles.values() if not task.done()]
        if in_flight:
            logger.info("Waiting up to %ss for %d running cycle(s)", grace, len(in_flight))
            _, pending = await asyncio.wait(in_flight, timeout=grace)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        self._cycles.clear()

    async def _drive(self, subscription: Subscription) -> None:
        """
        Tick a single subscription until stopped.

        Parameters
        ----------
        subscription : Subscription
            The subscription to drive.
        """
        interval = subscription.effective_interval(self.global_interval)
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while self._running:
            self._tick(subscription)

            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                # The loop stalled past one or more ticks; drop them.
                missed = int((now - next_tick) // interval) + 1
                next_tick += missed * interval

            await asyncio.sleep(next_tick - now)

    def _tick(self, subscription: Subscription) -> None:
        previous = self._cycles.get(subscription.name)
        if previous is not None and not previous.done():
            self.skipped[subscription.name] = self.skipped.get(subscription.name, 0) + 1
            logger.warning(
                "Skipping tick for '%s': previous cycle is still running", subscription.name
            )
            return

        self._cycles[subscription.name] = asyncio.create_task(
            self._run_cycle(subscription), name=f"cycle:{subscription.name}"
        )

    async def _run_cycle(self, subscription: Subscription) -> None:
        try:
            await self.on_tick(subscription)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Error checking '%s': %s", subscription.name, e, exc_info=True)
