"""
The fetch, diff, commit and route cycle run on every tick.
"""

import asyncio
import logging
from collections.abc import Mapping

from herald.config import Subscription
from herald.diff import DEFAULT_SEEN_CAP, detect_changes
from herald.errors import DiffError, FetchError
from herald.models import ChangeEvent
from herald.platforms.base import PlatformAdapter
from herald.router import NotificationRouter
from herald.scheduler import AccountPool
from herald.storage import StateStore

logger = logging.getLogger(__name__)


class Pipeline:
    """
    Run one polling cycle for a subscription.

    The new snapshot is committed before any notification is sent, so a
    crash after the commit can lose notifications but never duplicate
    them.
    """

    def __init__(
        self,
        adapters: Mapping[str, PlatformAdapter],
        store: StateStore,
        router: NotificationRouter,
        accounts: AccountPool,
        seen_cap: int = DEFAULT_SEEN_CAP,
    ):
        """
        Initialize the pipeline.

        Parameters
        ----------
        adapters : Mapping[str, PlatformAdapter]
            Adapters by platform kind.
        store : StateStore
            Snapshot store.
        router : NotificationRouter
            Router delivering detected events.
        accounts : AccountPool
            Permits for shared platform accounts.
        seen_cap : int
            Maximum dedup markers kept per feed subscription.
        """
        self.adapters = dict(adapters)
        self.store = store
        self.router = router
        self.accounts = accounts
        self.seen_cap = seen_cap

    async def __call__(self, subscription: Subscription) -> list[ChangeEvent]:
        return await self.run_cycle(subscription)

    async def run_cycle(self, subscription: Subscription) -> list[ChangeEvent]:
        """
        Poll a subscription once and notify what changed.

        Fetch and diff failures skip the cycle and leave the stored
        snapshot untouched; the next tick retries.

        Parameters
        ----------
        subscription : Subscription
            The subscription to poll.

        Returns
        -------
        list[ChangeEvent]
            Events detected in this cycle.
        """
        spec = subscription.platform
        adapter = self.adapters[spec.kind]

        logger.debug("Checking '%s'", subscription.name)

        try:
            async with self.accounts.hold(spec.account_ref) as account:
                current = await adapter.fetch(spec, account)
        except asyncio.CancelledError:
            raise
        except FetchError as e:
            logger.warning("Failed to fetch '%s': %s", subscription.name, e)
            return []
        except Exception as e:
            logger.warning(
                "Unexpected error fetching '%s': %s", subscription.name, e, exc_info=True
            )
            return []

        previous = await self.store.get(subscription.name)

        try:
            result = detect_changes(subscription, previous, current, seen_cap=self.seen_cap)
        except DiffError as e:
            logger.error("Failed to diff '%s': %s", subscription.name, e)
            return []

        await self.store.commit(subscription.name, result.snapshot)

        if previous is None:
            logger.info("Baseline established for '%s'", subscription.name)
            return []

        if not result.events:
            logger.debug("No changes for '%s'", subscription.name)
            return []

        logger.info("Detected %d change(s) for '%s'", len(result.events), subscription.name)
        await self.router.route(subscription, result.events)
        return list(result.events)
