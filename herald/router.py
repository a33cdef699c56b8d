"""
Notification routing.

Resolves a subscription's notify references against the configured
targets, renders every change event per target and dispatches it
through the matching channel.
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from herald.channels.base import NotificationChannel
from herald.config import NotificationToggles, NotifyTarget, Subscription, merge_params
from herald.models import ChangeEvent, Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedTarget:
    """A notify target with the reference's overrides merged in."""

    target: NotifyTarget
    config: Mapping[str, Any]

    @property
    def toggles(self) -> NotificationToggles:
        return NotificationToggles.model_validate(self.config.get("notifications") or {})


class NotificationRouter:
    """
    Fan change events out to notify targets.

    Events of one subscription are delivered in detection order. The
    targets of a single event are resolved in declared order but
    delivered concurrently and independently of each other, so their
    messages may arrive in any order.
    """

    def __init__(
        self,
        targets: Mapping[str, NotifyTarget],
        channels: Mapping[str, NotificationChannel],
    ):
        """
        Initialize the router.

        Parameters
        ----------
        targets : Mapping[str, NotifyTarget]
            Notify targets by name.
        channels : Mapping[str, NotificationChannel]
            Channels by kind.
        """
        self.targets = dict(targets)
        self.channels = dict(channels)

    def resolve(self, subscription: Subscription) -> list[ResolvedTarget]:
        """
        Resolve a subscription's notify references, in declared order.

        Parameters
        ----------
        subscription : Subscription
            The subscription to resolve.

        Returns
        -------
        list[ResolvedTarget]
            Targets with their merged parameters.
        """
        resolved = []
        for ref in subscription.notify:
            target = self.targets[ref.target]
            resolved.append(ResolvedTarget(target, merge_params(target.config, ref.overrides)))
        return resolved

    async def route(self, subscription: Subscription, events: Sequence[ChangeEvent]) -> int:
        """
        Deliver events to every resolved target.

        Parameters
        ----------
        subscription : Subscription
            Subscription the events belong to.
        events : Sequence[ChangeEvent]
            Events in detection order.

        Returns
        -------
        int
            Number of successful deliveries.
        """
        if not events:
            return 0

        resolved = self.resolve(subscription)
        delivered = 0

        for event in events:
            logger.info(
                "'%s' needs to send a %s notification to %d target(s)",
                subscription.name,
                event.kind.value,
                len(resolved),
            )

            wanted = []
            for target in resolved:
                if target.toggles.allows(event.kind):
                    wanted.append(target)
                else:
                    logger.debug(
                        "%s notifications disabled for '%s', skipping",
                        event.kind.value,
                        target.target.name,
                    )

            results = await asyncio.gather(
                *(self._deliver(subscription, event, target) for target in wanted)
            )
            delivered += sum(results)

        return delivered

    async def _deliver(
        self, subscription: Subscription, event: ChangeEvent, target: ResolvedTarget
    ) -> bool:
        channel = self.channels[target.target.channel]

        try:
            notification = Notification(
                target_name=target.target.name,
                channel=target.target.channel,
                config=target.config,
                body=channel.render(event, target.config),
                event=event,
            )
            await channel.deliver(
                notification.config, notification.body, event=notification.event
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Failed to deliver %s notification of '%s' to '%s': %s",
                event.kind.value,
                subscription.name,
                target.target.name,
                e,
            )
            return False

        logger.info(
            "Delivered %s notification of '%s' to '%s'",
            event.kind.value,
            subscription.name,
            target.target.name,
        )
        return True
