"""
Change detection between consecutive snapshots.

Turns the stored snapshot and a freshly fetched one into the snapshot to
commit plus the ordered events to route. Pure functions, no I/O.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from herald.config import Subscription
from herald.errors import DiffError
from herald.models import ChangeEvent, EventKind, FeedState, LiveStatus, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_SEEN_CAP = 500


@dataclass(frozen=True)
class DiffResult:
    """
    Outcome of one comparison.

    Attributes
    ----------
    snapshot : Snapshot
        Snapshot to commit; for feeds it already contains the emitted ids.
    events : list[ChangeEvent]
        Detected events in notification order.
    """

    snapshot: Snapshot
    events: list[ChangeEvent] = field(default_factory=list)


def detect_changes(
    subscription: Subscription,
    previous: Snapshot | None,
    current: Snapshot,
    *,
    seen_cap: int = DEFAULT_SEEN_CAP,
    now: datetime | None = None,
) -> DiffResult:
    """
    Compare a fetched snapshot against the last committed one.

    Parameters
    ----------
    subscription : Subscription
        Subscription the snapshots belong to.
    previous : Snapshot | None
        Last committed snapshot, or None if no baseline exists yet.
    current : Snapshot
        Freshly fetched snapshot.
    seen_cap : int
        Maximum number of dedup markers kept for feeds.
    now : datetime | None
        Detection timestamp; defaults to the current UTC time.

    Returns
    -------
    DiffResult
        Snapshot to commit and the events to route.

    Raises
    ------
    DiffError
        If the snapshots are of unknown or mismatched kinds.
    """
    if not isinstance(current, (LiveStatus, FeedState)):
        raise DiffError(
            f"Unsupported snapshot type {type(current).__name__} for '{subscription.name}'"
        )
    if previous is not None and type(previous) is not type(current):
        raise DiffError(
            f"Snapshot kind mismatch for '{subscription.name}': "
            f"stored {previous.kind}, fetched {current.kind}"
        )

    now = now or datetime.now(timezone.utc)

    if isinstance(current, LiveStatus):
        return _diff_live(subscription, previous, current, now)
    return _diff_feed(subscription, previous, current, now, seen_cap)


def _diff_live(
    subscription: Subscription,
    previous: LiveStatus | None,
    current: LiveStatus,
    now: datetime,
) -> DiffResult:
    if previous is None:
        logger.debug(
            "Baseline for '%s': %s", subscription.name, "online" if current.online else "offline"
        )
        return DiffResult(current)

    source = subscription.platform.display_name
    events = []

    if not previous.online and current.online:
        events.append(ChangeEvent(subscription.name, EventKind.LIVE_STARTED, current, now, source))
    elif previous.online and not current.online:
        if subscription.report_offline:
            events.append(
                ChangeEvent(subscription.name, EventKind.LIVE_ENDED, current, now, source)
            )
    elif previous.title != current.title and subscription.report_title:
        events.append(
            ChangeEvent(
                subscription.name,
                EventKind.LIVE_TITLE_CHANGED,
                current,
                now,
                source,
                previous_title=previous.title,
            )
        )

    return DiffResult(current, events)


def _diff_feed(
    subscription: Subscription,
    previous: FeedState | None,
    current: FeedState,
    now: datetime,
    seen_cap: int,
) -> DiffResult:
    current_ids = _unique(current.item_ids)

    if previous is None:
        logger.debug("Baseline for '%s': %d item(s)", subscription.name, len(current_ids))
        seen = bound_seen(current_ids, current_ids, seen_cap)
        return DiffResult(FeedState(items=current.items, seen=seen))

    already_seen = set(previous.seen)
    source = subscription.platform.display_name
    events = []
    new_ids = []

    for item in current.items:
        if item.id in already_seen:
            continue
        already_seen.add(item.id)
        new_ids.append(item.id)
        events.append(ChangeEvent(subscription.name, EventKind.NEW_ITEM, item, now, source))

    seen = bound_seen([*previous.seen, *new_ids], current_ids, seen_cap)
    return DiffResult(FeedState(items=current.items, seen=seen), events)


def bound_seen(seen: list[str], current_ids: Iterable[str], cap: int) -> tuple[str, ...]:
    """
    Evict the oldest dedup markers beyond ``cap``.

    Markers of items still present in the current page are evicted last,
    so a page never re-notifies its own items.

    Parameters
    ----------
    seen : list[str]
        Markers, oldest first.
    current_ids : Iterable[str]
        Identifiers in the latest fetched page.
    cap : int
        Maximum number of markers to keep.

    Returns
    -------
    tuple[str, ...]
        At most ``cap`` markers, oldest first.
    """
    overflow = len(seen) - cap
    if overflow <= 0:
        return tuple(seen)

    on_page = set(current_ids)
    kept = []
    for item_id in seen:
        if overflow > 0 and item_id not in on_page:
            overflow -= 1
            continue
        kept.append(item_id)

    return tuple(kept[-cap:])


def _unique(ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(ids))
