"""
Protocol definition for notification channels.

Defines the common interface that all channels must implement, plus
text helpers shared by their renderers.
"""

import html
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from herald.models import ChangeEvent, EventKind, FeedItem, LiveStatus

SUMMARY_LENGTH = 500

TITLE_SEPARATOR = " ⬅️ "

LIVE_ICONS = {
    EventKind.LIVE_STARTED: "🟢",
    EventKind.LIVE_ENDED: "⚫",
    EventKind.LIVE_TITLE_CHANGED: "✏️",
}


@runtime_checkable
class NotificationChannel(Protocol):
    """
    Protocol defining the interface for notification channels.

    One implementation exists per channel kind. A channel receives the
    already merged target parameters with every call, so one instance
    serves all targets of its kind.
    """

    kind: str

    def render(self, event: ChangeEvent, config: Mapping[str, Any]) -> str:
        """
        Render a change event into a message body for this channel.

        Parameters
        ----------
        event : ChangeEvent
            The event to render.
        config : Mapping[str, Any]
            Resolved target parameters.

        Returns
        -------
        str
            Message body.
        """
        ...

    async def deliver(
        self, config: Mapping[str, Any], body: str, event: ChangeEvent | None = None
    ) -> None:
        """
        Send a rendered message to the destination described by ``config``.

        Parameters
        ----------
        config : Mapping[str, Any]
            Resolved target parameters.
        body : str
            Message body produced by ``render``.
        event : ChangeEvent | None
            The event ``body`` was rendered from. Channels read their
            attachments from it; without it only the text is sent.

        Raises
        ------
        DeliveryError
            If the message could not be sent.
        """
        ...

    async def test_connection(self, configs: Iterable[Mapping[str, Any]]) -> bool:
        """
        Check that the destinations in ``configs`` are reachable.

        Returns
        -------
        bool
            True if every checked endpoint answered.
        """
        ...

    async def close(self) -> None:
        """Close the channel and release any resources."""
        ...


def clean_content(content: str) -> str:
    """
    Clean HTML content for display.

    Parameters
    ----------
    content : str
        Raw content possibly containing HTML.

    Returns
    -------
    str
        Plain text with tags removed, entities decoded and whitespace
        collapsed (line breaks are kept).
    """
    text = re.sub(r"<br\s*/?>", "\n", content, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return text.strip()


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, ending with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def item_summary(item: FeedItem, limit: int = SUMMARY_LENGTH) -> str:
    return truncate(clean_content(item.content), limit) if item.content else ""


def live_headline(event: ChangeEvent) -> str:
    """
    One-line description of a live event, without markup.

    Parameters
    ----------
    event : ChangeEvent
        A live started, ended or title changed event.

    Returns
    -------
    str
        e.g. ``"🟢 Streamer: Stream title"``.
    """
    status: LiveStatus = event.payload
    icon = LIVE_ICONS.get(event.kind, "")
    name = status.streamer_name or event.subscription_name

    if event.kind is EventKind.LIVE_ENDED:
        return f"{icon} {name} is offline"
    if event.kind is EventKind.LIVE_TITLE_CHANGED:
        return f"{icon} {name}: {event.previous_title or ''} ⇒ {status.title}"
    return f"{icon} {name} is live: {status.title}"


def live_history(event: ChangeEvent, titles: Sequence[str]) -> str:
    """
    Live headline listing every title of the broadcast, newest first.

    Used when an earlier stream start message is edited in place.
    """
    status: LiveStatus = event.payload
    name = status.streamer_name or event.subscription_name
    history = TITLE_SEPARATOR.join(titles)
    if status.online:
        return f"{LIVE_ICONS[EventKind.LIVE_STARTED]} {name} is live: {history}"
    return f"{LIVE_ICONS[EventKind.LIVE_ENDED]} {name} was live: {history}"


def event_images(event: ChangeEvent) -> tuple[str, ...]:
    """
    Image URLs to attach to the notification of an event.

    Parameters
    ----------
    event : ChangeEvent
        The event being delivered.

    Returns
    -------
    tuple[str, ...]
        The item's images for new items, the room cover for stream
        starts, nothing otherwise.
    """
    if event.kind is EventKind.NEW_ITEM:
        return event.payload.images
    if event.kind is EventKind.LIVE_STARTED and event.payload.cover_url:
        return (event.payload.cover_url,)
    return ()
