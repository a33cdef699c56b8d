"""
Core data types shared by adapters, the diff engine and the router.

Snapshots are immutable observations of a source; change events and
notifications are ephemeral values produced within one cycle.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class LiveStatus:
    """
    Observable state of a live stream.

    Attributes
    ----------
    online : bool
        Whether the stream is currently live.
    title : str
        Current stream title.
    started_at : datetime | None
        When the current broadcast started, if the platform reports it.
    streamer_name : str
        Display name of the streamer.
    live_url : str
        URL of the live room.
    cover_url : str
        URL of the room cover image.
    """

    kind: ClassVar[str] = "live"

    online: bool
    title: str = ""
    started_at: datetime | None = None
    streamer_name: str = ""
    live_url: str = ""
    cover_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "online": self.online,
            "title": self.title,
            "started_at": _dt_to_str(self.started_at),
            "streamer_name": self.streamer_name,
            "live_url": self.live_url,
            "cover_url": self.cover_url,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LiveStatus":
        return cls(
            online=bool(data["online"]),
            title=data.get("title", ""),
            started_at=_dt_from_str(data.get("started_at")),
            streamer_name=data.get("streamer_name", ""),
            live_url=data.get("live_url", ""),
            cover_url=data.get("cover_url", ""),
        )


@dataclass(frozen=True)
class FeedItem:
    """
    A single post, video or feed entry.

    Attributes
    ----------
    id : str
        Platform-unique identifier, used for deduplication.
    content : str
        Text body of the item.
    url : str
        Link to the item.
    title : str
        Title, for platforms that have one (videos, articles).
    author : str
        Author display name.
    published : datetime | None
        Publication time, if known.
    images : tuple[str, ...]
        Attached image URLs.
    """

    id: str
    content: str = ""
    url: str = ""
    title: str = ""
    author: str = ""
    published: datetime | None = None
    images: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "url": self.url,
            "title": self.title,
            "author": self.author,
            "published": _dt_to_str(self.published),
            "images": list(self.images),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeedItem":
        return cls(
            id=data["id"],
            content=data.get("content", ""),
            url=data.get("url", ""),
            title=data.get("title", ""),
            author=data.get("author", ""),
            published=_dt_from_str(data.get("published")),
            images=tuple(data.get("images", ())),
        )


@dataclass(frozen=True)
class FeedState:
    """
    Observable state of a feed plus its dedup markers.

    Attributes
    ----------
    items : tuple[FeedItem, ...]
        Items of the latest fetched page, oldest first.
    seen : tuple[str, ...]
        Identifiers already accounted for, oldest first. Bounded by the
        store's seen cap.
    """

    kind: ClassVar[str] = "feed"

    items: tuple[FeedItem, ...] = ()
    seen: tuple[str, ...] = ()

    @property
    def item_ids(self) -> list[str]:
        return [item.id for item in self.items]

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "seen": list(self.seen),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeedState":
        return cls(
            items=tuple(FeedItem.from_dict(item) for item in data.get("items", ())),
            seen=tuple(data.get("seen", ())),
        )


Snapshot = LiveStatus | FeedState

SNAPSHOT_TYPES: dict[str, type[LiveStatus] | type[FeedState]] = {
    LiveStatus.kind: LiveStatus,
    FeedState.kind: FeedState,
}


def snapshot_from_dict(kind: str, data: Mapping[str, Any]) -> Snapshot:
    """
    Rebuild a snapshot from its serialized form.

    Parameters
    ----------
    kind : str
        Snapshot kind tag ("live" or "feed").
    data : Mapping[str, Any]
        Output of the snapshot's ``to_dict``.

    Returns
    -------
    Snapshot
        The decoded snapshot.

    Raises
    ------
    ValueError
        If the kind is unknown.
    """
    try:
        snapshot_type = SNAPSHOT_TYPES[kind]
    except KeyError:
        raise ValueError(f"Unknown snapshot kind: {kind!r}") from None
    return snapshot_type.from_dict(data)


class EventKind(str, Enum):
    """Kinds of change detected between two snapshots."""

    LIVE_STARTED = "live_started"
    LIVE_ENDED = "live_ended"
    LIVE_TITLE_CHANGED = "live_title_changed"
    NEW_ITEM = "new_item"


@dataclass(frozen=True)
class ChangeEvent:
    """
    A meaningful transition detected for one subscription.

    Attributes
    ----------
    subscription_name : str
        Name of the subscription the event belongs to.
    kind : EventKind
        What changed.
    payload : LiveStatus | FeedItem
        The new live status, or the newly observed item.
    detected_at : datetime
        When the change was detected.
    source : str
        Display name of the platform the event came from.
    previous_title : str | None
        Former stream title, for title change events.
    """

    subscription_name: str
    kind: EventKind
    payload: LiveStatus | FeedItem
    detected_at: datetime
    source: str = ""
    previous_title: str | None = None


@dataclass(frozen=True)
class Notification:
    """A rendered message bound to one resolved notify target."""

    target_name: str
    channel: str
    config: Mapping[str, Any] = field(default_factory=dict)
    body: str = ""
    event: ChangeEvent | None = None
